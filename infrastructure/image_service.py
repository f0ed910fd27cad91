"""Best-effort thumbnail and preview loading with a memory cache.

Decoding uses Qt's `QImageReader` with a Pillow fallback. Each request is
bounded by a deadline: when the requested size cannot be produced in time the
service drops to a small thumbnail, and finally to a grey placeholder, so the
swipe screen is never left waiting.
"""

from __future__ import annotations

from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
import hashlib
import os
import time
from typing import Any

from PIL import Image, ImageOps, UnidentifiedImageError
from PySide6.QtCore import QSize, Qt
from PySide6.QtGui import QColor, QImage, QImageReader
from loguru import logger

from core.models import Asset, MediaType
from core.services.interfaces import FetchedContent, QualityHint

PREVIEW_SIDE = 1024
THUMBNAIL_SIDE = 256
PLACEHOLDER_SIDE = 64
PREVIEW_SHARE = 2 / 3


def _compute_cache_key(path: str, size_key: int) -> str:
    """Compute a stable cache key from path, mtime, size, and requested side."""
    try:
        st = os.stat(path)
        sig = f"{path}|{int(st.st_mtime_ns)}|{int(st.st_size)}|{int(size_key)}".encode(
            "utf-8", errors="ignore"
        )
    except OSError:
        sig = f"{path}|0|0|{int(size_key)}".encode("utf-8", errors="ignore")
    return hashlib.sha1(sig).hexdigest()


class _LRUCache:
    def __init__(self, capacity: int) -> None:
        self._cap = max(1, int(capacity or 1))
        self._data: OrderedDict[str, QImage] = OrderedDict()

    def get(self, key: str) -> QImage | None:
        """Return cached QImage for key, moving it to the MRU position."""
        image = self._data.get(key)
        if image is None:
            return None
        self._data.move_to_end(key)
        return image

    def put(self, key: str, image: QImage) -> None:
        """Insert or update `key`, evicting LRU entries when over capacity."""
        self._data[key] = image
        self._data.move_to_end(key)
        while len(self._data) > self._cap:
            self._data.popitem(last=False)

    def __len__(self) -> int:
        return len(self._data)


def make_placeholder(side: int = PLACEHOLDER_SIDE) -> QImage:
    img = QImage(side, side, QImage.Format_ARGB32)
    img.fill(QColor(220, 220, 220))
    return img


class QtContentFetcher:
    """Loads images for assets whose ids are file paths."""

    def __init__(
        self,
        preview_side: int = PREVIEW_SIDE,
        thumbnail_side: int = THUMBNAIL_SIDE,
        mem_cache: int = 128,
        workers: int = 2,
    ) -> None:
        self._preview_side = preview_side
        self._thumbnail_side = thumbnail_side
        self._cache = _LRUCache(mem_cache)
        self._pool = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="fetch")

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)

    def fetch_best_effort(
        self, asset: Asset, quality_hint: QualityHint, deadline: float
    ) -> FetchedContent:
        """Return the best image obtainable within `deadline` seconds."""
        if asset.media_type is MediaType.VIDEO:
            # Frame extraction belongs to a media backend; show the placeholder.
            return FetchedContent(asset_id=asset.id, image=make_placeholder(), degraded=True)

        side = self._preview_side if quality_hint is QualityHint.PREVIEW else self._thumbnail_side
        budget = max(0.0, float(deadline))
        started = time.monotonic()
        fallback = side > self._thumbnail_side
        # The thumbnail tier gets whatever the first tier leaves of one budget
        first_share = budget * PREVIEW_SHARE if fallback else budget
        img = self._load_within(asset.id, side, first_share)
        if img is not None:
            return FetchedContent(asset_id=asset.id, image=img, degraded=False)

        left = budget - (time.monotonic() - started)
        if fallback and left > 0:
            img = self._load_within(asset.id, self._thumbnail_side, left)
            if img is not None:
                logger.debug("Degraded to thumbnail for {}", asset.id)
                return FetchedContent(asset_id=asset.id, image=img, degraded=True)

        logger.info("Using placeholder for {}", asset.id)
        return FetchedContent(asset_id=asset.id, image=make_placeholder(), degraded=True)

    def _load_within(self, path: str, side: int, timeout: float) -> QImage | None:
        key = _compute_cache_key(path, side)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        future = self._pool.submit(self._load_from_source, path, side)
        try:
            img = future.result(timeout=timeout)
        except FutureTimeout:
            logger.debug("Load of {} at {}px exceeded {:.2f}s", path, side, timeout)
            return None
        if img is None or img.isNull():
            return None
        self._cache.put(key, img)
        return img

    def _load_from_source(self, path: str, requested_side: int) -> QImage | None:
        """Try QImageReader, then Pillow."""
        try:
            reader = QImageReader(path)
            reader.setAutoTransform(True)
            if requested_side > 0 and reader.size().isValid():
                orig = reader.size()
                w, h = orig.width(), orig.height()
                if w > 0 and h > 0:
                    if w >= h:
                        nw = min(requested_side, w)
                        nh = max(1, int(h * (nw / w)))
                    else:
                        nh = min(requested_side, h)
                        nw = max(1, int(w * (nh / h)))
                    reader.setScaledSize(QSize(nw, nh))
            img = reader.read()
            if img is not None and not img.isNull():
                if requested_side > 0 and max(img.width(), img.height()) > requested_side:
                    img = img.scaled(
                        requested_side, requested_side, Qt.KeepAspectRatio, Qt.SmoothTransformation
                    )
                return img
            logger.debug("QImageReader failed for {}: {}", path, reader.errorString())
        except (OSError, ValueError) as ex:
            logger.debug("QImageReader failed for {}: {}", path, ex)
        return self._load_via_pillow(path, requested_side)

    def _load_via_pillow(self, path: str, requested_side: int) -> QImage | None:
        try:
            with Image.open(path) as im:
                try:
                    im = ImageOps.exif_transpose(im)
                except (OSError, ValueError, AttributeError):
                    pass
                if requested_side > 0:
                    im.thumbnail((requested_side, requested_side), Image.Resampling.LANCZOS)
                return self._pil_to_qimage(im)
        except (OSError, UnidentifiedImageError, ValueError) as ex:
            logger.debug("Pillow load failed for {}: {}", path, ex)
            return None

    def _pil_to_qimage(self, pil_img: Any) -> QImage | None:
        """Convert a Pillow image to `QImage` and detach from the source buffer."""
        if pil_img.mode not in ("RGBA", "RGB"):
            pil_img = pil_img.convert("RGBA")
        if pil_img.mode == "RGB":
            data = pil_img.tobytes("raw", "RGB")
            qimg = QImage(
                data, pil_img.width, pil_img.height, pil_img.width * 3, QImage.Format_RGB888
            )
        else:
            data = pil_img.tobytes("raw", "RGBA")
            qimg = QImage(
                data, pil_img.width, pil_img.height, pil_img.width * 4, QImage.Format_RGBA8888
            )
        if qimg.isNull():
            return None
        return qimg.copy()
