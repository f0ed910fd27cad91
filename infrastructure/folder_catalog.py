"""Asset catalog backed by a folder tree of photos and videos."""

from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

from core.models import Asset, MediaType
from core.services.interfaces import MediaKinds
from infrastructure.utils import (
    get_file_size,
    get_filesystem_creation_datetime,
    looks_like_screenshot,
    read_exif_metadata,
)

PHOTO_EXTENSIONS = {
    ".jpg",
    ".jpeg",
    ".png",
    ".heic",
    ".heif",
    ".gif",
    ".bmp",
    ".tif",
    ".tiff",
    ".webp",
    ".dng",
}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".m4v", ".avi", ".mkv", ".3gp", ".webm"}


class FolderAssetCatalog:
    """Enumerates media files below `root`; asset ids are absolute paths."""

    def __init__(self, root: str | Path, include_hidden: bool = False) -> None:
        self._root = Path(root)
        self._include_hidden = include_hidden

    @property
    def root(self) -> Path:
        return self._root

    def list_assets(self, media_kinds: MediaKinds) -> list[Asset]:
        """Walk the folder and build assets, newest first."""
        if not self._root.is_dir():
            raise FileNotFoundError(f"Library folder not found: {self._root}")

        assets: list[Asset] = []
        for dirpath, dirnames, filenames in os.walk(self._root):
            if not self._include_hidden:
                dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for name in filenames:
                if not self._include_hidden and name.startswith("."):
                    continue
                asset = self._build_asset(os.path.join(dirpath, name), media_kinds)
                if asset is not None:
                    assets.append(asset)

        assets.sort(key=lambda a: a.created_at.timestamp() if a.created_at else 0.0, reverse=True)
        logger.info("Catalog {} listed {} assets ({})", self._root, len(assets), media_kinds.value)
        return assets

    def _build_asset(self, path: str, media_kinds: MediaKinds) -> Asset | None:
        ext = Path(path).suffix.lower()
        if ext in PHOTO_EXTENSIONS:
            media_type = MediaType.PHOTO
        elif ext in VIDEO_EXTENSIONS and media_kinds is MediaKinds.PHOTOS_AND_VIDEOS:
            media_type = MediaType.VIDEO
        else:
            return None

        abs_path = os.path.abspath(path)
        created = None
        location = None
        if media_type is MediaType.PHOTO:
            created, location = read_exif_metadata(abs_path)
        if created is None:
            created = get_filesystem_creation_datetime(abs_path)
        return Asset(
            id=abs_path,
            media_type=media_type,
            created_at=created,
            location=location,
            is_screenshot=media_type is MediaType.PHOTO and looks_like_screenshot(abs_path),
            estimated_bytes=get_file_size(abs_path),
        )
