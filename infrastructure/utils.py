"""Metadata extraction helpers (EXIF and filesystem) for library files.

Best-effort parsing: functions never raise on unreadable files; callers should
expect `None` when data is not available.
"""

from __future__ import annotations

from datetime import datetime
import os
from pathlib import Path
import re
from typing import Any

from loguru import logger
from PIL import Image, UnidentifiedImageError

from core.models import GeoPoint

EXIF_DATETIME_ORIGINAL = 36867
EXIF_DATETIME = 306
EXIF_GPS_IFD = 0x8825

_SCREENSHOT_RE = re.compile(r"(screen[\s_-]?shot|screenshot|screen[\s_-]?capture)", re.IGNORECASE)


def get_filesystem_creation_datetime(path: str) -> datetime | None:
    """Best-effort file creation time.

    On Windows, `os.path.getctime` returns creation time. On other systems it may
    return ctime (metadata change). We accept that as a best-effort value.
    """
    try:
        ts = os.path.getctime(path)
        return datetime.fromtimestamp(ts)
    except (OSError, ValueError) as ex:
        logger.debug("getctime failed for {}: {}", path, ex)
        return None


def _parse_exif_datetime(value: Any) -> datetime | None:
    val_str = str(value).strip().rstrip("\x00")
    try:
        # Common EXIF format: "YYYY:MM:DD HH:MM:SS"
        if len(val_str) >= 19 and val_str[4] == ":" and val_str[7] == ":":
            return datetime.strptime(val_str[:19], "%Y:%m:%d %H:%M:%S")
        return datetime.fromisoformat(val_str.replace("/", "-"))
    except ValueError:
        return None


def _dms_to_degrees(dms: Any, ref: Any) -> float | None:
    try:
        d, m, s = (float(x) for x in dms)
    except (TypeError, ValueError):
        return None
    deg = d + m / 60.0 + s / 3600.0
    if str(ref).upper() in ("S", "W"):
        deg = -deg
    return deg


def read_exif_metadata(path: str) -> tuple[datetime | None, GeoPoint | None]:
    """Return (DateTimeOriginal, GPS position) from EXIF when present."""
    try:
        with Image.open(path) as im:
            exif = im.getexif()
            if not exif:
                return None, None
            # DateTimeOriginal lives in the Exif sub-IFD on most cameras
            sub = exif.get_ifd(0x8769) if hasattr(exif, "get_ifd") else {}
            raw_dt = (
                sub.get(EXIF_DATETIME_ORIGINAL)
                or exif.get(EXIF_DATETIME_ORIGINAL)
                or exif.get(EXIF_DATETIME)
            )
            taken = _parse_exif_datetime(raw_dt) if raw_dt else None

            point: GeoPoint | None = None
            gps = exif.get_ifd(EXIF_GPS_IFD) if hasattr(exif, "get_ifd") else {}
            if gps and 2 in gps and 4 in gps:
                lat = _dms_to_degrees(gps.get(2), gps.get(1, "N"))
                lon = _dms_to_degrees(gps.get(4), gps.get(3, "E"))
                if lat is not None and lon is not None:
                    point = GeoPoint(latitude=lat, longitude=lon)
            return taken, point
    except (OSError, UnidentifiedImageError, ValueError, TypeError) as ex:
        logger.debug("EXIF read failed for {}: {}", path, ex)
        return None, None


def looks_like_screenshot(path: str) -> bool:
    """Heuristic: platform screenshot tools put "Screenshot" in the file name."""
    return bool(_SCREENSHOT_RE.search(Path(path).name))


def get_file_size(path: str) -> int | None:
    try:
        return int(os.path.getsize(path))
    except OSError as ex:
        logger.debug("getsize failed for {}: {}", path, ex)
        return None
