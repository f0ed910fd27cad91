"""Logging initialization utilities using loguru."""

from __future__ import annotations

from pathlib import Path
import sys

from loguru import logger

APP_DIR = Path.home() / ".photo_triage"


def get_log_directory() -> str:
    """Get the main log directory path."""
    return str(APP_DIR / "logs")


def get_delete_log_directory() -> str:
    """Get the delete audit log directory path."""
    return str(APP_DIR / "delete_logs")


def init_logging(log_dir: str | None = None, level: str = "INFO", console: bool = False) -> Path:
    """Send logs to a rotating file under `log_dir` (and optionally stderr).

    Returns the directory the log files are written to.
    """
    log_path = Path(log_dir) if log_dir else Path(get_log_directory())
    log_path.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(
        str(log_path / "app_{time:YYYYMMDD}.log"),
        rotation="10 MB",
        retention="10 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        level=level,
    )
    if console:
        logger.add(sys.stderr, level="WARNING", format="{level}: {message}")
    return log_path


def _latest(directory: Path, pattern: str) -> Path | None:
    try:
        if not directory.is_dir():
            return None
        return max(directory.glob(pattern), key=lambda p: p.stat().st_mtime, default=None)
    except (OSError, ValueError):
        return None


def find_latest_log_file(log_dir: str | None = None) -> Path | None:
    """Most recently written application log, if any."""
    return _latest(Path(log_dir or get_log_directory()), "app_*.log")


def find_latest_delete_log_file(log_dir: str | None = None) -> Path | None:
    """Most recently written delete audit CSV, if any."""
    return _latest(Path(log_dir or get_delete_log_directory()), "delete_*.csv")
