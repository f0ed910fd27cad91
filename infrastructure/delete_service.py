"""Recoverable deletion of library files.

Files are moved to the OS recycle bin with send2trash, and every confirmed
batch produces an audit CSV under the delete log directory.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
import csv
from datetime import datetime
import os
from pathlib import Path

from loguru import logger
from send2trash import send2trash

from core.services.interfaces import DeleteResult
from infrastructure.logging import get_delete_log_directory


class TrashDeletionExecutor:
    """Deletes assets whose ids are file paths by sending them to the trash."""

    def __init__(self, log_dir: str | None = None) -> None:
        self._log_dir = log_dir

    async def delete(self, asset_ids: Iterable[str]) -> DeleteResult:
        """Trash the files off the event loop and write the audit log."""
        paths = list(asset_ids)
        result = await asyncio.to_thread(self.delete_to_recycle, paths)
        await asyncio.to_thread(self.write_log, result)
        return result

    def delete_to_recycle(self, paths: list[str]) -> DeleteResult:
        """Send files to the recycle bin and report per-path results.

        A file that no longer exists counts as deleted, so retrying a batch
        whose first attempt partially succeeded converges.
        """
        success: list[str] = []
        failed: list[tuple[str, str]] = []
        for p in paths:
            normalized_path = os.path.normpath(p)
            if not os.path.exists(normalized_path):
                logger.warning("Already gone, treating as deleted: {}", normalized_path)
                success.append(p)
                continue
            try:
                send2trash(normalized_path)
                success.append(p)
            except (UnicodeEncodeError, OSError) as ex:
                logger.warning("Trash with normalized path failed {}: {}", normalized_path, ex)
                try:
                    send2trash(os.path.abspath(p))
                    success.append(p)
                except (UnicodeEncodeError, OSError) as ex2:
                    logger.error("All delete methods failed for {}: {} / {}", p, ex, ex2)
                    failed.append((p, f"{ex}; {ex2}"))
        return DeleteResult(success_ids=success, failed=failed)

    def write_log(self, result: DeleteResult) -> None:
        """Write an audit CSV for `result` and store its path on the result."""
        try:
            if self._log_dir:
                base_dir = os.path.expanduser(os.path.expandvars(self._log_dir))
            else:
                base_dir = get_delete_log_directory()
            Path(base_dir).mkdir(parents=True, exist_ok=True)
            ts = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            log_path = os.path.join(base_dir, f"delete_{ts}.csv")
            with open(log_path, "w", encoding="utf-8", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(["AssetId", "Success", "Reason"])
                for p in result.success_ids:
                    writer.writerow([p, 1, ""])
                for p, reason in result.failed:
                    writer.writerow([p, 0, reason])
            result.log_path = log_path
            logger.info(
                "Delete log written: {} ({} success, {} failed)",
                log_path,
                len(result.success_ids),
                len(result.failed),
            )
        except (OSError, ValueError) as ex:
            logger.error("Write delete log failed: {}", ex)
