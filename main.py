from __future__ import annotations

import asyncio
from pathlib import Path
import sys

from loguru import logger

from app.controllers.batch_controller import BatchController, SwipeOutcome
from core.models import BatchPhase, Entitlement, PhotoFilter, SwipeAction
from core.services.interfaces import MediaKinds, QualityHint
from core.services.progress_store import ProgressStore
from infrastructure.delete_service import TrashDeletionExecutor
from infrastructure.entitlements import StaticEntitlementProvider
from infrastructure.folder_catalog import FolderAssetCatalog
from infrastructure.image_service import QtContentFetcher
from infrastructure.kv_store import SqliteBackend
from infrastructure.logging import get_log_directory, init_logging
from infrastructure.settings import JsonSettings

BASE_DIR = Path(__file__).parent

HELP = (
    "[k]eep  [d]elete  [u]ndo  [a] keep all  [c]onfirm/continue  bonus  "
    "[f]ilter <key>  [r]eset  [q]uit"
)


def build_controller(
    settings: JsonSettings, backend: SqliteBackend, fetcher: QtContentFetcher
) -> BatchController:
    """Wire the folder catalog, progress store and trash executor from settings."""
    try:
        media_kinds = MediaKinds(str(settings.get("library.content_type", "photos_and_videos")))
    except ValueError:
        logger.warning("Unknown library.content_type, using photos_and_videos")
        media_kinds = MediaKinds.PHOTOS_AND_VIDEOS
    try:
        entitlement = Entitlement(str(settings.get("entitlement.default", "unsubscribed")))
    except ValueError:
        entitlement = Entitlement.UNSUBSCRIBED

    return BatchController(
        catalog=FolderAssetCatalog(settings.get_path("library.root", Path.home() / "Pictures")),
        deleter=TrashDeletionExecutor(settings.get("delete.log_dir")),
        store=ProgressStore(backend),
        entitlements=StaticEntitlementProvider(entitlement),
        fetcher=fetcher,
        media_kinds=media_kinds,
        batch_size=settings.get_int("batch.size", 10),
        daily_free_limit=settings.get_int("quota.daily_free_limit", 10),
        swipes_between_ads=settings.get_int("quota.swipes_between_ads", 5),
        fetch_deadline=settings.get_float("fetch.deadline_seconds", 2.0),
    )


def _describe(ctl: BatchController) -> str:
    phase = ctl.phase
    if phase is BatchPhase.SWIPING and ctl.batch is not None:
        batch = ctl.batch
        asset = ctl.current_asset
        position = f"{batch.cursor + 1}/{len(batch.assets)}"
        return f"[{ctl.selected_filter.display_name}] {position} {asset.id if asset else ''}"
    if phase is BatchPhase.REVIEWING:
        marked = len(ctl.pending_deletions)
        return f"Review: {marked} marked for deletion. [c]onfirm [a] keep all [u]ndo"
    if phase is BatchPhase.CHECKPOINT:
        return "All kept. [c]ontinue"
    if phase is BatchPhase.CONTINUING:
        s = ctl.last_batch_summary
        return f"Deleted {s.deleted_count} items, {s.storage_saved_bytes} bytes saved. [c]ontinue"
    return f"{phase.value}. {ctl.remaining_unprocessed} unprocessed"


async def run_session(ctl: BatchController, rewarded_grant: int = 50) -> int:
    await ctl.load_library()
    print(HELP)
    loop = asyncio.get_running_loop()
    while True:
        print(_describe(ctl))
        content = await ctl.load_current_content(QualityHint.THUMBNAIL)
        if content is not None and content.degraded:
            print("  (preview unavailable)")
        if ctl.last_error:
            print(f"! {ctl.last_error}")
            ctl.last_error = None
        line = (await loop.run_in_executor(None, sys.stdin.readline)).strip()
        if not line or line == "q":
            return 0
        cmd, _, arg = line.partition(" ")
        if cmd in ("k", "d"):
            outcome = ctl.swipe(SwipeAction.KEEP if cmd == "k" else SwipeAction.DELETE)
            if outcome is SwipeOutcome.QUOTA_EXCEEDED:
                print("Daily limit reached. Type 'bonus' to watch a rewarded ad.")
            elif ctl.ad_due:
                print("(ad break)")
                ctl.dismiss_ad()
        elif cmd == "bonus":
            ctl.grant_rewarded_swipes(rewarded_grant)
        elif cmd == "u":
            ctl.undo()
        elif cmd == "a":
            ctl.keep_all()
        elif cmd == "c":
            if ctl.phase is BatchPhase.REVIEWING:
                await ctl.confirm_batch()
            elif ctl.phase is BatchPhase.CHECKPOINT:
                ctl.continue_from_checkpoint()
            elif ctl.phase is BatchPhase.CONTINUING:
                ctl.proceed_to_next_batch()
        elif cmd == "f":
            try:
                ctl.switch_filter(PhotoFilter.from_key(arg.strip() or "random"))
            except ValueError:
                print(f"Unknown filter: {arg}; try one of {sorted(ctl.filter_counts())}")
        elif cmd == "r":
            ctl.full_reset()
            await ctl.load_library()
        else:
            print(HELP)


def main() -> int:
    settings = JsonSettings(BASE_DIR / "settings.json")
    init_logging(str(settings.get_path("logging.dir", get_log_directory())), console=True)
    backend = SqliteBackend(settings.get_path("storage.db_path", "~/.photo_triage/progress.db"))
    fetcher = QtContentFetcher(
        preview_side=settings.get_int("fetch.preview_side", 1024),
        thumbnail_side=settings.get_int("fetch.thumbnail_side", 256),
    )
    try:
        ctl = build_controller(settings, backend, fetcher)
        return asyncio.run(run_session(ctl, settings.get_int("quota.rewarded_grant", 50)))
    finally:
        fetcher.close()
        backend.close()


if __name__ == "__main__":
    raise SystemExit(main())
