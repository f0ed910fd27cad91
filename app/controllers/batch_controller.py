"""Batch review and deletion state machine.

`BatchController` is the single owner of the batch, progress and quota state.
It assembles fixed-size batches from the filtered pool, records swipe
decisions (persisting each one before it is reported as accepted), moves
between the review, checkpoint, continue and completion screens, and
coordinates deletion of the assets marked for removal.

All methods are expected to be called from one thread (the event loop that
owns the controller). Library scans, deletions and image fetches run on worker
threads through `asyncio.to_thread` and hand their results back to that loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import date
from enum import Enum

from loguru import logger

from core.errors import DeletionError, PersistenceError
from core.models import (
    Asset,
    BatchPhase,
    BatchState,
    BatchSummary,
    Entitlement,
    FilterKind,
    InFlightBatch,
    PhotoFilter,
    ProgressRecord,
    SwipeAction,
    SwipeDecision,
)
from core.services.filter_engine import FilterEngine
from core.services.interfaces import (
    AssetCatalog,
    ContentFetcher,
    DeleteResult,
    DeletionExecutor,
    EntitlementProvider,
    FetchedContent,
    MediaKinds,
    QualityHint,
)
from core.services.progress_store import ProgressStore
from core.services.quota_gate import DAILY_FREE_LIMIT, SWIPES_BETWEEN_ADS, QuotaGate

BATCH_SIZE = 10
REWARDED_GRANT = 50
FETCH_DEADLINE_SECONDS = 2.0


class SwipeOutcome(str, Enum):
    """Result of a swipe request."""

    ACCEPTED = "accepted"
    QUOTA_EXCEEDED = "quota_exceeded"
    IGNORED = "ignored"
    NOT_PERSISTED = "not_persisted"


def batch_window(
    pool_size: int, batch_index: int, batch_size: int, shift: int = 0
) -> tuple[int, int] | None:
    """Return the `[start, end)` slice of batch `batch_index`, or None past the end.

    `shift` is the number of pool entries removed before the window (deleted
    assets of earlier batches), so slicing stays aligned with a shrunk pool.
    """
    start = batch_index * batch_size - shift
    if start < 0 or start >= pool_size:
        return None
    end = min(start + batch_size, pool_size)
    if end <= start:
        return None
    return start, end


def _bump(counts: dict[str, int], key: str, delta: int) -> None:
    counts[key] = max(0, counts.get(key, 0) + delta)


class BatchController:
    """Drives the load → swipe → review → confirm → continue cycle."""

    def __init__(
        self,
        catalog: AssetCatalog,
        deleter: DeletionExecutor,
        store: ProgressStore,
        entitlements: EntitlementProvider,
        *,
        fetcher: ContentFetcher | None = None,
        filter_engine: FilterEngine | None = None,
        media_kinds: MediaKinds = MediaKinds.PHOTOS_AND_VIDEOS,
        batch_size: int = BATCH_SIZE,
        daily_free_limit: int = DAILY_FREE_LIMIT,
        swipes_between_ads: int = SWIPES_BETWEEN_ADS,
        fetch_deadline: float = FETCH_DEADLINE_SECONDS,
        today: Callable[[], date] = date.today,
    ) -> None:
        """Create a controller.

        Args:
            catalog: Source of library assets.
            deleter: Executes deletions for confirmed batches.
            store: Durable progress storage; loaded immediately.
            entitlements: Provider polled before swipes and observed for changes.
            fetcher: Optional thumbnail/preview loader.
            filter_engine: Filter classifier (defaults to an unseeded `FilterEngine`).
            media_kinds: Asset kinds requested from the catalog.
            batch_size: Number of assets per batch.
            daily_free_limit: Free swipes per filter per day for limited users.
            swipes_between_ads: Interstitial ad interval for limited users.
            fetch_deadline: Default seconds allowed for a content fetch.
            today: Clock used for "on this day", quota rollover and active days.
        """
        self._catalog = catalog
        self._deleter = deleter
        self._store = store
        self._entitlements = entitlements
        self._fetcher = fetcher
        self._engine = filter_engine or FilterEngine()
        self._media_kinds = media_kinds
        self._batch_size = max(1, int(batch_size))
        self._fetch_deadline = fetch_deadline
        self._today = today

        record, quotas = store.load()
        self._progress: ProgressRecord = record
        self._quota = QuotaGate(
            quotas,
            daily_free_limit=daily_free_limit,
            swipes_between_ads=swipes_between_ads,
            today=today,
        )

        self._phase = BatchPhase.LOADING
        self._library: list[Asset] = []
        self._pool: list[Asset] = []
        self._shift = 0
        self._batch_index = 0
        self._batch: BatchState | None = None
        self._scan_generation = 0
        self._confirming = False
        self._last_summary = BatchSummary()

        self.quota_blocked = False
        self.upgrade_prompt = False
        self.last_error: str | None = None

        entitlements.subscribe(self._on_entitlement_changed)
        self._on_entitlement_changed(entitlements.current_entitlement())

    # Queries
    @property
    def phase(self) -> BatchPhase:
        return self._phase

    @property
    def batch(self) -> BatchState | None:
        """Copy of the batch on screen, if any."""
        return self._batch.copy() if self._batch is not None else None

    @property
    def batch_index(self) -> int:
        return self._batch_index

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def current_asset(self) -> Asset | None:
        if self._batch is None or self._phase is not BatchPhase.SWIPING:
            return None
        return self._batch.current_asset

    @property
    def progress(self) -> ProgressRecord:
        return self._progress.copy()

    @property
    def quota(self) -> QuotaGate:
        return self._quota

    @property
    def selected_filter(self) -> PhotoFilter:
        return self._progress.selected_filter

    @property
    def pool(self) -> list[Asset]:
        return list(self._pool)

    @property
    def last_batch_summary(self) -> BatchSummary:
        return self._last_summary

    @property
    def is_confirming(self) -> bool:
        return self._confirming

    @property
    def pending_deletions(self) -> list[Asset]:
        """Assets of the current batch marked for deletion, in swipe order."""
        if self._batch is None:
            return []
        by_id = {a.id: a for a in self._batch.assets}
        return [
            by_id[d.asset_id]
            for d in self._batch.decisions
            if d.action is SwipeAction.DELETE and d.asset_id in by_id
        ]

    @property
    def remaining_unprocessed(self) -> int:
        """Pool assets that have neither been committed nor decided in this batch."""
        decided = {d.asset_id for d in self._batch.decisions} if self._batch else set()
        processed = self._progress.processed_asset_ids
        return sum(1 for a in self._pool if a.id not in processed and a.id not in decided)

    def available_years(self) -> list[int]:
        return self._engine.available_years(self._library)

    def filter_counts(self, filters: list[PhotoFilter] | None = None) -> dict[str, int]:
        """Unprocessed counts for the standard filters plus every available year."""
        if filters is None:
            filters = [PhotoFilter.random(), PhotoFilter.on_this_day(), PhotoFilter.screenshots()]
            filters += [PhotoFilter.for_year(y) for y in self.available_years()]
        return self._engine.filter_counts(
            self._library, filters, self._progress.processed_asset_ids, self._today()
        )

    def can_swipe(self) -> bool:
        if self._phase is not BatchPhase.SWIPING or self._batch is None:
            return False
        return self._quota.can_swipe(
            self._batch.filter.key, self._entitlements.current_entitlement()
        )

    @property
    def ad_due(self) -> bool:
        return self._quota.should_show_ad(self._entitlements.current_entitlement())

    def dismiss_ad(self) -> None:
        self._quota.reset_ad_counter()

    # Library loading
    async def load_library(self) -> BatchPhase:
        """Scan the catalog off-thread and (re)build the session.

        Also used for refresh. Only the most recent scan is applied; results of
        scans superseded while running are discarded. An interrupted in-flight
        batch for the selected filter is restored.
        """
        self._scan_generation += 1
        generation = self._scan_generation
        if self._batch is None:
            self._phase = BatchPhase.LOADING
        try:
            assets = await asyncio.to_thread(self._catalog.list_assets, self._media_kinds)
        except OSError as ex:
            logger.error("Library scan failed: {}", ex)
            if generation == self._scan_generation:
                self.last_error = f"Could not read the library: {ex}"
                if self._batch is None:
                    self._phase = BatchPhase.EMPTY
            return self._phase

        if generation != self._scan_generation:
            logger.info(
                "Discarding stale library scan {} (latest {})", generation, self._scan_generation
            )
            return self._phase
        if self._confirming:
            logger.info("Library scan {} ignored while a deletion is running", generation)
            return self._phase

        self._library = list(assets)
        logger.info("Library scan {} loaded {} assets", generation, len(self._library))
        self._start_session(restore=True)
        return self._phase

    def _start_session(self, restore: bool) -> None:
        flt = self._progress.selected_filter
        pool = self._engine.select_unprocessed(
            self._library, flt, self._progress.processed_asset_ids, self._today()
        )
        self._batch = None
        self._shift = 0
        self._batch_index = 0

        if restore:
            saved = self._store.load_in_flight_batch()
            if saved is not None:
                if self._resume(saved, pool):
                    return
                self._clear_in_flight()

        self._pool = pool
        if not pool:
            logger.info("No unprocessed assets for filter {}", flt.key)
            self._phase = BatchPhase.EMPTY
            return
        self.assemble_batch(0)

    def _resume(self, saved: InFlightBatch, pool: list[Asset]) -> bool:
        flt = self._progress.selected_filter
        if saved.filter_key != flt.key:
            logger.info(
                "In-flight batch belongs to {}, selected filter is {}", saved.filter_key, flt.key
            )
            return False
        by_id = {a.id: a for a in pool}
        missing = [i for i in saved.asset_ids if i not in by_id]
        if missing or not saved.asset_ids:
            logger.warning("Cannot resume in-flight batch, {} assets unavailable", len(missing))
            return False

        batch_ids = set(saved.asset_ids)
        batch_assets = [by_id[i] for i in saved.asset_ids]
        # Resumed batch goes first; the window shift keeps batch_index slicing aligned.
        self._pool = batch_assets + [a for a in pool if a.id not in batch_ids]
        self._batch_index = saved.batch_index
        self._shift = saved.batch_index * self._batch_size
        self._batch = BatchState(
            filter=flt,
            batch_index=saved.batch_index,
            assets=batch_assets,
            cursor=saved.cursor,
            decisions=list(saved.decisions),
            had_any_deletion=saved.had_any_deletion,
        )
        logger.info(
            "Resumed batch {} of {} at {}/{}",
            saved.batch_index,
            flt.key,
            saved.cursor,
            len(batch_assets),
        )
        if self._batch.is_fully_decided:
            self._finish_batch()
        else:
            self._phase = BatchPhase.SWIPING
        return True

    # Batch assembly
    def assemble_batch(self, batch_index: int) -> BatchPhase:
        """Start batch `batch_index` of the current pool, or complete past its end."""
        if self._confirming:
            return self._phase
        flt = self._progress.selected_filter
        self._batch_index = batch_index
        window = batch_window(len(self._pool), batch_index, self._batch_size, self._shift)
        if window is None:
            start = batch_index * self._batch_size - self._shift
            if start > len(self._pool) or start < 0:
                logger.warning(
                    "Batch {} start {} outside pool of {}; treating as complete",
                    batch_index,
                    start,
                    len(self._pool),
                )
            self._batch = None
            self._phase = BatchPhase.COMPLETED
            self._clear_in_flight()
            return self._phase

        start, end = window
        self._batch = BatchState(filter=flt, batch_index=batch_index, assets=self._pool[start:end])
        self._phase = BatchPhase.SWIPING
        logger.info("Batch {} of {} assembled with {} assets", batch_index, flt.key, end - start)
        try:
            self._store.save_in_flight_batch(self._batch)
        except PersistenceError as ex:
            self._report_persistence(ex)
        return self._phase

    # Swiping
    def swipe(self, action: SwipeAction) -> SwipeOutcome:
        """Record `action` for the current asset and advance.

        The decision, the processed counters and the quota usage are written to
        the store before the cursor moves; if that fails nothing changes.
        """
        batch = self._batch
        if self._phase is not BatchPhase.SWIPING or batch is None:
            return SwipeOutcome.IGNORED
        asset = batch.current_asset
        if asset is None:
            return SwipeOutcome.IGNORED

        key = batch.filter.key
        if not self._quota.can_swipe(key, self._entitlements.current_entitlement()):
            self.quota_blocked = True
            logger.info("Swipe refused for {}: daily limit reached", key)
            return SwipeOutcome.QUOTA_EXCEEDED

        new_batch = batch.copy()
        new_batch.decisions.append(SwipeDecision(asset.id, action))
        new_batch.cursor += 1
        if action is SwipeAction.DELETE:
            new_batch.had_any_deletion = True
        progress = self._progress.copy()
        self._count(progress, batch.filter, asset, +1)
        quota_before = self._quota.snapshot()
        self._quota.record_swipe(key)

        try:
            self._store.save_in_flight_batch(new_batch)
            self._store.save(progress)
            self._store.save_quota(self._quota.snapshot())
        except PersistenceError as ex:
            self._quota.restore(quota_before)
            self._report_persistence(ex)
            return SwipeOutcome.NOT_PERSISTED

        self._batch = new_batch
        self._progress = progress
        if new_batch.is_fully_decided:
            self._finish_batch()
        return SwipeOutcome.ACCEPTED

    def _count(self, progress: ProgressRecord, flt: PhotoFilter, asset: Asset, delta: int) -> None:
        progress.total_processed = max(0, progress.total_processed + delta)
        _bump(progress.per_filter_processed, flt.key, delta)
        # Random swipes also count towards the asset's year
        if flt.kind is FilterKind.RANDOM and asset.created_at is not None:
            year_key = PhotoFilter.for_year(asset.created_at.year).key
            _bump(progress.per_filter_processed, year_key, delta)

    def _finish_batch(self) -> None:
        batch = self._batch
        assert batch is not None
        has_delete = any(d.action is SwipeAction.DELETE for d in batch.decisions)
        if has_delete or batch.had_any_deletion:
            self._phase = BatchPhase.REVIEWING
            return
        self._phase = BatchPhase.CHECKPOINT
        # Everything was kept: commit right away, continue_from_checkpoint re-commits idempotently.
        self._commit(batch, [])

    def undo(self) -> bool:
        """Remove the most recent decision and step back one asset."""
        batch = self._batch
        if batch is None or not batch.decisions:
            return False
        if self._phase not in (BatchPhase.SWIPING, BatchPhase.REVIEWING):
            return False

        new_batch = batch.copy()
        last = new_batch.decisions.pop()
        new_batch.cursor -= 1
        new_batch.had_any_deletion = any(
            d.action is SwipeAction.DELETE for d in new_batch.decisions
        )
        asset = next((a for a in batch.assets if a.id == last.asset_id), None)
        progress = self._progress.copy()
        if asset is not None:
            self._count(progress, batch.filter, asset, -1)

        try:
            self._store.save_in_flight_batch(new_batch)
            self._store.save(progress)
        except PersistenceError as ex:
            self._report_persistence(ex)
            return False

        self._batch = new_batch
        self._progress = progress
        self._phase = BatchPhase.SWIPING
        return True

    def undo_delete(self, asset_id: str) -> bool:
        """On the review screen, turn a delete decision back into keep."""
        if self._phase is not BatchPhase.REVIEWING or self._batch is None:
            return False
        new_batch = self._batch.copy()
        for decision in new_batch.decisions:
            if decision.asset_id == asset_id and decision.action is SwipeAction.DELETE:
                decision.action = SwipeAction.KEEP
                return self._replace_review_batch(new_batch)
        return False

    def keep_all(self) -> bool:
        """On the review screen, turn every delete decision into keep."""
        if self._phase is not BatchPhase.REVIEWING or self._batch is None:
            return False
        new_batch = self._batch.copy()
        for decision in new_batch.decisions:
            decision.action = SwipeAction.KEEP
        return self._replace_review_batch(new_batch)

    def _replace_review_batch(self, new_batch: BatchState) -> bool:
        try:
            self._store.save_in_flight_batch(new_batch)
        except PersistenceError as ex:
            self._report_persistence(ex)
            return False
        self._batch = new_batch
        return True

    # Confirmation
    async def confirm_batch(self) -> BatchPhase:
        """Commit the reviewed batch, deleting the assets marked for deletion.

        On deletion failure the decisions are kept and the controller returns
        to the review screen with `last_error` set. A call while another
        confirmation is outstanding is ignored.
        """
        if self._confirming:
            logger.warning("confirm_batch ignored: confirmation already running")
            return self._phase
        batch = self._batch
        if self._phase is not BatchPhase.REVIEWING or batch is None or not batch.decisions:
            return self._phase

        delete_ids = [d.asset_id for d in batch.decisions if d.action is SwipeAction.DELETE]
        if not delete_ids:
            if self._commit(batch, []):
                self._advance_after_commit(had_deletions=False)
            return self._phase

        self._confirming = True
        self._phase = BatchPhase.CONFIRMING_DELETION
        self.last_error = None
        logger.info("Deleting {} assets from batch {}", len(delete_ids), batch.batch_index)
        try:
            result = await self._deleter.delete(list(delete_ids))
        except (DeletionError, OSError) as ex:
            logger.error("Deletion executor raised: {}", ex)
            result = DeleteResult(failed=[(i, str(ex)) for i in delete_ids])
        finally:
            self._confirming = False

        if not result.ok:
            logger.error(
                "Deletion failed for {} of {} assets; batch kept for retry",
                len(result.failed),
                len(delete_ids),
            )
            self.last_error = f"Deletion failed for {len(result.failed)} item(s)"
            self._phase = BatchPhase.REVIEWING
            return self._phase

        by_id = {a.id: a for a in batch.assets}
        deleted = [by_id[i] for i in delete_ids if i in by_id]
        if not self._commit(batch, deleted):
            self._phase = BatchPhase.REVIEWING
            return self._phase
        self._advance_after_commit(had_deletions=True)
        return self._phase

    def _commit(self, batch: BatchState, deleted: list[Asset]) -> bool:
        """Mark every decided asset processed and record deletion stats."""
        progress = self._progress.copy()
        progress.processed_asset_ids.update(d.asset_id for d in batch.decisions)
        saved_bytes = sum(a.estimated_bytes or 0 for a in deleted)
        progress.total_deleted += len(deleted)
        progress.total_storage_saved_bytes += saved_bytes
        progress.active_days.add(self._today().isoformat())
        try:
            self._store.save(progress)
            self._store.clear_in_flight_batch()
        except PersistenceError as ex:
            self._report_persistence(ex)
            return False

        self._progress = progress
        if deleted:
            gone = {a.id for a in deleted}
            before = len(self._pool)
            self._pool = [a for a in self._pool if a.id not in gone]
            self._shift += before - len(self._pool)
        self._last_summary = BatchSummary(
            deleted_count=len(deleted), storage_saved_bytes=saved_bytes
        )
        logger.info(
            "Batch {} committed: {} processed, {} deleted, {} bytes saved",
            batch.batch_index,
            len(batch.decisions),
            len(deleted),
            saved_bytes,
        )
        return True

    def _advance_after_commit(self, had_deletions: bool) -> None:
        next_index = self._batch_index + 1
        if batch_window(len(self._pool), next_index, self._batch_size, self._shift) is None:
            self._batch = None
            self._phase = BatchPhase.COMPLETED
        elif had_deletions:
            self._batch = None
            self._phase = BatchPhase.CONTINUING
        else:
            self.assemble_batch(next_index)

    def continue_from_checkpoint(self) -> BatchPhase:
        """Leave the all-kept checkpoint for the next batch or completion."""
        if self._phase is not BatchPhase.CHECKPOINT or self._batch is None:
            return self._phase
        if not self._commit(self._batch, []):
            return self._phase
        self._advance_after_commit(had_deletions=False)
        return self._phase

    def proceed_to_next_batch(self) -> BatchPhase:
        """Leave the deletion summary for the next batch."""
        if self._phase is not BatchPhase.CONTINUING:
            return self._phase
        self.assemble_batch(self._batch_index + 1)
        return self._phase

    # Session control
    def switch_filter(self, new_filter: PhotoFilter) -> BatchPhase:
        """Abandon the current batch and start over on `new_filter`.

        Decisions of the abandoned batch are discarded; counters already
        incremented by its swipes are kept.
        """
        if self._confirming:
            logger.warning("Filter switch ignored while a deletion is running")
            return self._phase
        progress = self._progress.copy()
        progress.selected_filter = new_filter
        try:
            self._store.save(progress)
            self._store.clear_in_flight_batch()
        except PersistenceError as ex:
            self._report_persistence(ex)
            return self._phase
        self._progress = progress
        logger.info("Switched filter to {}", new_filter.key)
        if self._phase is BatchPhase.LOADING and not self._library:
            return self._phase
        self._start_session(restore=False)
        return self._phase

    def full_reset(self) -> BatchPhase:
        """Forget all progress and return to LOADING; call `load_library()` next."""
        if self._confirming:
            logger.warning("Reset ignored while a deletion is running")
            return self._phase
        fresh = ProgressRecord(selected_filter=self._progress.selected_filter)
        try:
            self._store.reset_all()
            self._store.save(fresh)
        except PersistenceError as ex:
            self._report_persistence(ex)
            return self._phase
        self._progress = fresh
        self._batch = None
        self._pool = []
        self._shift = 0
        self._batch_index = 0
        self._last_summary = BatchSummary()
        self._phase = BatchPhase.LOADING
        logger.info("Progress reset")
        return self._phase

    # Quota and entitlement
    def grant_rewarded_swipes(self, count: int = REWARDED_GRANT) -> None:
        """Grant bonus swipes to the global pool after a rewarded ad.

        The pool is shared by every filter, so the grant survives a filter switch.
        """
        key = self._progress.selected_filter.key
        before = self._quota.snapshot()
        self._quota.grant_bonus(None, count)
        try:
            self._store.save_quota(self._quota.snapshot())
        except PersistenceError as ex:
            self._quota.restore(before)
            self._report_persistence(ex)
            return
        entitlement = self._entitlements.current_entitlement()
        self.quota_blocked = not self._quota.can_swipe(key, entitlement)

    def _on_entitlement_changed(self, entitlement: Entitlement) -> None:
        logger.info("Entitlement is now {}", entitlement.value)
        if entitlement.is_unlimited:
            self.quota_blocked = False
            self.upgrade_prompt = False
        else:
            self.upgrade_prompt = entitlement in (Entitlement.EXPIRED, Entitlement.CANCELLED)

    # Content
    async def load_current_content(
        self, quality: QualityHint = QualityHint.PREVIEW, deadline: float | None = None
    ) -> FetchedContent | None:
        """Fetch content for the displayed asset; None if it changed meanwhile."""
        asset = self.current_asset
        if asset is None or self._fetcher is None:
            return None
        try:
            content = await asyncio.to_thread(
                self._fetcher.fetch_best_effort,
                asset,
                quality,
                self._fetch_deadline if deadline is None else deadline,
            )
        except OSError as ex:
            logger.warning("Content fetch failed for {}: {}", asset.id, ex)
            content = FetchedContent(asset_id=asset.id, image=None, degraded=True)
        shown = self.current_asset
        if shown is None or shown.id != asset.id:
            logger.debug("Dropping content for {}: no longer displayed", asset.id)
            return None
        return content

    # Helpers
    def _clear_in_flight(self) -> None:
        try:
            self._store.clear_in_flight_batch()
        except PersistenceError as ex:
            self._report_persistence(ex)

    def _report_persistence(self, ex: PersistenceError) -> None:
        logger.error("Progress could not be saved: {}", ex)
        self.last_error = f"Progress could not be saved: {ex}"
