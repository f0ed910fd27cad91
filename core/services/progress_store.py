"""Crash-safe persistence of triage progress, quota state and the in-flight batch.

Every write goes straight to the backend and is retried a few times before a
`PersistenceError` is raised, so callers can treat a returned call as durable.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from core.errors import PersistenceError
from core.models import (
    BatchState,
    InFlightBatch,
    PhotoFilter,
    ProgressRecord,
    QuotaState,
    SwipeAction,
    SwipeDecision,
)
from core.services.interfaces import PersistenceBackend

PROGRESS_KEY = "progress"
QUOTA_KEY = "quota"
IN_FLIGHT_KEY = "batch.in_flight"

WRITE_ATTEMPTS = 3


def _record_to_dict(record: ProgressRecord) -> dict[str, Any]:
    return {
        "processed_asset_ids": sorted(record.processed_asset_ids),
        "total_processed": record.total_processed,
        "per_filter_processed": dict(record.per_filter_processed),
        "selected_filter": record.selected_filter.key,
        "total_deleted": record.total_deleted,
        "total_storage_saved_bytes": record.total_storage_saved_bytes,
        "active_days": sorted(record.active_days),
    }


def _record_from_dict(raw: dict[str, Any]) -> ProgressRecord:
    try:
        selected = PhotoFilter.from_key(str(raw.get("selected_filter", "random")))
    except ValueError:
        logger.warning("Unknown persisted filter {}, using random", raw.get("selected_filter"))
        selected = PhotoFilter.random()
    return ProgressRecord(
        processed_asset_ids={str(x) for x in raw.get("processed_asset_ids", [])},
        total_processed=int(raw.get("total_processed", 0)),
        per_filter_processed={
            str(k): int(v) for k, v in dict(raw.get("per_filter_processed", {})).items()
        },
        selected_filter=selected,
        total_deleted=int(raw.get("total_deleted", 0)),
        total_storage_saved_bytes=int(raw.get("total_storage_saved_bytes", 0)),
        active_days={str(d) for d in raw.get("active_days", [])},
    )


def _batch_to_dict(batch: BatchState) -> dict[str, Any]:
    return {
        "filter": batch.filter.key,
        "batch_index": batch.batch_index,
        "asset_ids": [a.id for a in batch.assets],
        "cursor": batch.cursor,
        "decisions": [{"asset_id": d.asset_id, "action": d.action.value} for d in batch.decisions],
        "had_any_deletion": batch.had_any_deletion,
    }


def _batch_from_dict(raw: dict[str, Any]) -> InFlightBatch:
    decisions = [
        SwipeDecision(str(d["asset_id"]), SwipeAction(d["action"])) for d in raw["decisions"]
    ]
    asset_ids = [str(x) for x in raw["asset_ids"]]
    cursor = int(raw["cursor"])
    if not 0 <= cursor <= len(asset_ids) or cursor != len(decisions):
        raise ValueError(f"inconsistent cursor {cursor} for {len(decisions)} decisions")
    return InFlightBatch(
        filter_key=str(raw["filter"]),
        batch_index=int(raw["batch_index"]),
        asset_ids=asset_ids,
        cursor=cursor,
        decisions=decisions,
        had_any_deletion=bool(raw.get("had_any_deletion", False)),
    )


class ProgressStore:
    """Reads and writes progress documents through a `PersistenceBackend`."""

    def __init__(self, backend: PersistenceBackend, attempts: int = WRITE_ATTEMPTS) -> None:
        self._backend = backend
        self._attempts = max(1, int(attempts))

    def load(self) -> tuple[ProgressRecord, dict[str, QuotaState]]:
        """Return the persisted progress record and quota states.

        Unreadable documents are logged and replaced by defaults.
        """
        record = ProgressRecord()
        raw = self._backend.get(PROGRESS_KEY)
        if isinstance(raw, dict):
            try:
                record = _record_from_dict(raw)
            except (TypeError, ValueError) as ex:
                logger.error("Progress record unreadable, starting fresh: {}", ex)

        quotas: dict[str, QuotaState] = {}
        raw_quota = self._backend.get(QUOTA_KEY)
        if isinstance(raw_quota, dict):
            for key, value in raw_quota.items():
                try:
                    quotas[str(key)] = QuotaState(
                        day=str(value.get("day", "")),
                        swipes_used_today=int(value.get("swipes_used_today", 0)),
                        bonus_granted=int(value.get("bonus_granted", 0)),
                    )
                except (AttributeError, TypeError, ValueError) as ex:
                    logger.warning("Skipping unreadable quota entry {}: {}", key, ex)
        return record, quotas

    def save(self, record: ProgressRecord) -> None:
        self._write(PROGRESS_KEY, _record_to_dict(record))

    def save_quota(self, states: dict[str, QuotaState]) -> None:
        self._write(
            QUOTA_KEY,
            {
                key: {
                    "day": s.day,
                    "swipes_used_today": s.swipes_used_today,
                    "bonus_granted": s.bonus_granted,
                }
                for key, s in states.items()
            },
        )

    def save_in_flight_batch(self, batch: BatchState) -> None:
        self._write(IN_FLIGHT_KEY, _batch_to_dict(batch))

    def load_in_flight_batch(self) -> InFlightBatch | None:
        raw = self._backend.get(IN_FLIGHT_KEY)
        if not isinstance(raw, dict):
            return None
        try:
            return _batch_from_dict(raw)
        except (KeyError, TypeError, ValueError) as ex:
            logger.warning("Discarding unreadable in-flight batch: {}", ex)
            return None

    def clear_in_flight_batch(self) -> None:
        self._remove(IN_FLIGHT_KEY)

    def reset_all(self) -> None:
        """Drop progress and the in-flight batch. Daily quota usage is kept."""
        self._remove(PROGRESS_KEY)
        self._remove(IN_FLIGHT_KEY)

    def _write(self, key: str, value: Any) -> None:
        self._retry(lambda: self._backend.set(key, value), f"write {key}")

    def _remove(self, key: str) -> None:
        self._retry(lambda: self._backend.remove(key), f"remove {key}")

    def _retry(self, op, what: str) -> None:
        last: Exception | None = None
        for attempt in range(1, self._attempts + 1):
            try:
                op()
                return
            except (PersistenceError, OSError) as ex:
                last = ex
                logger.warning(
                    "Persistence {} failed (attempt {}/{}): {}", what, attempt, self._attempts, ex
                )
        raise PersistenceError(f"{what} failed after {self._attempts} attempts: {last}")
