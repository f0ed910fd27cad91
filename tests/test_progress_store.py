import pytest

from core.errors import PersistenceError
from core.models import (
    BatchState,
    PhotoFilter,
    ProgressRecord,
    QuotaState,
    SwipeAction,
    SwipeDecision,
)
from core.services.progress_store import IN_FLIGHT_KEY, PROGRESS_KEY, ProgressStore
from fakes import FlakyBackend, make_assets
from infrastructure.kv_store import MemoryBackend, SqliteBackend


@pytest.fixture(params=["memory", "sqlite"])
def backend(request, tmp_path):
    if request.param == "memory":
        yield MemoryBackend()
        return
    db = SqliteBackend(tmp_path / "state" / "progress.db")
    yield db
    db.close()


def _record() -> ProgressRecord:
    return ProgressRecord(
        processed_asset_ids={"a1", "a2"},
        total_processed=5,
        per_filter_processed={"random": 3, "year_2021": 3, "screenshots": 2},
        selected_filter=PhotoFilter.for_year(2021),
        total_deleted=1,
        total_storage_saved_bytes=4096,
        active_days={"2024-06-14", "2024-06-15"},
    )


def test_fresh_store_loads_defaults(backend):
    record, quotas = ProgressStore(backend).load()
    assert record == ProgressRecord()
    assert quotas == {}
    assert ProgressStore(backend).load_in_flight_batch() is None


def test_progress_and_quota_survive_reload(backend):
    store = ProgressStore(backend)
    store.save(_record())
    store.save_quota({"random": QuotaState("2024-06-15", 7, 50)})

    record, quotas = ProgressStore(backend).load()
    assert record == _record()
    assert quotas == {"random": QuotaState("2024-06-15", 7, 50)}


def test_in_flight_batch_round_trip(backend):
    store = ProgressStore(backend)
    batch = BatchState(PhotoFilter.random(), 2, assets=make_assets(4))
    batch.decisions = [
        SwipeDecision("a0", SwipeAction.KEEP),
        SwipeDecision("a1", SwipeAction.DELETE),
    ]
    batch.cursor = 2
    batch.had_any_deletion = True
    store.save_in_flight_batch(batch)

    saved = store.load_in_flight_batch()
    assert saved.filter_key == "random"
    assert saved.batch_index == 2
    assert saved.asset_ids == ["a0", "a1", "a2", "a3"]
    assert saved.cursor == 2
    assert saved.decisions == batch.decisions
    assert saved.had_any_deletion

    store.clear_in_flight_batch()
    assert store.load_in_flight_batch() is None


def test_inconsistent_in_flight_batch_is_discarded():
    backend = MemoryBackend()
    backend.set(
        IN_FLIGHT_KEY,
        {
            "filter": "random",
            "batch_index": 0,
            "asset_ids": ["a0", "a1"],
            "cursor": 2,
            "decisions": [{"asset_id": "a0", "action": "keep"}],
        },
    )
    assert ProgressStore(backend).load_in_flight_batch() is None


def test_garbage_documents_fall_back_to_defaults():
    backend = MemoryBackend()
    backend.set(PROGRESS_KEY, {"total_processed": "lots", "selected_filter": "random"})
    backend.set("quota", {"random": "nonsense", "year_2020": {"day": "2024-06-15"}})
    backend.set(IN_FLIGHT_KEY, {"filter": "random"})

    store = ProgressStore(backend)
    record, quotas = store.load()
    assert record == ProgressRecord()
    assert quotas == {"year_2020": QuotaState("2024-06-15", 0, 0)}
    assert store.load_in_flight_batch() is None


def test_unknown_persisted_filter_falls_back_to_random():
    backend = MemoryBackend()
    backend.set(PROGRESS_KEY, {"selected_filter": "favourites", "total_processed": 2})
    record, _ = ProgressStore(backend).load()
    assert record.selected_filter == PhotoFilter.random()
    assert record.total_processed == 2


def test_write_is_retried_then_raises():
    backend = FlakyBackend()
    backend.broken = True
    store = ProgressStore(backend, attempts=3)
    with pytest.raises(PersistenceError):
        store.save(_record())
    assert backend.write_attempts == 3
    assert backend.get(PROGRESS_KEY) is None


def test_reset_keeps_quota(backend):
    store = ProgressStore(backend)
    store.save(_record())
    store.save_quota({"random": QuotaState("2024-06-15", 10, 0)})
    store.save_in_flight_batch(BatchState(PhotoFilter.random(), 0, assets=make_assets(2)))

    store.reset_all()

    record, quotas = store.load()
    assert record == ProgressRecord()
    assert quotas["random"].swipes_used_today == 10
    assert store.load_in_flight_batch() is None
