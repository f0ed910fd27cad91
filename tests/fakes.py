"""Test doubles for the controller's collaborators."""

from __future__ import annotations

import asyncio
from datetime import date, datetime
import random
import threading
from typing import Any

from core.errors import PersistenceError
from core.models import Asset, MediaType
from core.services.interfaces import DeleteResult, FetchedContent, MediaKinds
from infrastructure.kv_store import MemoryBackend

TODAY = date(2024, 6, 15)


def make_assets(
    count: int, year: int = 2021, prefix: str = "a", size: int = 1000, start: int = 0
) -> list[Asset]:
    return [
        Asset(
            id=f"{prefix}{i}",
            media_type=MediaType.PHOTO,
            created_at=datetime(year, 1 + i % 12, 1 + i % 28, 12, 0),
            estimated_bytes=size,
        )
        for i in range(start, start + count)
    ]


class NoShuffle(random.Random):
    """Keeps catalog order so tests can predict batch contents."""

    def shuffle(self, x, *args, **kwargs) -> None:  # type: ignore[override]
        return None


class FakeCatalog:
    def __init__(self, assets: list[Asset]) -> None:
        self.assets = list(assets)
        self.calls = 0

    def list_assets(self, media_kinds: MediaKinds) -> list[Asset]:
        self.calls += 1
        return list(self.assets)


class FakeDeleter:
    """Records calls; fails when `fail` is set; waits on `gate` when given."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.fail = False
        self.raise_error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def delete(self, asset_ids) -> DeleteResult:
        ids = list(asset_ids)
        self.calls.append(ids)
        if self.gate is not None:
            await self.gate.wait()
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail:
            return DeleteResult(success_ids=ids[1:], failed=[(ids[0], "locked")])
        return DeleteResult(success_ids=ids)


class FlakyBackend(MemoryBackend):
    """Memory backend whose writes can be switched off."""

    def __init__(self) -> None:
        super().__init__()
        self.broken = False
        self.write_attempts = 0

    def set(self, key: str, value: Any) -> None:
        self.write_attempts += 1
        if self.broken:
            raise PersistenceError(f"disk full writing {key}")
        super().set(key, value)


class BlockingFetcher:
    def __init__(self, block: bool = False) -> None:
        self.release = threading.Event()
        if not block:
            self.release.set()
        self.requests: list[str] = []

    def fetch_best_effort(self, asset, quality_hint, deadline) -> FetchedContent:
        self.requests.append(asset.id)
        self.release.wait(timeout=5)
        return FetchedContent(asset_id=asset.id, image=f"img:{asset.id}")
