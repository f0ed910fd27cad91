from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import pytest

from app.controllers.batch_controller import BatchController
from core.models import Asset, Entitlement
from core.services.filter_engine import FilterEngine
from core.services.progress_store import ProgressStore
from fakes import TODAY, FakeCatalog, FakeDeleter, NoShuffle
from infrastructure.entitlements import StaticEntitlementProvider
from infrastructure.kv_store import MemoryBackend


@dataclass
class Harness:
    ctl: BatchController
    catalog: FakeCatalog
    deleter: FakeDeleter
    backend: MemoryBackend
    entitlements: StaticEntitlementProvider

    def load(self) -> None:
        asyncio.run(self.ctl.load_library())

    def confirm(self):
        return asyncio.run(self.ctl.confirm_batch())


@pytest.fixture
def harness():
    """Factory building a controller over fake collaborators."""

    def build(
        assets: list[Asset],
        *,
        entitlement: Entitlement = Entitlement.SUBSCRIBED,
        backend: MemoryBackend | None = None,
        catalog: FakeCatalog | None = None,
        ordered: bool = True,
        load: bool = True,
        **kwargs: Any,
    ) -> Harness:
        backend = backend if backend is not None else MemoryBackend()
        catalog = catalog or FakeCatalog(assets)
        deleter = FakeDeleter()
        provider = StaticEntitlementProvider(entitlement)
        engine = FilterEngine(NoShuffle()) if ordered else FilterEngine()
        kwargs.setdefault("today", lambda: TODAY)
        ctl = BatchController(
            catalog,
            deleter,
            ProgressStore(backend),
            provider,
            filter_engine=engine,
            **kwargs,
        )
        h = Harness(ctl, catalog, deleter, backend, provider)
        if load:
            h.load()
        return h

    return build
