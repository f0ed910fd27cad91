"""Entitlement provider that holds the standing locally and pushes changes."""

from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from core.models import Entitlement


class StaticEntitlementProvider:
    """Settable entitlement source; stands in for a purchase SDK."""

    def __init__(self, entitlement: Entitlement = Entitlement.UNSUBSCRIBED) -> None:
        self._entitlement = entitlement
        self._listeners: list[Callable[[Entitlement], None]] = []

    def current_entitlement(self) -> Entitlement:
        return self._entitlement

    def subscribe(self, callback: Callable[[Entitlement], None]) -> None:
        self._listeners.append(callback)

    def set_entitlement(self, entitlement: Entitlement) -> None:
        """Change the standing and notify subscribers if it differs."""
        if entitlement is self._entitlement:
            return
        logger.info("Entitlement changed: {} -> {}", self._entitlement.value, entitlement.value)
        self._entitlement = entitlement
        for callback in list(self._listeners):
            callback(entitlement)
