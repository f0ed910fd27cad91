"""Daily swipe quota, bonus swipes and the interstitial ad interval.

Accounting model: a filter key counts its swipes in `swipes_used_today` up to
its own allowance, `daily_free_limit + bonus_granted`. Swipes beyond that are
counted on the global pool instead, whose bonus is shared by all filters.
Every swipe is charged exactly once.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date

from loguru import logger

from core.models import Entitlement, QuotaState

GLOBAL_KEY = "global"
DAILY_FREE_LIMIT = 10
SWIPES_BETWEEN_ADS = 5

AD_AUDIENCE = (Entitlement.UNSUBSCRIBED, Entitlement.EXPIRED)


class QuotaGate:
    """Decides whether a swipe is allowed under the current entitlement."""

    def __init__(
        self,
        states: dict[str, QuotaState] | None = None,
        daily_free_limit: int = DAILY_FREE_LIMIT,
        swipes_between_ads: int = SWIPES_BETWEEN_ADS,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._states: dict[str, QuotaState] = dict(states or {})
        self._limit = int(daily_free_limit)
        self._ad_interval = max(1, int(swipes_between_ads))
        self._today = today
        self._swipes_since_ad = 0

    @property
    def daily_free_limit(self) -> int:
        return self._limit

    @property
    def states(self) -> dict[str, QuotaState]:
        """Quota states by key, rolled over to today."""
        for key in list(self._states):
            self._state(key)
        return self._states

    def _state(self, key: str) -> QuotaState:
        today = self._today().isoformat()
        state = self._states.get(key)
        if state is None or state.day != today:
            if state is not None:
                logger.info(
                    "New day for quota {}: resetting {} used swipes", key, state.swipes_used_today
                )
            state = QuotaState(day=today)
            self._states[key] = state
        return state

    def _global_available(self) -> int:
        g = self._state(GLOBAL_KEY)
        return max(0, g.bonus_granted - g.swipes_used_today)

    def _own_left(self, state: QuotaState) -> int:
        return max(0, self._limit + state.bonus_granted - state.swipes_used_today)

    def can_swipe(self, filter_key: str, entitlement: Entitlement) -> bool:
        """Pure query: True if one more swipe is allowed for `filter_key`."""
        if entitlement.is_unlimited:
            return True
        return self._own_left(self._state(filter_key)) > 0 or self._global_available() > 0

    def remaining(self, filter_key: str, entitlement: Entitlement) -> int | None:
        """Swipes left today, or None when unlimited."""
        if entitlement.is_unlimited:
            return None
        return self._own_left(self._state(filter_key)) + self._global_available()

    def bonus_remaining(self, filter_key: str) -> int:
        """Bonus swipes still available to `filter_key` (own grant plus global pool)."""
        state = self._state(filter_key)
        own_left = min(state.bonus_granted, self._own_left(state))
        return own_left + self._global_available()

    def record_swipe(self, filter_key: str) -> None:
        """Count one swipe against the filter, or the global pool once its allowance is spent."""
        state = self._state(filter_key)
        if self._own_left(state) > 0:
            state.swipes_used_today += 1
        else:
            self._state(GLOBAL_KEY).swipes_used_today += 1
        self._swipes_since_ad += 1

    def grant_bonus(self, filter_key: str | None, count: int) -> None:
        """Grant `count` bonus swipes to `filter_key`, or to the global pool if None."""
        key = filter_key or GLOBAL_KEY
        self._state(key).bonus_granted += max(0, int(count))
        logger.info("Granted {} bonus swipes to {}", count, key)

    def reset_daily(self, filter_key: str) -> None:
        self._states[filter_key] = QuotaState(day=self._today().isoformat())

    def should_show_ad(self, entitlement: Entitlement) -> bool:
        """Every Nth swipe of an unsubscribed or expired user triggers an interstitial."""
        if entitlement not in AD_AUDIENCE:
            return False
        return self._swipes_since_ad >= self._ad_interval

    def reset_ad_counter(self) -> None:
        self._swipes_since_ad = 0

    def snapshot(self) -> dict[str, QuotaState]:
        """Copy of the states for persistence or rollback."""
        return {
            k: QuotaState(s.day, s.swipes_used_today, s.bonus_granted)
            for k, s in self.states.items()
        }

    def restore(self, states: dict[str, QuotaState]) -> None:
        self._states = {
            k: QuotaState(s.day, s.swipes_used_today, s.bonus_granted) for k, s in states.items()
        }
