from datetime import date, timedelta

from core.models import Entitlement, QuotaState
from core.services.quota_gate import GLOBAL_KEY, QuotaGate

FREE = Entitlement.UNSUBSCRIBED


class Clock:
    def __init__(self, day: date) -> None:
        self.day = day

    def __call__(self) -> date:
        return self.day


def _gate(**kwargs) -> QuotaGate:
    kwargs.setdefault("today", Clock(date(2024, 6, 15)))
    return QuotaGate(**kwargs)


def test_tenth_free_swipe_is_last():
    gate = _gate()
    for _ in range(9):
        gate.record_swipe("random")
    assert gate.can_swipe("random", FREE)
    gate.record_swipe("random")
    assert not gate.can_swipe("random", FREE)
    assert gate.remaining("random", FREE) == 0


def test_bonus_adds_exactly_granted_swipes():
    gate = _gate()
    for _ in range(10):
        gate.record_swipe("random")
    gate.grant_bonus("random", 50)
    assert gate.bonus_remaining("random") == 50
    for _ in range(50):
        assert gate.can_swipe("random", FREE)
        gate.record_swipe("random")
    assert not gate.can_swipe("random", FREE)
    assert gate.bonus_remaining("random") == 0


def test_quota_is_tracked_per_filter():
    gate = _gate()
    for _ in range(10):
        gate.record_swipe("random")
    assert not gate.can_swipe("random", FREE)
    assert gate.can_swipe("year_2020", FREE)


def test_global_pool_is_used_after_own_allowance():
    gate = _gate()
    gate.grant_bonus(None, 2)
    for _ in range(5):
        assert gate.can_swipe("screenshots", FREE)
        gate.record_swipe("screenshots")
    # Within the free limit nothing is drawn from the pool
    assert gate.bonus_remaining("random") == 2
    for _ in range(10):
        assert gate.can_swipe("random", FREE)
        gate.record_swipe("random")
    assert gate.remaining("random", FREE) == 2
    for left in (2, 1):
        assert gate.can_swipe("random", FREE)
        assert gate.remaining("random", FREE) == left
        gate.record_swipe("random")
    assert not gate.can_swipe("random", FREE)
    assert gate.remaining("random", FREE) == 0
    assert gate.states[GLOBAL_KEY].swipes_used_today == 2
    assert gate.states["random"].swipes_used_today == 10


def test_global_grant_gives_exactly_that_many_extra_swipes():
    gate = _gate()
    gate.grant_bonus(None, 50)
    allowed = 0
    while gate.can_swipe("random", FREE):
        gate.record_swipe("random")
        allowed += 1
    assert allowed == 60


def test_global_pool_is_shared_between_filters():
    gate = _gate()
    gate.grant_bonus(None, 3)
    for _ in range(12):
        gate.record_swipe("random")
    assert gate.remaining("random", FREE) == 1
    assert gate.remaining("year_2020", FREE) == 11
    for _ in range(10):
        gate.record_swipe("year_2020")
    gate.record_swipe("year_2020")
    assert not gate.can_swipe("year_2020", FREE)
    assert not gate.can_swipe("random", FREE)


def test_remaining_counts_one_global_draw_once():
    gate = _gate()
    gate.grant_bonus(None, 2)
    for _ in range(11):
        gate.record_swipe("random")
    assert gate.remaining("random", FREE) == 1


def test_unlimited_entitlements_ignore_quota():
    gate = _gate(daily_free_limit=0)
    assert gate.can_swipe("random", Entitlement.SUBSCRIBED)
    assert gate.can_swipe("random", Entitlement.TRIAL)
    assert not gate.can_swipe("random", Entitlement.CANCELLED)
    assert not gate.can_swipe("random", Entitlement.EXPIRED)
    assert gate.remaining("random", Entitlement.TRIAL) is None


def test_usage_rolls_over_on_new_day():
    clock = Clock(date(2024, 6, 15))
    gate = _gate(today=clock)
    for _ in range(10):
        gate.record_swipe("random")
    gate.grant_bonus("random", 5)
    clock.day += timedelta(days=1)
    assert gate.remaining("random", FREE) == 10
    assert gate.states["random"] == QuotaState(day="2024-06-16")


def test_persisted_state_from_yesterday_is_reset():
    gate = _gate(states={"random": QuotaState("2024-06-14", 10, 0)})
    assert gate.can_swipe("random", FREE)


def test_reset_daily():
    gate = _gate()
    for _ in range(10):
        gate.record_swipe("random")
    gate.reset_daily("random")
    assert gate.remaining("random", FREE) == 10


def test_ad_after_every_fifth_swipe():
    gate = _gate()
    shown = []
    for _ in range(12):
        gate.record_swipe("random")
        if gate.should_show_ad(FREE):
            shown.append(True)
            gate.reset_ad_counter()
    assert len(shown) == 2
    gate.record_swipe("random")
    gate.record_swipe("random")
    gate.record_swipe("random")
    assert not gate.should_show_ad(Entitlement.SUBSCRIBED)


def test_snapshot_and_restore():
    gate = _gate()
    gate.record_swipe("random")
    saved = gate.snapshot()
    gate.record_swipe("random")
    gate.grant_bonus("random", 3)
    gate.restore(saved)
    assert gate.states["random"].swipes_used_today == 1
    assert gate.states["random"].bonus_granted == 0


def test_ads_only_for_unsubscribed_and_expired():
    gate = _gate()
    for _ in range(5):
        gate.record_swipe("random")
    assert gate.should_show_ad(Entitlement.UNSUBSCRIBED)
    assert gate.should_show_ad(Entitlement.EXPIRED)
    assert not gate.should_show_ad(Entitlement.CANCELLED)
    assert not gate.should_show_ad(Entitlement.TRIAL)
