from datetime import datetime
import random

from core.models import Asset, PhotoFilter
from core.services.filter_engine import FilterEngine
from fakes import TODAY, make_assets


def _asset(asset_id, created=None, screenshot=False):
    return Asset(id=asset_id, created_at=created, is_screenshot=screenshot)


def test_random_matches_everything():
    engine = FilterEngine()
    assert engine.matches(_asset("x"), PhotoFilter.random())


def test_on_this_day_matches_same_date_of_other_years():
    engine = FilterEngine()
    flt = PhotoFilter.on_this_day()
    assert engine.matches(_asset("a", datetime(2019, 6, 15, 8)), flt, TODAY)
    assert not engine.matches(_asset("b", datetime(2024, 6, 15, 8)), flt, TODAY)
    assert not engine.matches(_asset("c", datetime(2019, 6, 14, 8)), flt, TODAY)
    assert not engine.matches(_asset("d"), flt, TODAY)


def test_screenshot_and_year_filters():
    engine = FilterEngine()
    shot = _asset("s", datetime(2022, 3, 1), screenshot=True)
    photo = _asset("p", datetime(2021, 3, 1))
    assert engine.matches(shot, PhotoFilter.screenshots())
    assert not engine.matches(photo, PhotoFilter.screenshots())
    assert engine.matches(shot, PhotoFilter.for_year(2022))
    assert not engine.matches(photo, PhotoFilter.for_year(2022))
    assert not engine.matches(_asset("u"), PhotoFilter.for_year(2022))


def test_selection_excludes_processed_and_keeps_all_others():
    engine = FilterEngine(random.Random(7))
    assets = make_assets(20)
    processed = {"a1", "a5", "a19"}
    pool = engine.select_unprocessed(assets, PhotoFilter.random(), processed)
    assert len(pool) == 17
    assert {a.id for a in pool} == {a.id for a in assets} - processed


def test_selection_of_exhausted_category_is_empty():
    engine = FilterEngine()
    assets = make_assets(3)
    assert engine.select_unprocessed(assets, PhotoFilter.random(), {"a0", "a1", "a2"}) == []
    assert engine.select_unprocessed(assets, PhotoFilter.screenshots(), set()) == []


def test_each_selection_is_freshly_shuffled():
    engine = FilterEngine()
    assets = make_assets(30)
    orders = set()
    for _ in range(5):
        pool = engine.select_unprocessed(assets, PhotoFilter.random(), set())
        assert sorted(a.id for a in pool) == sorted(a.id for a in assets)
        assert len(pool) == len(assets)
        orders.add(tuple(a.id for a in pool))
    assert len(orders) > 1


def test_selection_does_not_reorder_input():
    engine = FilterEngine(random.Random(1))
    assets = make_assets(10)
    ids = [a.id for a in assets]
    engine.select_unprocessed(assets, PhotoFilter.random(), set())
    assert [a.id for a in assets] == ids


def test_available_years_newest_first():
    engine = FilterEngine()
    assets = make_assets(2, year=2019) + make_assets(2, year=2023, prefix="b") + [_asset("n")]
    assert engine.available_years(assets) == [2023, 2019]


def test_filter_counts():
    engine = FilterEngine()
    assets = make_assets(4, year=2020) + [_asset("s", datetime(2021, 1, 1), screenshot=True)]
    counts = engine.filter_counts(
        assets,
        [PhotoFilter.random(), PhotoFilter.screenshots(), PhotoFilter.for_year(2020)],
        {"a0"},
        TODAY,
    )
    assert counts == {"random": 4, "screenshots": 1, "year_2020": 3}
