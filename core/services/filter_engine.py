"""Filter classification and unprocessed-asset selection.

The engine is stateless: every call works only on its arguments and never keeps
references to the asset lists it is given.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Sequence
from datetime import date
import random

from core.models import Asset, FilterKind, PhotoFilter


class FilterEngine:
    """Matches assets against a `PhotoFilter` and builds shuffled pools."""

    def __init__(self, rng: random.Random | None = None) -> None:
        # Unseeded by default so every selection produces a new order.
        self._rng = rng or random.Random()

    def matches(self, asset: Asset, photo_filter: PhotoFilter, today: date | None = None) -> bool:
        """Return True if `asset` belongs to `photo_filter`."""
        kind = photo_filter.kind
        if kind is FilterKind.RANDOM:
            return True
        if kind is FilterKind.SCREENSHOTS:
            return bool(asset.is_screenshot)
        created = asset.created_at
        if created is None:
            return False
        if kind is FilterKind.YEAR:
            return created.year == photo_filter.year
        # On this day: same month/day in a previous (or later) year
        today = today or date.today()
        return (
            created.month == today.month
            and created.day == today.day
            and created.year != today.year
        )

    def unprocessed_count(
        self,
        assets: Iterable[Asset],
        photo_filter: PhotoFilter,
        processed_ids: Collection[str],
        today: date | None = None,
    ) -> int:
        """Count assets matching `photo_filter` that are not yet processed."""
        return sum(
            1
            for a in assets
            if a.id not in processed_ids and self.matches(a, photo_filter, today)
        )

    def select_unprocessed(
        self,
        assets: Iterable[Asset],
        photo_filter: PhotoFilter,
        processed_ids: Collection[str],
        today: date | None = None,
    ) -> list[Asset]:
        """Return matching, unprocessed assets in a freshly shuffled order.

        An empty list is a valid result meaning the category is exhausted.
        """
        pool = [
            a
            for a in assets
            if a.id not in processed_ids and self.matches(a, photo_filter, today)
        ]
        self._rng.shuffle(pool)
        return pool

    def available_years(self, assets: Iterable[Asset]) -> list[int]:
        """Distinct creation years present in `assets`, newest first."""
        years = {a.created_at.year for a in assets if a.created_at is not None}
        return sorted(years, reverse=True)

    def filter_counts(
        self,
        assets: Sequence[Asset],
        filters: Iterable[PhotoFilter],
        processed_ids: Collection[str],
        today: date | None = None,
    ) -> dict[str, int]:
        """Unprocessed counts keyed by filter key, for a filter menu."""
        return {
            f.key: self.unprocessed_count(assets, f, processed_ids, today) for f in filters
        }
