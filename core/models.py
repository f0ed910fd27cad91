"""Core domain models for assets, filters, swipe decisions and progress."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class MediaType(str, Enum):
    """Kind of library asset."""

    PHOTO = "photo"
    VIDEO = "video"


class SwipeAction(str, Enum):
    """Decision recorded for a single asset."""

    KEEP = "keep"
    DELETE = "delete"


class Entitlement(str, Enum):
    """Subscription standing of the user."""

    SUBSCRIBED = "subscribed"
    TRIAL = "trial"
    UNSUBSCRIBED = "unsubscribed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_unlimited(self) -> bool:
        """True when swiping is not subject to the daily quota."""
        return self in (Entitlement.SUBSCRIBED, Entitlement.TRIAL)


class BatchPhase(str, Enum):
    """Screens of the batch state machine."""

    LOADING = "loading"
    EMPTY = "empty"
    SWIPING = "swiping"
    REVIEWING = "reviewing"
    CONFIRMING_DELETION = "confirming_deletion"
    CONTINUING = "continuing"
    CHECKPOINT = "checkpoint"
    COMPLETED = "completed"


class FilterKind(str, Enum):
    RANDOM = "random"
    ON_THIS_DAY = "on_this_day"
    SCREENSHOTS = "screenshots"
    YEAR = "year"


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Asset:
    """A single photo or video from the library.

    `id` is stable across process restarts. `location_name` is display-only
    metadata that a geocoder may fill in later; nothing depends on it.
    """

    id: str
    media_type: MediaType = MediaType.PHOTO
    created_at: datetime | None = None
    location: GeoPoint | None = None
    is_screenshot: bool = False
    estimated_bytes: int | None = None
    location_name: str | None = None


@dataclass(frozen=True)
class PhotoFilter:
    """Named subset of the library: random, on this day, screenshots or a year."""

    kind: FilterKind
    year: int | None = None

    def __post_init__(self) -> None:
        if (self.kind is FilterKind.YEAR) != (self.year is not None):
            raise ValueError(f"year must be set only for year filters: {self.kind}, {self.year}")

    @classmethod
    def random(cls) -> PhotoFilter:
        return cls(FilterKind.RANDOM)

    @classmethod
    def on_this_day(cls) -> PhotoFilter:
        return cls(FilterKind.ON_THIS_DAY)

    @classmethod
    def screenshots(cls) -> PhotoFilter:
        return cls(FilterKind.SCREENSHOTS)

    @classmethod
    def for_year(cls, year: int) -> PhotoFilter:
        return cls(FilterKind.YEAR, int(year))

    @property
    def key(self) -> str:
        """Stable string key used for quota and progress lookups."""
        if self.kind is FilterKind.YEAR:
            return f"year_{self.year}"
        return self.kind.value

    @classmethod
    def from_key(cls, key: str) -> PhotoFilter:
        """Parse a key produced by `key`; raises ValueError on unknown input."""
        if key.startswith("year_"):
            return cls.for_year(int(key[len("year_") :]))
        kind = FilterKind(key)
        if kind is FilterKind.YEAR:
            raise ValueError(f"year filter key without a year: {key}")
        return cls(kind)

    @property
    def display_name(self) -> str:
        if self.kind is FilterKind.YEAR:
            return str(self.year)
        return {
            FilterKind.RANDOM: "Random",
            FilterKind.ON_THIS_DAY: "On this Day",
            FilterKind.SCREENSHOTS: "Screenshots",
        }[self.kind]


@dataclass
class SwipeDecision:
    asset_id: str
    action: SwipeAction


@dataclass
class BatchState:
    """The batch currently on screen.

    Attributes:
        filter: Filter the batch was assembled from.
        batch_index: Ordinal of the batch within the current filter session.
        assets: Assets of the batch in presentation order.
        cursor: Index of the next asset to decide.
        decisions: Decisions in swipe order; `len(decisions) == cursor`.
        had_any_deletion: Whether any decision in the batch marks a deletion.
    """

    filter: PhotoFilter
    batch_index: int
    assets: list[Asset] = field(default_factory=list)
    cursor: int = 0
    decisions: list[SwipeDecision] = field(default_factory=list)
    had_any_deletion: bool = False

    @property
    def is_fully_decided(self) -> bool:
        return self.cursor >= len(self.assets)

    @property
    def current_asset(self) -> Asset | None:
        if 0 <= self.cursor < len(self.assets):
            return self.assets[self.cursor]
        return None

    def copy(self) -> BatchState:
        """Return a copy whose lists can be mutated independently."""
        return BatchState(
            filter=self.filter,
            batch_index=self.batch_index,
            assets=list(self.assets),
            cursor=self.cursor,
            decisions=[SwipeDecision(d.asset_id, d.action) for d in self.decisions],
            had_any_deletion=self.had_any_deletion,
        )


@dataclass
class InFlightBatch:
    """Persisted form of a `BatchState`; assets are referenced by id."""

    filter_key: str
    batch_index: int
    asset_ids: list[str]
    cursor: int
    decisions: list[SwipeDecision]
    had_any_deletion: bool = False


@dataclass
class ProgressRecord:
    """Process-wide progress persisted across sessions."""

    processed_asset_ids: set[str] = field(default_factory=set)
    total_processed: int = 0
    per_filter_processed: dict[str, int] = field(default_factory=dict)
    selected_filter: PhotoFilter = field(default_factory=PhotoFilter.random)
    total_deleted: int = 0
    total_storage_saved_bytes: int = 0
    active_days: set[str] = field(default_factory=set)

    def copy(self) -> ProgressRecord:
        return ProgressRecord(
            processed_asset_ids=set(self.processed_asset_ids),
            total_processed=self.total_processed,
            per_filter_processed=dict(self.per_filter_processed),
            selected_filter=self.selected_filter,
            total_deleted=self.total_deleted,
            total_storage_saved_bytes=self.total_storage_saved_bytes,
            active_days=set(self.active_days),
        )


@dataclass
class QuotaState:
    """Daily swipe accounting for one filter key (or the global bonus pool).

    `swipes_used_today` only grows during a day and is compared against the
    free limit plus `bonus_granted`; the bonus still available is derived.
    """

    day: str = ""
    swipes_used_today: int = 0
    bonus_granted: int = 0


@dataclass
class BatchSummary:
    """Outcome of the last committed batch, shown on the continue screen."""

    deleted_count: int = 0
    storage_saved_bytes: int = 0
