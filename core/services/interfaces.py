"""Core service interfaces and shared data structures.

The triage engine only talks to the outside world through the protocols in
this module: the asset catalog, the deletion executor, the entitlement
provider, the key-value persistence backend and the content fetcher.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from core.models import Asset, Entitlement


class MediaKinds(str, Enum):
    """Which asset kinds a catalog scan should return."""

    PHOTOS = "photos"
    PHOTOS_AND_VIDEOS = "photos_and_videos"


class QualityHint(str, Enum):
    THUMBNAIL = "thumbnail"
    PREVIEW = "preview"


@dataclass
class DeleteResult:
    """Outcome of a delete operation.

    Attributes:
        success_ids: Asset ids successfully deleted.
        failed: Tuples of (asset_id, reason) for failures.
        log_path: Optional path to a detailed audit log.
    """

    success_ids: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    log_path: str | None = None

    @property
    def ok(self) -> bool:
        """True only when every requested asset was deleted."""
        return not self.failed


@dataclass
class FetchedContent:
    """Best content available for an asset within the deadline.

    Attributes:
        asset_id: The asset the content belongs to.
        image: Decoded image object (toolkit specific), or None.
        degraded: True when a lower tier or the placeholder was used.
    """

    asset_id: str
    image: Any = None
    degraded: bool = False


class AssetCatalog(Protocol):
    """Enumerates library assets. May be slow; callers run it off-thread."""

    def list_assets(self, media_kinds: MediaKinds) -> list[Asset]:
        """Return all assets of the requested kinds."""
        raise NotImplementedError


class DeletionExecutor(Protocol):
    """Performs recoverable deletion of a set of assets."""

    async def delete(self, asset_ids: Iterable[str]) -> DeleteResult:
        """Delete the given assets and report per-asset results."""
        raise NotImplementedError


class EntitlementProvider(Protocol):
    """Source of the user's subscription standing."""

    def current_entitlement(self) -> Entitlement:
        raise NotImplementedError

    def subscribe(self, callback: Callable[[Entitlement], None]) -> None:
        """Register `callback` to be invoked whenever the entitlement changes."""
        raise NotImplementedError


class PersistenceBackend(Protocol):
    """Durable key-value store holding JSON-compatible values."""

    def get(self, key: str, default: Any | None = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class ContentFetcher(Protocol):
    """Loads thumbnails/previews, degrading instead of blocking past a deadline."""

    def fetch_best_effort(
        self, asset: Asset, quality_hint: QualityHint, deadline: float
    ) -> FetchedContent:
        """Return the best content obtainable within `deadline` seconds."""
        raise NotImplementedError
