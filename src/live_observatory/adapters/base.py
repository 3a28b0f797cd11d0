"""Abstract base class for all source adapters.

Every fetch strategy must subclass ``SourceAdapter``, declare a static
:class:`AdapterDescriptor` and implement :meth:`SourceAdapter.fetch`.  The
orchestrator only ever talks to adapters through this contract, so parsing
heuristics stay private to each adapter package.

Example usage::

    from live_observatory.adapters.base import (
        AdapterDescriptor, PriorityTier, RawResult, RawShape, SourceAdapter,
    )
    from live_observatory.core.targets import TargetKind

    class MyAdapter(SourceAdapter):
        descriptor = AdapterDescriptor(
            name="my_adapter",
            supported_targets=frozenset({TargetKind.VIDEO}),
            soft_timeout=4.0,
            tier=PriorityTier.FALLBACK,
        )

        async def fetch(self, target): ...
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from live_observatory.core.targets import Target, TargetKind

logger = logging.getLogger(__name__)


class PriorityTier(IntEnum):
    """Ordering tier of an adapter.  Lower values are tried first.

    Attributes:
        PRIMARY: Fast or rich free sources tried before anything else.
        FALLBACK: Slower scrapes and the paid API.
        LAST_RESORT: Expensive strategies such as spawning a subprocess.
    """

    PRIMARY = 0
    FALLBACK = 1
    LAST_RESORT = 2


class RawShape(str, Enum):
    """Which normalization mapping a :class:`RawResult` payload needs.

    Attributes:
        STATUS_PROBE: Minimal liveness dict from the channel ``/live`` probe.
        PLAYER_RESPONSE: Internal API ``player`` response plus optional
            "watching now" text.
        WATCH_PAGE: JSON blobs extracted from the watch-page HTML.
        DATA_API_VIDEO: One ``videos.list`` item from the Data API v3.
        YTDLP_INFO: ``yt-dlp --dump-json`` info dict.
    """

    STATUS_PROBE = "status_probe"
    PLAYER_RESPONSE = "player_response"
    WATCH_PAGE = "watch_page"
    DATA_API_VIDEO = "data_api_video"
    YTDLP_INFO = "ytdlp_info"


@dataclass(frozen=True)
class AdapterDescriptor:
    """Static metadata describing one adapter.

    Attributes:
        name: Unique adapter name.  Used as the registry key and as the
            record's ``sourceMethod``.
        supported_targets: Target kinds the adapter can resolve.  Targets of
            any other kind are skipped without invoking the adapter.
        soft_timeout: Typical latency budget in seconds.  The orchestrator
            enforces it as a hard timeout (capped by the global deadline).
        quota_cost: Metered units consumed per call; ``0`` for free sources.
        tier: Ordering tier.
        confidence: Rank of how much a "not live" answer from this adapter
            can be trusted.  A later adapter is only consulted after a
            "not live" answer when its confidence is strictly higher.
    """

    name: str
    supported_targets: frozenset[TargetKind]
    soft_timeout: float
    quota_cost: int = 0
    tier: PriorityTier = PriorityTier.PRIMARY
    confidence: int = 1

    @property
    def consumes_quota(self) -> bool:
        return self.quota_cost > 0

    def with_timeout(self, soft_timeout: float) -> AdapterDescriptor:
        """Return a copy with a different soft timeout (settings override)."""
        return replace(self, soft_timeout=soft_timeout)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "supported_targets": sorted(kind.value for kind in self.supported_targets),
            "soft_timeout": self.soft_timeout,
            "quota_cost": self.quota_cost,
            "tier": self.tier.name.lower(),
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class RawResult:
    """Best-effort raw answer from one adapter.

    Attributes:
        source: Name of the producing adapter.
        shape: Which normalization mapping applies to ``payload``.
        target: The target that was resolved.
        payload: The upstream dict, untouched apart from extraction.
    """

    source: str
    shape: RawShape
    target: Target
    payload: dict[str, Any] = field(default_factory=dict)


class SourceAdapter(ABC):
    """Abstract base class for all live-metadata source adapters.

    Subclasses must define the class-level ``descriptor`` and implement
    :meth:`fetch`.  The constructor accepts an optional descriptor override
    so that deployments can tune soft timeouts without subclassing.

    Class Attributes:
        descriptor: Static :class:`AdapterDescriptor` for the adapter.

    Args:
        descriptor: Optional per-instance override of the class descriptor.
    """

    descriptor: AdapterDescriptor

    def __init__(self, descriptor: AdapterDescriptor | None = None) -> None:
        if descriptor is not None:
            self.descriptor = descriptor

    @property
    def name(self) -> str:
        return self.descriptor.name

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch(self, target: Target) -> RawResult | None:
        """Produce a raw result for *target*.

        Implementations must honour cancellation: the orchestrator cancels
        the calling task when the adapter's timeout or the global deadline
        fires, and any subprocess or socket opened here must be released.

        Args:
            target: A target whose kind is in ``descriptor.supported_targets``.

        Returns:
            A :class:`RawResult` when something was found, or ``None`` when
            the adapter ran successfully and the target is not live.  The
            ``None`` answer is a valid, cacheable negative.

        Raises:
            AdapterUnavailableError: When nothing could be determined.
            AdapterRateLimitError: When the upstream answered HTTP 429.
            AdapterAuthError: When the upstream rejected the credential.
            QuotaExhaustedError: When the metered quota is spent.
        """

    # ------------------------------------------------------------------
    # Concrete helpers, may be overridden
    # ------------------------------------------------------------------

    def supports(self, target: Target) -> bool:
        """Return ``True`` when the adapter can resolve *target*'s kind."""
        return target.kind in self.descriptor.supported_targets

    async def health_check(self) -> dict[str, Any]:
        """Verify that the adapter's upstream source is reachable.

        The default implementation returns a minimal ``not_implemented``
        status.  Adapters should override this with a lightweight request.

        Returns:
            Dict with at minimum:
            - ``status``: ``"ok"`` | ``"degraded"`` | ``"down"`` |
              ``"not_implemented"``.
            - ``adapter``: Adapter name.
            - ``checked_at``: ISO 8601 timestamp string.
        """
        return {
            "status": "not_implemented",
            "adapter": self.name,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }

    async def aclose(self) -> None:
        """Release long-lived resources (HTTP clients, sessions).

        The default implementation does nothing.
        """

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} "
            f"name={self.descriptor.name} "
            f"tier={self.descriptor.tier.name.lower()}>"
        )
