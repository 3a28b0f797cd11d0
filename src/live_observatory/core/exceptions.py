"""Application-wide exception hierarchy for Live Observatory.

All custom exceptions subclass ``LiveObservatoryError``, enabling
consistent error handling and structured logging across the application.

Only :class:`InvalidTargetError` ever reaches callers of
:meth:`~live_observatory.core.orchestrator.ResolutionOrchestrator.resolve`.
Every adapter-level error is absorbed at the orchestrator boundary, and the
two "no answer" conditions are converted into result values (a ``NotFound``
or a degraded "assume offline" record).

Hierarchy::

    LiveObservatoryError
    ├── InvalidTargetError
    ├── AdapterUnavailableError
    │   ├── AdapterTimeoutError
    │   ├── AdapterRateLimitError   (retry_after: float)
    │   ├── AdapterAuthError
    │   └── QuotaExhaustedError
    ├── AllAdaptersExhaustedError
    ├── DeadlineExceededError
    └── NormalizationError
"""

from __future__ import annotations

from typing import Any


class LiveObservatoryError(Exception):
    """Base class for all Live Observatory exceptions.

    All application-specific exceptions inherit from this class so that
    callers can catch the entire hierarchy with a single ``except`` clause
    when needed.
    """


# ---------------------------------------------------------------------------
# Target exceptions
# ---------------------------------------------------------------------------


class InvalidTargetError(LiveObservatoryError, ValueError):
    """Raised when an identifier is structurally invalid.

    Rejected before any adapter is dispatched; fatal to the call.

    Args:
        value: The offending identifier.
        reason: Human-readable explanation of the failed check.
    """

    def __init__(self, value: Any, reason: str) -> None:
        super().__init__(f"Invalid target {value!r}: {reason}")
        self.value = value
        self.reason = reason


# ---------------------------------------------------------------------------
# Adapter exceptions
# ---------------------------------------------------------------------------


class AdapterUnavailableError(LiveObservatoryError):
    """Raised when one adapter could not determine anything about a target.

    Not cacheable as a negative.  The orchestrator logs it and moves on to
    the next candidate.

    Args:
        message: Human-readable description of the failure.
        adapter: Name of the adapter that failed (e.g. ``"innertube"``).
    """

    def __init__(self, message: str, adapter: str | None = None) -> None:
        super().__init__(message)
        self.adapter = adapter


class AdapterTimeoutError(AdapterUnavailableError):
    """Raised when an adapter exceeded its hard timeout and was cancelled."""


class AdapterRateLimitError(AdapterUnavailableError):
    """Raised when an upstream source answered with HTTP 429.

    The health tracker puts the adapter on cooldown for ``retry_after``
    seconds so that subsequent resolutions skip it.

    Args:
        message: Human-readable description of the rate limit.
        retry_after: Seconds to wait before calling the adapter again.
        adapter: Name of the rate-limited adapter.
    """

    def __init__(
        self,
        message: str,
        retry_after: float = 60.0,
        adapter: str | None = None,
    ) -> None:
        super().__init__(message, adapter=adapter)
        self.retry_after = retry_after


class AdapterAuthError(AdapterUnavailableError):
    """Raised when an upstream API rejected the configured credential."""


class QuotaExhaustedError(AdapterUnavailableError):
    """Raised when the metered API reports that the daily quota is spent.

    Never surfaced to callers: the orchestrator marks the quota ledger as
    exhausted, skips the paid adapter until the next reset, and the record
    simply carries a non-authoritative ``viewerCountKind``.
    """


# ---------------------------------------------------------------------------
# Resolution outcomes
# ---------------------------------------------------------------------------


class AllAdaptersExhaustedError(LiveObservatoryError):
    """Raised internally when every candidate failed without any signal.

    Converted into a ``NotFound`` result by the orchestrator.

    Args:
        attempted: Names of the adapters that were tried.
    """

    def __init__(self, attempted: list[str]) -> None:
        super().__init__(
            f"No adapter produced a signal (attempted: {', '.join(attempted) or 'none'})"
        )
        self.attempted = attempted


class DeadlineExceededError(LiveObservatoryError):
    """Raised internally when the global resolution deadline fires.

    Converted into a degraded "assume offline" record by the orchestrator;
    callers must not treat ambiguity as a hard failure.

    Args:
        deadline: The global deadline in seconds.
    """

    def __init__(self, deadline: float) -> None:
        super().__init__(f"Resolution exceeded the {deadline:.1f}s deadline")
        self.deadline = deadline


# ---------------------------------------------------------------------------
# Data-processing exceptions
# ---------------------------------------------------------------------------


class NormalizationError(LiveObservatoryError):
    """Raised when a raw adapter result cannot be mapped to the canonical record.

    Args:
        message: Description of the normalization failure.
        source: Adapter name of the raw result.
        payload: The raw dict that could not be normalized (for debugging).
    """

    def __init__(
        self,
        message: str,
        source: str | None = None,
        payload: dict | None = None,  # type: ignore[type-arg]
    ) -> None:
        super().__init__(message)
        self.source = source
        self.payload = payload
