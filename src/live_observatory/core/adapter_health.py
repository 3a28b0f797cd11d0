"""Per-adapter health counters and cooldowns.

The orchestrator reports every adapter outcome here.  Two conditions put an
adapter on cooldown, during which it is dropped from the candidate list:

- An upstream HTTP 429 (:class:`~live_observatory.core.exceptions.AdapterRateLimitError`):
  cooldown for the error's ``retry_after``.
- Circuit breaker: after ``circuit_breaker_threshold`` consecutive failures
  the adapter cools down for ``circuit_breaker_cooldown`` seconds.  The
  failure streak restarts once the cooldown is over.

:meth:`AdapterHealthTracker.snapshot` backs ``available_adapters()``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from live_observatory.core.exceptions import AdapterRateLimitError, AdapterTimeoutError

logger = logging.getLogger(__name__)

_CIRCUIT_BREAKER_THRESHOLD: int = 5
"""Consecutive failures before an adapter is put on cooldown."""

_CIRCUIT_BREAKER_COOLDOWN_SECONDS: float = 60.0


@dataclass
class AdapterStats:
    """Counters for one adapter.  Mutated only under the tracker's lock."""

    calls: int = 0
    successes: int = 0
    failures: int = 0
    timeouts: int = 0
    rate_limited: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_latency: Optional[float] = None
    cooldown_until: float = 0.0


class AdapterHealthTracker:
    """Thread-safe registry of adapter outcomes.

    Args:
        clock: Monotonic clock in seconds.  Injectable for tests.
        circuit_breaker_threshold: Consecutive failures before cooldown.
        circuit_breaker_cooldown: Cooldown applied by the circuit breaker.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        circuit_breaker_threshold: int = _CIRCUIT_BREAKER_THRESHOLD,
        circuit_breaker_cooldown: float = _CIRCUIT_BREAKER_COOLDOWN_SECONDS,
    ) -> None:
        self._clock = clock
        self._threshold = circuit_breaker_threshold
        self._breaker_cooldown = circuit_breaker_cooldown
        self._stats: dict[str, AdapterStats] = {}
        self._lock = threading.Lock()

    def _get(self, name: str) -> AdapterStats:
        return self._stats.setdefault(name, AdapterStats())

    def register(self, name: str) -> None:
        """Make *name* appear in snapshots before its first call."""
        with self._lock:
            self._get(name)

    # ------------------------------------------------------------------
    # Outcome reporting
    # ------------------------------------------------------------------

    def record_success(self, name: str, latency: float) -> None:
        """Record a completed call, live or confirmed not-live."""
        with self._lock:
            stats = self._get(name)
            stats.calls += 1
            stats.successes += 1
            stats.consecutive_failures = 0
            stats.last_latency = latency

    def record_failure(
        self,
        name: str,
        error: BaseException,
        latency: Optional[float] = None,
        cooldown: Optional[float] = None,
    ) -> None:
        """Record a failed call and apply any resulting cooldown.

        Args:
            name: Adapter name.
            error: The exception raised by (or on behalf of) the adapter.
            latency: Seconds spent before the failure.
            cooldown: Cooldown to apply for a rate limit whose error carries
                no usable ``retry_after``.
        """
        now = self._clock()
        with self._lock:
            stats = self._get(name)
            stats.calls += 1
            stats.failures += 1
            stats.consecutive_failures += 1
            stats.last_error = f"{type(error).__name__}: {error}"
            stats.last_latency = latency
            if isinstance(error, AdapterTimeoutError):
                stats.timeouts += 1
            if isinstance(error, AdapterRateLimitError):
                stats.rate_limited += 1
                seconds = error.retry_after if error.retry_after > 0 else (cooldown or 0.0)
                self._cool_down_locked(name, stats, now, seconds, "rate limited")
            elif stats.consecutive_failures >= self._threshold:
                self._cool_down_locked(
                    name, stats, now, self._breaker_cooldown, "circuit breaker"
                )
                stats.consecutive_failures = 0

    def cooldown(self, name: str, seconds: float) -> None:
        """Put *name* on cooldown for *seconds* regardless of its history."""
        now = self._clock()
        with self._lock:
            self._cool_down_locked(name, self._get(name), now, seconds, "manual")

    def _cool_down_locked(
        self, name: str, stats: AdapterStats, now: float, seconds: float, reason: str
    ) -> None:
        if seconds <= 0:
            return
        stats.cooldown_until = max(stats.cooldown_until, now + seconds)
        logger.warning(
            "adapter_health: %s on cooldown for %.0fs (%s)", name, seconds, reason
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def in_cooldown(self, name: str) -> bool:
        now = self._clock()
        with self._lock:
            stats = self._stats.get(name)
            return stats is not None and now < stats.cooldown_until

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Return a health map keyed by adapter name.

        Each entry carries ``status`` (``"ok"``, ``"degraded"``,
        ``"cooldown"`` or ``"unknown"``), the counters, ``last_error`` and
        ``cooldown_remaining`` in seconds.
        """
        now = self._clock()
        with self._lock:
            result: dict[str, dict[str, Any]] = {}
            for name, stats in self._stats.items():
                remaining = max(0.0, stats.cooldown_until - now)
                if remaining > 0:
                    status = "cooldown"
                elif stats.calls == 0:
                    status = "unknown"
                elif stats.consecutive_failures > 0:
                    status = "degraded"
                else:
                    status = "ok"
                result[name] = {
                    "status": status,
                    "calls": stats.calls,
                    "successes": stats.successes,
                    "failures": stats.failures,
                    "timeouts": stats.timeouts,
                    "rate_limited": stats.rate_limited,
                    "consecutive_failures": stats.consecutive_failures,
                    "last_error": stats.last_error,
                    "last_latency": stats.last_latency,
                    "cooldown_remaining": round(remaining, 3),
                }
            return result
