"""Quota ledger for the metered YouTube Data API adapter.

The tracker counts consumed quota units against a free allowance and tells
the orchestrator whether the paid adapter may be called right now.  It never
blocks: when the budget is spent the orchestrator simply skips the adapter.

Reset cadence
-------------
The ledger resets every ``period_hours`` measured from ``anchor`` (process
start by default).  It is not tied to the provider's own
billing boundary (midnight Pacific Time for the Data API); deployments that
want to line up with it pass that instant as the anchor.

Cost model
----------
Units above the free allowance are billed per started block of 1,000 units::

    cost = ceil((used - limit) / 1000) * cost_per_1000_units

Usage::

    quota = QuotaTracker(daily_limit=10_000)
    if quota.try_consume(1):
        ...  # call the paid API
    quota.status()
    # {"used": 1, "remaining": 9999, "estimatedCost": 0.0, ...}
"""

from __future__ import annotations

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QuotaLedger:
    """Mutable per-period quota state.  Owned by :class:`QuotaTracker`.

    Attributes:
        used: Units consumed in the current period.  Only ever increases
            until the next reset.
        period_start: Start of the current period.
        exhausted: Set when the provider reported the quota as spent before
            the local count reached the limit.
        events: ``(timestamp, units)`` consumption log for the current period.
    """

    used: int = 0
    period_start: datetime = field(default_factory=_utcnow)
    exhausted: bool = False
    events: deque[tuple[datetime, int]] = field(default_factory=deque)


class QuotaTracker:
    """Thread-safe quota accounting with periodic resets.

    Args:
        daily_limit: Free units per period.
        period_hours: Length of one period in hours.
        anchor: Start of the first period.  Defaults to the first clock
            reading (process start).
        cost_per_1000_units: USD charged per 1,000 units above the limit.
        clock: Returns the current aware UTC datetime.  Injectable for tests.
    """

    def __init__(
        self,
        daily_limit: int = 10_000,
        period_hours: float = 24.0,
        anchor: Optional[datetime] = None,
        cost_per_1000_units: float = 0.003,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if daily_limit < 0:
            raise ValueError("daily_limit must be >= 0")
        if period_hours <= 0:
            raise ValueError("period_hours must be > 0")
        self._clock = clock
        self.daily_limit = daily_limit
        self.period = timedelta(hours=period_hours)
        now = clock()
        if anchor is None:
            anchor = now
        elif anchor.tzinfo is None:
            anchor = anchor.replace(tzinfo=timezone.utc)
        self.anchor = anchor
        self.cost_per_1000_units = cost_per_1000_units
        self._lock = threading.Lock()
        self._ledger = QuotaLedger(period_start=self._period_start_for(now))

    # ------------------------------------------------------------------
    # Period handling
    # ------------------------------------------------------------------

    def _period_start_for(self, now: datetime) -> datetime:
        elapsed_periods = math.floor((now - self.anchor) / self.period)
        return self.anchor + elapsed_periods * self.period

    def _roll(self, now: datetime) -> None:
        """Reset the ledger when *now* has moved into a new period.  Caller holds the lock."""
        start = self._period_start_for(now)
        if start != self._ledger.period_start:
            logger.info(
                "quota: period reset used=%d previous_start=%s new_start=%s",
                self._ledger.used,
                self._ledger.period_start.isoformat(),
                start.isoformat(),
            )
            self._ledger = QuotaLedger(period_start=start)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def consume(self, units: int) -> int:
        """Record *units* as consumed, even beyond the free limit.

        Returns:
            Units used in the current period after this call.

        Raises:
            ValueError: If *units* is negative.
        """
        if units < 0:
            raise ValueError("units must be >= 0")
        now = self._clock()
        with self._lock:
            self._roll(now)
            self._ledger.used += units
            if units:
                self._ledger.events.append((now, units))
            used = self._ledger.used
        logger.debug("quota: consumed units=%d used=%d", units, used)
        return used

    def try_consume(self, units: int) -> bool:
        """Atomically consume *units* only if they fit in the remaining budget.

        Returns:
            ``True`` when the units were recorded, ``False`` when the budget
            could not cover them (nothing is recorded in that case).
        """
        if units < 0:
            raise ValueError("units must be >= 0")
        now = self._clock()
        with self._lock:
            self._roll(now)
            if self._remaining_locked() < units:
                return False
            self._ledger.used += units
            if units:
                self._ledger.events.append((now, units))
        return True

    def exhaust(self) -> None:
        """Mark the budget as spent until the next period reset.

        Called when the provider reports ``quotaExceeded`` even though the
        local count is below the limit (other consumers share the key).
        """
        with self._lock:
            self._roll(self._clock())
            self._ledger.exhausted = True
        logger.warning("quota: marked exhausted until next reset")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _remaining_locked(self) -> int:
        if self._ledger.exhausted:
            return 0
        return max(0, self.daily_limit - self._ledger.used)

    def remaining(self) -> int:
        with self._lock:
            self._roll(self._clock())
            return self._remaining_locked()

    def used(self) -> int:
        with self._lock:
            self._roll(self._clock())
            return self._ledger.used

    def usage_since(self, anchor: Optional[datetime] = None) -> float:
        """Average consumption rate in units per hour since *anchor*.

        Args:
            anchor: Start of the measurement window.  Defaults to the start
                of the current period.  Consumption from earlier periods is
                not retained.

        Returns:
            Units per hour, or ``0.0`` when no time has elapsed.
        """
        now = self._clock()
        with self._lock:
            self._roll(now)
            since = anchor or self._ledger.period_start
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            units = sum(u for ts, u in self._ledger.events if ts >= since)
        hours = (now - since).total_seconds() / 3600
        if hours <= 0:
            return 0.0
        return round(units / hours, 2)

    def estimated_cost(self, used: Optional[int] = None) -> float:
        """USD cost of *used* units (default: the current period's usage)."""
        if used is None:
            used = self.used()
        over = used - self.daily_limit
        if over <= 0:
            return 0.0
        return round(math.ceil(over / 1000) * self.cost_per_1000_units, 6)

    def status(self) -> dict[str, Any]:
        """Snapshot of the ledger for status endpoints.

        Returns:
            Dict with ``used``, ``remaining``, ``estimatedCost`` plus
            ``limit``, ``exhausted``, ``willExceedFree``, ``periodStart``,
            ``nextReset``, ``hoursElapsed`` and ``averagePerHour``.
        """
        now = self._clock()
        with self._lock:
            self._roll(now)
            used = self._ledger.used
            remaining = self._remaining_locked()
            exhausted = self._ledger.exhausted
            period_start = self._ledger.period_start
        hours_elapsed = (now - period_start).total_seconds() / 3600
        return {
            "used": used,
            "remaining": remaining,
            "estimatedCost": self.estimated_cost(used),
            "limit": self.daily_limit,
            "exhausted": exhausted,
            "willExceedFree": used > self.daily_limit,
            "periodStart": period_start.isoformat(),
            "nextReset": (period_start + self.period).isoformat(),
            "hoursElapsed": round(hours_elapsed, 2),
            "averagePerHour": round(used / hours_elapsed, 2) if hours_elapsed > 0 else 0.0,
        }

    def estimate_costs(self, requests_per_day: int) -> dict[str, Any]:
        """Project costs for a steady load of *requests_per_day* units.

        Returns:
            Dict with a ``daily`` projection (``requests``, ``cost``,
            ``monthly``, ``yearly``) and reference ``scenarios`` computed with
            the same formula.
        """
        daily_cost = self.estimated_cost(requests_per_day)
        scenarios = {
            name: {"requests": requests, "cost": self.estimated_cost(requests)}
            for name, requests in (
                ("light", 1_000),
                ("medium", 5_000),
                ("heavy", 15_000),
                ("enterprise", 50_000),
            )
        }
        return {
            "daily": {
                "requests": requests_per_day,
                "cost": daily_cost,
                "monthly": round(daily_cost * 30, 6),
                "yearly": round(daily_cost * 365, 6),
            },
            "freeLimit": self.daily_limit,
            "costPer1000Units": self.cost_per_1000_units,
            "scenarios": scenarios,
        }
