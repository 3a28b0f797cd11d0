"""Unit tests for the quota tracker.

Tests cover:
- consume / try_consume / remaining accounting
- periodic reset from the configured anchor
- exhaust() until the next reset
- cost estimation (ceil per 1,000 units above the free allowance)
- status() and estimate_costs() shapes
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from live_observatory.core.quota_tracker import QuotaTracker

START = datetime(2026, 10, 18, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def quota(clock: FakeClock) -> QuotaTracker:
    return QuotaTracker(daily_limit=100, period_hours=24, clock=clock)


class TestAccounting:
    def test_consume_reduces_remaining(self, quota: QuotaTracker) -> None:
        assert quota.consume(10) == 10
        assert quota.remaining() == 90
        assert quota.used() == 10

    def test_consume_beyond_limit_is_recorded(self, quota: QuotaTracker) -> None:
        quota.consume(150)
        assert quota.used() == 150
        assert quota.remaining() == 0

    def test_negative_units_rejected(self, quota: QuotaTracker) -> None:
        with pytest.raises(ValueError):
            quota.consume(-1)

    def test_try_consume_refuses_when_budget_short(self, quota: QuotaTracker) -> None:
        quota.consume(99)
        assert quota.try_consume(2) is False
        assert quota.used() == 99
        assert quota.try_consume(1) is True
        assert quota.remaining() == 0

    def test_try_consume_is_atomic_across_threads(self, clock: FakeClock) -> None:
        quota = QuotaTracker(daily_limit=500, clock=clock)
        granted: list[bool] = []
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(100):
                ok = quota.try_consume(1)
                with lock:
                    granted.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(granted) == 500
        assert quota.used() == 500


class TestReset:
    def test_usage_resets_after_period(self, quota: QuotaTracker, clock: FakeClock) -> None:
        quota.consume(80)
        clock.advance(hours=23, minutes=59)
        assert quota.used() == 80
        clock.advance(minutes=1)
        assert quota.used() == 0
        assert quota.remaining() == 100

    def test_anchor_defines_period_boundary(self, clock: FakeClock) -> None:
        anchor = START - timedelta(hours=20)
        quota = QuotaTracker(daily_limit=100, anchor=anchor, clock=clock)
        quota.consume(50)
        clock.advance(hours=4)
        assert quota.used() == 0

    def test_naive_anchor_is_utc(self, clock: FakeClock) -> None:
        quota = QuotaTracker(anchor=datetime(2026, 10, 17, 12, 0), clock=clock)
        assert quota.anchor.tzinfo is timezone.utc

    def test_exhaust_until_reset(self, quota: QuotaTracker, clock: FakeClock) -> None:
        quota.exhaust()
        assert quota.remaining() == 0
        assert quota.try_consume(1) is False
        clock.advance(hours=24)
        assert quota.remaining() == 100

    def test_invalid_construction(self) -> None:
        with pytest.raises(ValueError):
            QuotaTracker(daily_limit=-1)
        with pytest.raises(ValueError):
            QuotaTracker(period_hours=0)


class TestCost:
    def test_no_cost_within_free_limit(self, quota: QuotaTracker) -> None:
        assert quota.estimated_cost(100) == 0.0

    def test_cost_is_charged_per_started_thousand(self) -> None:
        quota = QuotaTracker(daily_limit=10_000, cost_per_1000_units=0.003)
        assert quota.estimated_cost(10_001) == pytest.approx(0.003)
        assert quota.estimated_cost(11_000) == pytest.approx(0.003)
        assert quota.estimated_cost(11_001) == pytest.approx(0.006)

    def test_estimate_costs_projection(self) -> None:
        quota = QuotaTracker(daily_limit=10_000, cost_per_1000_units=0.003)
        projection = quota.estimate_costs(15_000)

        assert projection["daily"]["cost"] == pytest.approx(0.015)
        assert projection["daily"]["monthly"] == pytest.approx(0.45)
        assert projection["daily"]["yearly"] == pytest.approx(5.475)
        assert projection["freeLimit"] == 10_000
        assert projection["scenarios"]["light"]["cost"] == 0.0
        assert projection["scenarios"]["enterprise"]["cost"] == pytest.approx(0.12)


class TestStatus:
    def test_status_shape(self, quota: QuotaTracker, clock: FakeClock) -> None:
        quota.consume(30)
        clock.advance(hours=3)
        status = quota.status()

        assert status["used"] == 30
        assert status["remaining"] == 70
        assert status["estimatedCost"] == 0.0
        assert status["limit"] == 100
        assert status["exhausted"] is False
        assert status["willExceedFree"] is False
        assert status["hoursElapsed"] == 3.0
        assert status["averagePerHour"] == 10.0
        assert status["nextReset"] == (START + timedelta(hours=24)).isoformat()

    def test_usage_since(self, quota: QuotaTracker, clock: FakeClock) -> None:
        quota.consume(20)
        clock.advance(hours=2)
        quota.consume(20)
        clock.advance(hours=2)
        assert quota.usage_since() == 10.0
        assert quota.usage_since(START + timedelta(hours=1)) == pytest.approx(20 / 3, rel=1e-2)

    def test_usage_since_zero_elapsed(self, quota: QuotaTracker) -> None:
        quota.consume(5)
        assert quota.usage_since() == 0.0
