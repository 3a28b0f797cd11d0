"""Unit tests for the resolution orchestrator.

Tests cover:
- acceptance rules: live short-circuit, not-live confidence gating
- timeouts and the global deadline (degraded "assume offline" record)
- NotFound when every adapter fails outright
- quota gating, quota exhaustion and viewers-read promotion of the paid adapter
- rate-limit cooldown
- caching policy and single-flight coalescing
- parallel mode: tie-break and deadline cancellation
- auxiliary operations: invalidate, quota_status, available_adapters,
  check_adapters, viewer_counts, aclose

All adapters are scripted FakeAdapter instances; no network is involved.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from live_observatory.adapters.base import PriorityTier
from live_observatory.config.settings import Settings
from live_observatory.core.exceptions import (
    AdapterRateLimitError,
    AdapterUnavailableError,
    InvalidTargetError,
    QuotaExhaustedError,
)
from live_observatory.core.freshness_cache import cache_key
from live_observatory.core.orchestrator import (
    DEADLINE_SOURCE,
    DEGRADED_NOTE,
    ResolutionOrchestrator,
)
from live_observatory.core.quota_tracker import QuotaTracker
from live_observatory.core.schemas import FieldSet, LiveMetadataRecord, NotFound, ViewerCountKind
from live_observatory.core.targets import Target
from tests.factories.adapters import FakeAdapter, FakePaidAdapter
from tests.factories.payloads import DataApiVideoFactory, StatusProbePayloadFactory


def _orchestrator(settings: Settings, *adapters: Any, quota: QuotaTracker | None = None) -> ResolutionOrchestrator:
    return ResolutionOrchestrator(
        adapters,
        settings=settings,
        quota=quota or QuotaTracker(daily_limit=100),
    )


def _not_live_payload() -> dict[str, Any]:
    return StatusProbePayloadFactory.build(isLiveNow=False, watchingNowText=None)


@pytest.fixture
def parallel_settings(settings: Settings) -> Settings:
    return settings.model_copy(update={"execution_mode": "parallel"})


# ---------------------------------------------------------------------------
# Acceptance scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    async def test_fast_not_live_answer_is_returned(self, settings: Settings, video_target: Target) -> None:
        """A valid not-live answer from the fast adapter wins when nothing outranks it."""
        fast = FakeAdapter("fast", outcome=_not_live_payload(), soft_timeout=0.2)
        slower = FakeAdapter("slower", outcome=_not_live_payload(), tier=PriorityTier.FALLBACK)
        orchestrator = _orchestrator(settings, fast, slower)

        result = await orchestrator.resolve(video_target)

        assert isinstance(result, LiveMetadataRecord)
        assert result.is_live_now is False
        assert result.source_method == "fast"
        assert slower.calls == 0

    async def test_live_answer_after_two_timeouts(self, settings: Settings, channel_target: Target) -> None:
        first = FakeAdapter("first", delay=5.0, soft_timeout=0.05)
        second = FakeAdapter("second", delay=5.0, soft_timeout=0.06)
        third = FakeAdapter(
            "third",
            outcome=StatusProbePayloadFactory.build(watchingNowText="1,200 watching now"),
            soft_timeout=0.2,
        )
        orchestrator = _orchestrator(settings, third, second, first)

        result = await orchestrator.resolve(channel_target)

        assert isinstance(result, LiveMetadataRecord)
        assert result.is_live_now is True
        assert result.source_method == "third"
        assert result.concurrent_viewers == 1200
        assert result.viewer_count_kind is ViewerCountKind.CONCURRENT_ESTIMATE
        assert first.cancelled and second.cancelled

    async def test_all_timeouts_yield_degraded_record(self, settings: Settings, video_target: Target) -> None:
        adapters = [FakeAdapter(f"slow{i}", delay=5.0, soft_timeout=0.05) for i in range(3)]
        orchestrator = _orchestrator(settings, *adapters)

        result = await orchestrator.resolve(video_target)

        assert isinstance(result, LiveMetadataRecord)
        assert result.is_live_now is False
        assert result.source_method == DEADLINE_SOURCE
        assert result.note == DEGRADED_NOTE
        assert result.is_degraded
        assert result.video_id == video_target.value

    async def test_malformed_video_id_invokes_nothing(self, settings: Settings) -> None:
        adapter = FakeAdapter("fast", outcome=StatusProbePayloadFactory.build())
        orchestrator = _orchestrator(settings, adapter)

        with pytest.raises(InvalidTargetError):
            await orchestrator.resolve(Target.video("abcdefghij"))
        with pytest.raises(InvalidTargetError):
            await orchestrator.resolve("abcdefghij")  # type: ignore[arg-type]
        assert adapter.calls == 0


# ---------------------------------------------------------------------------
# Acceptance rules
# ---------------------------------------------------------------------------


class TestAcceptance:
    async def test_live_short_circuits(self, settings: Settings, video_target: Target) -> None:
        live = FakeAdapter("live", outcome=StatusProbePayloadFactory.build())
        never = FakeAdapter("never", outcome=StatusProbePayloadFactory.build(), tier=PriorityTier.FALLBACK, confidence=5)
        orchestrator = _orchestrator(settings, live, never)

        result = await orchestrator.resolve(video_target)

        assert result.source_method == "live"  # type: ignore[union-attr]
        assert never.calls == 0

    async def test_higher_confidence_adapter_overrides_not_live(
        self, settings: Settings, video_target: Target
    ) -> None:
        """A "not live" answer is re-checked only by a strictly more trusted adapter."""
        fast = FakeAdapter("fast", outcome=None)
        peer = FakeAdapter("peer", outcome=StatusProbePayloadFactory.build(), tier=PriorityTier.FALLBACK)
        trusted = FakeAdapter(
            "trusted",
            outcome=StatusProbePayloadFactory.build(),
            tier=PriorityTier.LAST_RESORT,
            confidence=2,
        )
        orchestrator = _orchestrator(settings, fast, peer, trusted)

        result = await orchestrator.resolve(video_target)

        assert peer.calls == 0
        assert trusted.calls == 1
        assert result.is_live_now is True  # type: ignore[union-attr]
        assert result.source_method == "trusted"  # type: ignore[union-attr]

    async def test_none_answer_becomes_not_live_record(self, settings: Settings, channel_target: Target) -> None:
        orchestrator = _orchestrator(settings, FakeAdapter("fast", outcome=None))

        result = await orchestrator.resolve(channel_target)

        assert isinstance(result, LiveMetadataRecord)
        assert result.is_live_now is False
        assert result.channel_id == channel_target.value
        assert result.note == "not live"
        assert result.mode == "channel"

    async def test_failures_are_skipped(self, settings: Settings, video_target: Target) -> None:
        broken = FakeAdapter("broken", outcome=AdapterUnavailableError("html changed"))
        crashing = FakeAdapter("crashing", outcome=RuntimeError("bug"), soft_timeout=1.5)
        good = FakeAdapter("good", outcome=StatusProbePayloadFactory.build(), tier=PriorityTier.FALLBACK)
        orchestrator = _orchestrator(settings, broken, crashing, good)

        result = await orchestrator.resolve(video_target)

        assert result.source_method == "good"  # type: ignore[union-attr]
        health = orchestrator.available_adapters()
        assert health["broken"]["failures"] == 1
        assert health["crashing"]["last_error"] == "RuntimeError: bug"

    async def test_all_failures_yield_not_found(self, settings: Settings, video_target: Target) -> None:
        orchestrator = _orchestrator(
            settings,
            FakeAdapter("a", outcome=AdapterUnavailableError("a")),
            FakeAdapter("b", outcome=AdapterUnavailableError("b"), tier=PriorityTier.FALLBACK),
        )

        result = await orchestrator.resolve(video_target)

        assert isinstance(result, NotFound)
        assert result.attempted == ["a", "b"]
        assert result.mode == "video"
        assert orchestrator.cache.get(cache_key(video_target, FieldSet.FULL)) is None

    async def test_unsupported_kinds_are_not_invoked(self, settings: Settings, handle_target: Target) -> None:
        paid = FakePaidAdapter(outcome=DataApiVideoFactory.build())
        orchestrator = _orchestrator(settings, paid)

        result = await orchestrator.resolve(handle_target)

        assert isinstance(result, NotFound)
        assert result.attempted == []
        assert paid.calls == 0


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------


class TestDeadline:
    async def test_hanging_adapter_is_cancelled_at_deadline(self, settings: Settings, video_target: Target) -> None:
        hanging = FakeAdapter("hanging", delay=30.0, soft_timeout=5.0)
        after = FakeAdapter("after", delay=5.0, tier=PriorityTier.FALLBACK)
        orchestrator = _orchestrator(settings, hanging, after)

        result = await asyncio.wait_for(orchestrator.resolve(video_target), timeout=2.0)

        assert result.is_degraded  # type: ignore[union-attr]
        assert hanging.cancelled

    async def test_degraded_record_is_not_cached(self, settings: Settings, video_target: Target) -> None:
        adapter = FakeAdapter("slow", delay=5.0, soft_timeout=0.05)
        orchestrator = _orchestrator(settings, adapter)

        await orchestrator.resolve(video_target)
        await orchestrator.resolve(video_target)

        assert adapter.calls == 2
        assert orchestrator.cache.get(cache_key(video_target, FieldSet.FULL)) is None

    async def test_not_live_answer_beats_later_timeout(self, settings: Settings, video_target: Target) -> None:
        fast = FakeAdapter("fast", outcome=None)
        slow = FakeAdapter("slow", delay=5.0, soft_timeout=0.05, tier=PriorityTier.FALLBACK, confidence=2)
        orchestrator = _orchestrator(settings, fast, slow)

        result = await orchestrator.resolve(video_target)

        assert slow.cancelled
        assert result.source_method == "fast"  # type: ignore[union-attr]
        assert not result.is_degraded  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Quota and the paid adapter
# ---------------------------------------------------------------------------


class TestQuota:
    async def test_paid_adapter_skipped_without_quota(self, settings: Settings, video_target: Target) -> None:
        free = FakeAdapter("free", outcome=AdapterUnavailableError("down"))
        paid = FakePaidAdapter(outcome=DataApiVideoFactory.build())
        orchestrator = _orchestrator(settings, free, paid, quota=QuotaTracker(daily_limit=0))

        result = await orchestrator.resolve(video_target)

        assert isinstance(result, NotFound)
        assert paid.calls == 0

    async def test_paid_call_consumes_quota(self, settings: Settings, video_target: Target) -> None:
        paid = FakePaidAdapter(outcome=DataApiVideoFactory.build())
        quota = QuotaTracker(daily_limit=10)
        orchestrator = _orchestrator(settings, paid, quota=quota)

        result = await orchestrator.resolve(video_target)

        assert result.viewer_count_kind is ViewerCountKind.CONCURRENT_AUTHORITATIVE  # type: ignore[union-attr]
        assert result.concurrent_viewers == 4321  # type: ignore[union-attr]
        assert quota.used() == 1

    async def test_quota_exhausted_error_marks_ledger(self, settings: Settings, video_target: Target) -> None:
        paid = FakePaidAdapter(outcome=QuotaExhaustedError("quotaExceeded"))
        fallback = FakeAdapter("scrape", outcome=StatusProbePayloadFactory.build(), tier=PriorityTier.LAST_RESORT)
        quota = QuotaTracker(daily_limit=10)
        orchestrator = _orchestrator(settings, paid, fallback, quota=quota)

        result = await orchestrator.resolve(video_target)

        assert result.source_method == "scrape"  # type: ignore[union-attr]
        assert result.viewer_count_kind is ViewerCountKind.CONCURRENT_ESTIMATE  # type: ignore[union-attr]
        assert quota.remaining() == 0
        assert orchestrator.candidates(video_target) == [fallback]

    async def test_viewers_read_promotes_paid_adapter(self, settings: Settings, video_target: Target) -> None:
        free = FakeAdapter("free", outcome=StatusProbePayloadFactory.build())
        paid = FakePaidAdapter(outcome=DataApiVideoFactory.build())
        orchestrator = _orchestrator(settings, free, paid)

        assert orchestrator.candidates(video_target, FieldSet.VIEWERS) == [paid, free]
        assert orchestrator.candidates(video_target, FieldSet.STATUS) == [free, paid]

        result = await orchestrator.resolve(video_target, FieldSet.VIEWERS)

        assert result.source_method == "paid"  # type: ignore[union-attr]
        assert result.viewer_count_kind is ViewerCountKind.CONCURRENT_AUTHORITATIVE  # type: ignore[union-attr]
        assert free.calls == 0

    async def test_free_source_never_reports_authoritative(self, settings: Settings, video_target: Target) -> None:
        free = FakeAdapter("free", outcome=StatusProbePayloadFactory.build())
        paid = FakePaidAdapter(outcome=DataApiVideoFactory.build())
        orchestrator = _orchestrator(settings, free, paid)

        result = await orchestrator.resolve(video_target, FieldSet.FULL)

        assert result.viewer_count_kind is ViewerCountKind.CONCURRENT_ESTIMATE  # type: ignore[union-attr]
        assert paid.calls == 0

    async def test_quota_status_reports_paid_adapter(self, settings: Settings) -> None:
        orchestrator = _orchestrator(settings, FakeAdapter("free"), FakePaidAdapter())
        status = orchestrator.quota_status()
        assert status["paidAdapterEnabled"] is True
        assert status["limit"] == 100

        assert _orchestrator(settings, FakeAdapter("free")).quota_status()["paidAdapterEnabled"] is False


# ---------------------------------------------------------------------------
# Health and cooldown
# ---------------------------------------------------------------------------


class TestCooldown:
    async def test_rate_limited_adapter_is_skipped(self, settings: Settings, video_target: Target) -> None:
        limited = FakeAdapter("limited", outcome=AdapterRateLimitError("429", retry_after=0))
        backup = FakeAdapter("backup", outcome=StatusProbePayloadFactory.build(), tier=PriorityTier.FALLBACK)
        orchestrator = _orchestrator(settings, limited, backup)

        await orchestrator.resolve(video_target, use_cache=False)
        await orchestrator.resolve(video_target, use_cache=False)

        assert limited.calls == 1
        assert backup.calls == 2
        snapshot = orchestrator.available_adapters()["limited"]
        assert snapshot["status"] == "cooldown"
        assert 0 < snapshot["cooldown_remaining"] <= settings.rate_limit_cooldown_seconds

    def test_available_adapters_merges_descriptor(self, settings: Settings) -> None:
        orchestrator = _orchestrator(settings, FakeAdapter("fast", soft_timeout=0.3))
        entry = orchestrator.available_adapters()["fast"]
        assert entry["status"] == "unknown"
        assert entry["soft_timeout"] == 0.3
        assert entry["tier"] == "primary"

    async def test_check_adapters_reports_crash_as_down(self, settings: Settings) -> None:
        healthy = FakeAdapter("healthy")
        healthy.health = {"status": "ok", "adapter": "healthy"}
        broken = FakeAdapter("broken")
        broken.health_check = AsyncMock(side_effect=RuntimeError("dns"))  # type: ignore[method-assign]
        orchestrator = _orchestrator(settings, healthy, broken)

        report = await orchestrator.check_adapters()

        assert report["healthy"]["status"] == "ok"
        assert report["broken"]["status"] == "down"
        assert "dns" in report["broken"]["detail"]

    async def test_metered_health_check_is_charged(self, settings: Settings) -> None:
        paid = FakePaidAdapter()
        paid.health = {"status": "ok", "adapter": "paid"}
        quota = QuotaTracker(daily_limit=100)
        orchestrator = _orchestrator(settings, FakeAdapter("free"), paid, quota=quota)

        report = await orchestrator.check_adapters()

        assert report["paid"]["status"] == "ok"
        assert quota.remaining() == 99

    async def test_metered_health_check_skipped_without_quota(self, settings: Settings) -> None:
        paid = FakePaidAdapter()
        paid.health_check = AsyncMock(return_value={"status": "ok", "adapter": "paid"})  # type: ignore[method-assign]
        quota = QuotaTracker(daily_limit=100)
        quota.exhaust()
        orchestrator = _orchestrator(settings, paid, quota=quota)

        report = await orchestrator.check_adapters()

        assert report["paid"]["status"] == "degraded"
        assert "quota" in report["paid"]["detail"]
        paid.health_check.assert_not_awaited()
        assert quota.remaining() == 0


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


class TestCaching:
    async def test_live_record_is_cached_per_field(self, settings: Settings, video_target: Target) -> None:
        adapter = FakeAdapter("fast", outcome=StatusProbePayloadFactory.build())
        orchestrator = _orchestrator(settings, adapter)

        first = await orchestrator.resolve(video_target, FieldSet.STATUS)
        second = await orchestrator.resolve(video_target, FieldSet.STATUS)
        await orchestrator.resolve(video_target, FieldSet.FULL)

        assert first == second
        assert adapter.calls == 2

    async def test_use_cache_false_bypasses_cache(self, settings: Settings, video_target: Target) -> None:
        adapter = FakeAdapter("fast", outcome=StatusProbePayloadFactory.build())
        orchestrator = _orchestrator(settings, adapter)

        await orchestrator.resolve(video_target, use_cache=False)
        await orchestrator.resolve(video_target, use_cache=False)

        assert adapter.calls == 2
        assert len(orchestrator.cache) == 0

    async def test_concurrent_resolutions_share_one_probe(self, settings: Settings, video_target: Target) -> None:
        adapter = FakeAdapter("fast", outcome=StatusProbePayloadFactory.build(), delay=0.05)
        orchestrator = _orchestrator(settings, adapter)

        results = await asyncio.gather(*(orchestrator.resolve(video_target) for _ in range(5)))

        assert adapter.calls == 1
        assert all(r == results[0] for r in results)

    async def test_invalidate_drops_every_field(self, settings: Settings, video_target: Target) -> None:
        adapter = FakeAdapter("fast", outcome=StatusProbePayloadFactory.build())
        orchestrator = _orchestrator(settings, adapter)
        await orchestrator.resolve(video_target, FieldSet.STATUS)
        await orchestrator.resolve(video_target, FieldSet.FULL)

        assert orchestrator.invalidate(video_target) == 2
        await orchestrator.resolve(video_target, FieldSet.STATUS)
        assert adapter.calls == 3

    async def test_cancelled_caller_leaves_coalesced_caller_unaffected(
        self, settings: Settings, video_target: Target
    ) -> None:
        adapter = FakeAdapter("fast", outcome=StatusProbePayloadFactory.build(), delay=0.05)
        orchestrator = _orchestrator(settings, adapter)

        owner = asyncio.create_task(orchestrator.resolve(video_target))
        waiter = asyncio.create_task(orchestrator.resolve(video_target))
        await asyncio.sleep(0.01)
        owner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await owner

        result = await waiter

        assert isinstance(result, LiveMetadataRecord)
        assert adapter.calls == 1
        assert not adapter.cancelled


# ---------------------------------------------------------------------------
# Parallel mode
# ---------------------------------------------------------------------------


class TestParallel:
    async def test_simultaneous_live_answers_prefer_better_tier(
        self, parallel_settings: Settings, video_target: Target
    ) -> None:
        fallback = FakeAdapter("fallback", outcome=StatusProbePayloadFactory.build(), tier=PriorityTier.FALLBACK)
        primary = FakeAdapter("primary", outcome=StatusProbePayloadFactory.build())
        orchestrator = _orchestrator(parallel_settings, fallback, primary)

        result = await orchestrator.resolve(video_target)

        assert result.source_method == "primary"  # type: ignore[union-attr]

    async def test_first_live_answer_cancels_the_rest(
        self, parallel_settings: Settings, video_target: Target
    ) -> None:
        slow = FakeAdapter("slow", outcome=StatusProbePayloadFactory.build(), delay=5.0, soft_timeout=0.4)
        quick = FakeAdapter("quick", outcome=StatusProbePayloadFactory.build(), tier=PriorityTier.FALLBACK)
        orchestrator = _orchestrator(parallel_settings, slow, quick)

        result = await orchestrator.resolve(video_target)

        assert result.source_method == "quick"  # type: ignore[union-attr]
        assert slow.cancelled

    async def test_deadline_cancels_all_running(self, parallel_settings: Settings, video_target: Target) -> None:
        hanging = [FakeAdapter(f"hang{i}", delay=30.0, soft_timeout=5.0) for i in range(2)]
        orchestrator = _orchestrator(parallel_settings, *hanging)

        result = await asyncio.wait_for(orchestrator.resolve(video_target), timeout=2.0)

        assert result.is_degraded  # type: ignore[union-attr]
        assert all(adapter.cancelled for adapter in hanging)

    async def test_equal_confidence_peers_are_not_scheduled(self, parallel_settings: Settings, video_target: Target) -> None:
        adapters = [FakeAdapter(f"a{i}", outcome=None, delay=0.02) for i in range(3)]
        orchestrator = _orchestrator(parallel_settings, *adapters)

        result = await orchestrator.resolve(video_target)

        assert result.is_live_now is False  # type: ignore[union-attr]
        assert adapters[2].calls == 0


# ---------------------------------------------------------------------------
# Batch viewer counts
# ---------------------------------------------------------------------------


class TestViewerCounts:
    async def test_batches_charge_one_unit_per_fifty_ids(self, settings: Settings) -> None:
        paid = FakePaidAdapter()
        quota = QuotaTracker(daily_limit=100)
        orchestrator = _orchestrator(settings, paid, quota=quota)
        ids = [f"vid{n:08d}" for n in range(120)]

        counts = await orchestrator.viewer_counts(ids + ids[:10])

        assert len(counts) == 120
        assert paid.batches == [ids]
        assert quota.used() == 3

    async def test_insufficient_quota_returns_empty(self, settings: Settings) -> None:
        paid = FakePaidAdapter()
        orchestrator = _orchestrator(settings, paid, quota=QuotaTracker(daily_limit=2))

        assert await orchestrator.viewer_counts([f"vid{n:08d}" for n in range(120)]) == {}
        assert paid.batches == []

    async def test_without_paid_adapter_returns_empty(self, settings: Settings) -> None:
        orchestrator = _orchestrator(settings, FakeAdapter("free"))
        assert await orchestrator.viewer_counts(["dQw4w9WgXcQ"]) == {}

    async def test_quota_error_exhausts_ledger(self, settings: Settings) -> None:
        paid = FakePaidAdapter()
        paid.batch_error = QuotaExhaustedError("quotaExceeded")
        quota = QuotaTracker(daily_limit=100)
        orchestrator = _orchestrator(settings, paid, quota=quota)

        assert await orchestrator.viewer_counts(["dQw4w9WgXcQ"]) == {}
        assert quota.remaining() == 0

    async def test_invalid_id_raises(self, settings: Settings) -> None:
        orchestrator = _orchestrator(settings, FakePaidAdapter())
        with pytest.raises(InvalidTargetError):
            await orchestrator.viewer_counts(["short"])


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    async def test_aclose_closes_adapters_and_sweeper(self, settings: Settings) -> None:
        adapters = [FakeAdapter("a"), FakePaidAdapter()]
        orchestrator = _orchestrator(settings, *adapters)
        sweeper = orchestrator.start_sweeper()
        assert orchestrator.start_sweeper() is sweeper

        await orchestrator.aclose()

        assert sweeper.done()
        assert all(adapter.closed for adapter in adapters)

    async def test_aclose_cancels_pending_resolutions(self, settings: Settings, video_target: Target) -> None:
        hanging = FakeAdapter("slow", delay=30.0)
        orchestrator = _orchestrator(settings, hanging)
        caller = asyncio.create_task(orchestrator.resolve(video_target))
        await asyncio.sleep(0.01)

        await orchestrator.aclose()

        with pytest.raises(asyncio.CancelledError):
            await caller
        assert hanging.cancelled
        assert orchestrator.cache.stats()["in_flight"] == 0
