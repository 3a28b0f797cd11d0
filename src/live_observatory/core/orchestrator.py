"""Resolution orchestrator: picks the best available answer under deadline pressure.

Given a :class:`~live_observatory.core.targets.Target`, the orchestrator
selects the applicable adapters, runs them sequentially (default) or with
bounded parallelism, and accepts exactly one adapter's output.

Per-resolution flow::

    Idle -> Probing(adapter_i) -> Accepted | NextAdapter | AllExhausted

- A live answer is accepted immediately.
- The first "not live" answer is kept.  Later adapters are consulted only
  while time remains and only when their ``confidence`` is strictly higher.
- Failures and timeouts are recorded in the health tracker and skipped.
- When the global deadline fires before any answer, or nothing answered and
  at least one adapter timed out, a degraded "assume offline" record is
  returned (``sourceMethod == "deadline"``).
- When every candidate failed outright, a :class:`NotFound` is returned.

Only :class:`~live_observatory.core.exceptions.InvalidTargetError` ever
propagates to the caller.  Degraded answers and ``NotFound`` are never cached.

Usage::

    orchestrator = build_orchestrator()
    result = await orchestrator.resolve(Target.video("dQw4w9WgXcQ"), FieldSet.STATUS)
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence, Union

import structlog

from live_observatory.adapters.base import SourceAdapter
from live_observatory.config.settings import Settings, get_settings
from live_observatory.core.adapter_health import AdapterHealthTracker
from live_observatory.core.exceptions import (
    AdapterTimeoutError,
    AdapterUnavailableError,
    AllAdaptersExhaustedError,
    DeadlineExceededError,
    InvalidTargetError,
    NormalizationError,
    QuotaExhaustedError,
)
from live_observatory.core.freshness_cache import FreshnessCache, cache_key, target_prefix
from live_observatory.core.logging_config import resolution_context
from live_observatory.core.normalizer import Normalizer
from live_observatory.core.quota_tracker import QuotaTracker
from live_observatory.core.schemas.live_metadata import (
    FieldSet,
    LiveMetadataRecord,
    NotFound,
)
from live_observatory.core.targets import Target, TargetKind

logger = structlog.get_logger(__name__)

ResolutionResult = Union[LiveMetadataRecord, NotFound]

DEADLINE_SOURCE = "deadline"
DEGRADED_NOTE = "could not determine live status before deadline; assuming offline"
NOT_LIVE_NOTE = "not live"

_VIEWER_BATCH_SIZE = 50


@dataclass
class _Outcome:
    """What one adapter invocation produced."""

    adapter: SourceAdapter
    order: int
    record: Optional[LiveMetadataRecord] = None
    error: Optional[BaseException] = None
    timed_out: bool = False
    skipped: bool = False

    @property
    def is_live(self) -> bool:
        return self.record is not None and self.record.is_live_now

    @property
    def rank(self) -> tuple[int, int]:
        return (int(self.adapter.descriptor.tier), self.order)


@dataclass
class _ResolutionState:
    """Mutable bookkeeping for one resolution attempt."""

    attempted: list[str] = field(default_factory=list)
    best_not_live: Optional[LiveMetadataRecord] = None
    best_confidence: int = -1
    any_timeout: bool = False
    deadline_hit: bool = False

    def can_upgrade(self, adapter: SourceAdapter) -> bool:
        return (
            self.best_not_live is None
            or adapter.descriptor.confidence > self.best_confidence
        )


def _is_cacheable(result: Any) -> bool:
    return isinstance(result, LiveMetadataRecord) and not result.is_degraded


class ResolutionOrchestrator:
    """Runs source adapters under a global deadline and returns one answer.

    Args:
        adapters: Adapter instances, in registration order.
        cache: Freshness cache; a private one is created when ``None``.
        quota: Quota tracker for metered adapters.
        settings: Application settings; defaults to :func:`get_settings`.
        health: Adapter health tracker.
        normalizer: Raw-result normalizer.
        clock: Monotonic clock in seconds.  Injectable for tests.
    """

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        cache: Optional[FreshnessCache] = None,
        quota: Optional[QuotaTracker] = None,
        settings: Optional[Settings] = None,
        health: Optional[AdapterHealthTracker] = None,
        normalizer: Optional[Normalizer] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or get_settings()
        self._adapters: list[SourceAdapter] = list(adapters)
        self._cache = cache or FreshnessCache()
        self._quota = quota or QuotaTracker(
            daily_limit=self._settings.quota_daily_limit,
            period_hours=self._settings.quota_reset_period_hours,
            anchor=self._settings.quota_reset_anchor,
            cost_per_1000_units=self._settings.quota_cost_per_1000_units,
        )
        self._health = health or AdapterHealthTracker()
        self._normalizer = normalizer or Normalizer()
        self._clock = clock
        self._sweeper: Optional[asyncio.Task[None]] = None
        for adapter in self._adapters:
            self._health.register(adapter.name)

    @property
    def adapters(self) -> list[SourceAdapter]:
        return list(self._adapters)

    @property
    def cache(self) -> FreshnessCache:
        return self._cache

    @property
    def quota(self) -> QuotaTracker:
        return self._quota

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(
        self,
        target: Target,
        fields: FieldSet = FieldSet.FULL,
        *,
        use_cache: bool = True,
    ) -> ResolutionResult:
        """Resolve the live status and metadata of *target*.

        Args:
            target: A validated :class:`Target`.
            fields: Which part of the record is needed; selects the cache TTL.
            use_cache: When ``False`` the cache is neither read nor written.

        Returns:
            A :class:`LiveMetadataRecord` (live, not live, or the degraded
            "assume offline" answer) or :class:`NotFound`.

        Raises:
            InvalidTargetError: If *target* is not a :class:`Target`.  No
                adapter is invoked in that case.
        """
        if not isinstance(target, Target):
            raise InvalidTargetError(target, "expected a Target instance")
        fields = FieldSet(fields)

        if not use_cache:
            return await self._resolve_uncached(target, fields)

        return await self._cache.get_or_resolve(
            cache_key(target, fields),
            lambda: self._resolve_uncached(target, fields),
            ttl=self._ttl_for(fields),
            should_cache=_is_cacheable,
        )

    def quota_status(self) -> dict[str, Any]:
        """Return quota usage plus whether a paid adapter is configured."""
        return {
            **self._quota.status(),
            "paidAdapterEnabled": any(
                adapter.descriptor.consumes_quota for adapter in self._adapters
            ),
        }

    def invalidate(self, target: Target) -> int:
        """Drop every cached field of *target*.  Returns the number of keys removed."""
        if not isinstance(target, Target):
            raise InvalidTargetError(target, "expected a Target instance")
        removed = self._cache.invalidate_prefix(target_prefix(target))
        logger.info("cache.invalidated", target=str(target), removed=removed)
        return removed

    def available_adapters(self) -> dict[str, dict[str, Any]]:
        """Return a health map: descriptor fields merged with live counters."""
        health = self._health.snapshot()
        return {
            adapter.name: {
                **adapter.descriptor.to_dict(),
                **health.get(adapter.name, {"status": "unknown"}),
            }
            for adapter in self._adapters
        }

    async def check_adapters(self) -> dict[str, dict[str, Any]]:
        """Run every adapter's ``health_check()`` concurrently.

        A metered adapter's check costs real quota, so it is charged to the
        ledger first and skipped (reported ``degraded``) when the remaining
        quota cannot cover it.
        """
        results = await asyncio.gather(
            *(self._check_one(adapter) for adapter in self._adapters),
            return_exceptions=True,
        )
        report: dict[str, dict[str, Any]] = {}
        for adapter, result in zip(self._adapters, results):
            if isinstance(result, BaseException):
                report[adapter.name] = {
                    "status": "down",
                    "adapter": adapter.name,
                    "detail": f"{type(result).__name__}: {result}",
                }
            else:
                report[adapter.name] = result
        return report

    async def _check_one(self, adapter: SourceAdapter) -> dict[str, Any]:
        cost = adapter.descriptor.quota_cost
        if adapter.descriptor.consumes_quota and not self._quota.try_consume(cost):
            logger.info(
                "health_check.quota_skip",
                adapter=adapter.name,
                needed=cost,
                remaining=self._quota.remaining(),
            )
            return {
                "status": "degraded",
                "adapter": adapter.name,
                "checked_at": datetime.now(timezone.utc).isoformat(),
                "detail": f"skipped: health check needs {cost} quota unit(s), "
                f"{self._quota.remaining()} remaining",
            }
        return await adapter.health_check()

    async def viewer_counts(self, video_ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        """Fetch authoritative concurrent-viewer counts for many videos at once.

        Uses the paid adapter's batch endpoint (one quota unit per 50 ids).
        Returns an empty mapping when no paid adapter is configured, the
        adapter is cooling down, or the remaining quota cannot cover the
        batches.

        Raises:
            InvalidTargetError: If any id is not a valid video id.
        """
        ids = list(dict.fromkeys(Target.video(video_id).value for video_id in video_ids))
        if not ids:
            return {}
        adapter = next(
            (
                a
                for a in self._adapters
                if a.descriptor.consumes_quota and hasattr(a, "refresh_viewer_counts")
            ),
            None,
        )
        if adapter is None or self._health.in_cooldown(adapter.name):
            return {}

        batches = math.ceil(len(ids) / _VIEWER_BATCH_SIZE)
        units = batches * adapter.descriptor.quota_cost
        if not self._quota.try_consume(units):
            logger.info("viewer_counts.quota_skip", needed=units, remaining=self._quota.remaining())
            return {}

        started = self._clock()
        try:
            counts = await asyncio.wait_for(
                adapter.refresh_viewer_counts(ids),  # type: ignore[attr-defined]
                timeout=self._settings.global_deadline_seconds,
            )
        except asyncio.TimeoutError:
            self._health.record_failure(
                adapter.name,
                AdapterTimeoutError("batch viewer lookup timed out", adapter=adapter.name),
                self._clock() - started,
            )
            return {}
        except AdapterUnavailableError as exc:
            if isinstance(exc, QuotaExhaustedError):
                self._quota.exhaust()
            self._health.record_failure(
                adapter.name,
                exc,
                self._clock() - started,
                cooldown=self._settings.rate_limit_cooldown_seconds,
            )
            logger.warning("viewer_counts.failed", adapter=adapter.name, error=str(exc))
            return {}
        self._health.record_success(adapter.name, self._clock() - started)
        return counts

    def start_sweeper(self) -> asyncio.Task[None]:
        """Start the background cache sweep on the running loop (idempotent)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(
                self._cache.run_sweeper(self._settings.cache_sweep_interval_seconds)
            )
        return self._sweeper

    async def aclose(self) -> None:
        """Stop the sweeper and pending resolutions, then release every adapter."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None
        await self._cache.cancel_in_flight()
        results = await asyncio.gather(
            *(adapter.aclose() for adapter in self._adapters),
            return_exceptions=True,
        )
        for adapter, result in zip(self._adapters, results):
            if isinstance(result, Exception):
                logger.warning("adapter.close_failed", adapter=adapter.name, error=str(result))

    # ------------------------------------------------------------------
    # Candidate selection
    # ------------------------------------------------------------------

    def _ttl_for(self, fields: FieldSet) -> float:
        if fields is FieldSet.STATUS:
            return self._settings.status_ttl_seconds
        if fields is FieldSet.VIEWERS:
            return self._settings.viewers_ttl_seconds
        return self._settings.full_ttl_seconds

    def candidates(self, target: Target, fields: FieldSet = FieldSet.FULL) -> list[SourceAdapter]:
        """Return the ordered adapters eligible for *target*.

        Adapters that do not support the target kind, are cooling down, or
        would need more quota than remains are left out.  The rest are
        ordered by ``(tier, soft_timeout)``; for a viewers read the paid
        adapter is moved to the front.
        """
        remaining_quota: Optional[int] = None
        eligible: list[SourceAdapter] = []
        for adapter in self._adapters:
            descriptor = adapter.descriptor
            if not adapter.supports(target):
                continue
            if self._health.in_cooldown(adapter.name):
                logger.debug("adapter.skipped", adapter=adapter.name, reason="cooldown")
                continue
            if descriptor.consumes_quota:
                if remaining_quota is None:
                    remaining_quota = self._quota.remaining()
                if remaining_quota < descriptor.quota_cost:
                    logger.info("adapter.skipped", adapter=adapter.name, reason="quota")
                    continue
            eligible.append(adapter)

        ordered = sorted(
            eligible,
            key=lambda a: (int(a.descriptor.tier), a.descriptor.soft_timeout),
        )
        if fields is FieldSet.VIEWERS:
            ordered.sort(key=lambda a: not a.descriptor.consumes_quota)
        return ordered

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _resolve_uncached(self, target: Target, fields: FieldSet) -> ResolutionResult:
        with resolution_context(target):
            return await self._run(target, fields)

    async def _run(self, target: Target, fields: FieldSet) -> ResolutionResult:
        started = self._clock()
        deadline = started + self._settings.global_deadline_seconds
        candidates = self.candidates(target, fields)
        logger.info(
            "resolution.start",
            fields=fields.value,
            candidates=[a.name for a in candidates],
            mode=self._settings.execution_mode,
        )

        state = _ResolutionState()
        if self._settings.execution_mode == "parallel":
            live = await self._run_parallel(target, candidates, deadline, state)
        else:
            live = await self._run_sequential(target, candidates, deadline, state)

        elapsed = round(self._clock() - started, 3)
        if live is not None:
            logger.info(
                "resolution.live",
                source=live.source_method,
                viewer_count_kind=live.viewer_count_kind.value,
                elapsed=elapsed,
            )
            return live

        if state.best_not_live is not None:
            logger.info(
                "resolution.not_live",
                source=state.best_not_live.source_method,
                elapsed=elapsed,
            )
            return state.best_not_live

        if state.deadline_hit or state.any_timeout:
            exc = DeadlineExceededError(self._settings.global_deadline_seconds)
            logger.warning(
                "resolution.degraded",
                reason=str(exc),
                attempted=state.attempted,
                elapsed=elapsed,
            )
            return self._degraded_record(target)

        exhausted = AllAdaptersExhaustedError(state.attempted)
        logger.warning("resolution.not_found", reason=str(exhausted), elapsed=elapsed)
        return NotFound(
            target=str(target),
            mode=target.kind.value,
            attempted=list(state.attempted),
        )

    async def _run_sequential(
        self,
        target: Target,
        candidates: list[SourceAdapter],
        deadline: float,
        state: _ResolutionState,
    ) -> Optional[LiveMetadataRecord]:
        for order, adapter in enumerate(candidates):
            if not state.can_upgrade(adapter):
                continue
            remaining = deadline - self._clock()
            if remaining <= 0:
                state.deadline_hit = True
                break
            soft = adapter.descriptor.soft_timeout
            outcome = await self._invoke(adapter, order, target, min(soft, remaining))
            if outcome.timed_out and remaining < soft:
                state.deadline_hit = True
            if outcome.is_live:
                return outcome.record
            self._absorb(outcome, target, state)
        return None

    async def _run_parallel(
        self,
        target: Target,
        candidates: list[SourceAdapter],
        deadline: float,
        state: _ResolutionState,
    ) -> Optional[LiveMetadataRecord]:
        queue = deque(enumerate(candidates))
        running: dict[asyncio.Task[_Outcome], SourceAdapter] = {}
        limit = self._settings.max_parallel_adapters
        try:
            while True:
                while queue and len(running) < limit:
                    order, adapter = queue.popleft()
                    if not state.can_upgrade(adapter):
                        continue
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        state.deadline_hit = True
                        break
                    timeout = min(adapter.descriptor.soft_timeout, remaining)
                    task = asyncio.create_task(self._invoke(adapter, order, target, timeout))
                    running[task] = adapter

                if not running:
                    return None

                remaining = deadline - self._clock()
                if remaining <= 0:
                    state.deadline_hit = True
                    return None
                done, _ = await asyncio.wait(
                    running, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                if not done:
                    state.deadline_hit = True
                    return None

                outcomes = sorted((task.result() for task in done), key=lambda o: o.rank)
                for task in done:
                    running.pop(task)

                live = [o for o in outcomes if o.is_live]
                if live:
                    winner = live[0]
                    for loser in live[1:]:
                        logger.info(
                            "adapter.live_discarded",
                            adapter=loser.adapter.name,
                            winner=winner.adapter.name,
                        )
                    return winner.record

                for outcome in outcomes:
                    if outcome.timed_out and deadline - self._clock() <= 0:
                        state.deadline_hit = True
                    self._absorb(outcome, target, state)

                stale = [task for task, adapter in running.items() if not state.can_upgrade(adapter)]
                for task in stale:
                    running.pop(task)
                    task.cancel()
                if stale:
                    await asyncio.gather(*stale, return_exceptions=True)
        finally:
            for task in running:
                task.cancel()
            if running:
                await asyncio.gather(*running, return_exceptions=True)

    def _absorb(self, outcome: _Outcome, target: Target, state: _ResolutionState) -> None:
        """Fold a non-live outcome into *state*."""
        if outcome.skipped:
            return
        state.attempted.append(outcome.adapter.name)
        if outcome.timed_out:
            state.any_timeout = True
            return
        if outcome.error is not None:
            return
        confidence = outcome.adapter.descriptor.confidence
        if state.best_not_live is None or confidence > state.best_confidence:
            record = outcome.record or self._not_live_record(target, outcome.adapter.name)
            if record.note is None:
                record = record.model_copy(update={"note": NOT_LIVE_NOTE})
            state.best_not_live = record
            state.best_confidence = confidence

    async def _invoke(
        self,
        adapter: SourceAdapter,
        order: int,
        target: Target,
        timeout: float,
    ) -> _Outcome:
        """Run one adapter under a hard timeout and classify the outcome.

        Never raises except for cancellation of the calling task.
        """
        name = adapter.name
        descriptor = adapter.descriptor
        if descriptor.consumes_quota and not self._quota.try_consume(descriptor.quota_cost):
            logger.info("adapter.skipped", adapter=name, reason="quota")
            return _Outcome(adapter, order, skipped=True)

        started = self._clock()
        try:
            raw = await asyncio.wait_for(adapter.fetch(target), timeout=timeout)
            record = self._normalizer.normalize(raw) if raw is not None else None
        except asyncio.TimeoutError:
            error = AdapterTimeoutError(f"{name} exceeded {timeout:.2f}s", adapter=name)
            self._health.record_failure(name, error, self._clock() - started)
            logger.warning("adapter.timeout", adapter=name, timeout=round(timeout, 3))
            return _Outcome(adapter, order, error=error, timed_out=True)
        except AdapterUnavailableError as exc:
            if isinstance(exc, QuotaExhaustedError):
                self._quota.exhaust()
            self._health.record_failure(
                name,
                exc,
                self._clock() - started,
                cooldown=self._settings.rate_limit_cooldown_seconds,
            )
            logger.warning(
                "adapter.failed", adapter=name, error_type=type(exc).__name__, error=str(exc)
            )
            return _Outcome(adapter, order, error=exc)
        except NormalizationError as exc:
            self._health.record_failure(name, exc, self._clock() - started)
            logger.warning("adapter.unnormalizable", adapter=name, error=str(exc))
            return _Outcome(adapter, order, error=exc)
        except Exception as exc:  # noqa: BLE001
            self._health.record_failure(name, exc, self._clock() - started)
            logger.warning(
                "adapter.crashed",
                adapter=name,
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )
            return _Outcome(adapter, order, error=exc)

        latency = self._clock() - started
        self._health.record_success(name, latency)
        logger.debug(
            "adapter.completed",
            adapter=name,
            live=record is not None and record.is_live_now,
            latency=round(latency, 3),
        )
        return _Outcome(adapter, order, record=record)

    # ------------------------------------------------------------------
    # Synthetic records
    # ------------------------------------------------------------------

    @staticmethod
    def _identity(target: Target) -> dict[str, Any]:
        if target.kind is TargetKind.VIDEO:
            return {"video_id": target.value}
        if target.kind is TargetKind.CHANNEL:
            return {"channel_id": target.value}
        return {}

    def _not_live_record(self, target: Target, source: str) -> LiveMetadataRecord:
        return LiveMetadataRecord(
            **self._identity(target),
            is_live_now=False,
            source_method=source,
            note=NOT_LIVE_NOTE,
            mode=target.kind.value,
        )

    def _degraded_record(self, target: Target) -> LiveMetadataRecord:
        return LiveMetadataRecord(
            **self._identity(target),
            is_live_now=False,
            source_method=DEADLINE_SOURCE,
            note=DEGRADED_NOTE,
            mode=target.kind.value,
        )
