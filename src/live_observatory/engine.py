"""Process wiring: build a ready-to-use :class:`ResolutionOrchestrator` from settings.

Usage::

    from live_observatory.engine import build_orchestrator

    orchestrator = build_orchestrator()
    try:
        record = await orchestrator.resolve(Target.parse("@somechannel"))
    finally:
        await orchestrator.aclose()
"""

from __future__ import annotations

import logging
from typing import Optional

from live_observatory.adapters.base import SourceAdapter
from live_observatory.adapters.registry import autodiscover, get_adapter
from live_observatory.config.settings import Settings, get_settings
from live_observatory.core.adapter_health import AdapterHealthTracker
from live_observatory.core.freshness_cache import FreshnessCache
from live_observatory.core.orchestrator import ResolutionOrchestrator
from live_observatory.core.quota_tracker import QuotaTracker

logger = logging.getLogger(__name__)


def build_adapters(settings: Settings) -> list[SourceAdapter]:
    """Instantiate every enabled adapter with its configured soft timeout.

    ``data_api`` is only built when ``youtube_api_key`` is set.  An adapter
    that is enabled but not registered (its module failed to import) is
    logged and skipped.
    """
    autodiscover()
    adapters: list[SourceAdapter] = []
    for name in settings.enabled_adapters:
        if name == "data_api" and not settings.youtube_api_key:
            logger.info("engine: data_api enabled but no API key configured; skipping")
            continue
        try:
            adapter_cls = get_adapter(name)
        except KeyError as exc:
            logger.error("engine: %s", exc)
            continue
        descriptor = adapter_cls.descriptor
        descriptor = descriptor.with_timeout(
            settings.soft_timeout_for(name, descriptor.soft_timeout)
        )
        adapters.append(adapter_cls(settings=settings, descriptor=descriptor))  # type: ignore[call-arg]
    logger.info("engine: adapters built: %s", [adapter.name for adapter in adapters])
    return adapters


def build_orchestrator(settings: Optional[Settings] = None) -> ResolutionOrchestrator:
    """Return an orchestrator wired with fresh cache, quota and health state."""
    settings = settings or get_settings()
    return ResolutionOrchestrator(
        adapters=build_adapters(settings),
        cache=FreshnessCache(),
        quota=QuotaTracker(
            daily_limit=settings.quota_daily_limit,
            period_hours=settings.quota_reset_period_hours,
            anchor=settings.quota_reset_anchor,
            cost_per_1000_units=settings.quota_cost_per_1000_units,
        ),
        settings=settings,
        health=AdapterHealthTracker(),
    )
