"""Fast status adapter configuration."""

from __future__ import annotations

from live_observatory.adapters.base import AdapterDescriptor, PriorityTier
from live_observatory.config.youtube_defaults import YOUTUBE_BASE_URL
from live_observatory.core.targets import TargetKind

FAST_STATUS_DESCRIPTOR = AdapterDescriptor(
    name="fast_status",
    supported_targets=frozenset({TargetKind.CHANNEL, TargetKind.HANDLE}),
    soft_timeout=3.0,
    quota_cost=0,
    tier=PriorityTier.PRIMARY,
    confidence=1,
)
"""Channel and handle targets only; a video id has no ``/live`` page."""

HEALTH_CHECK_URL: str = YOUTUBE_BASE_URL + "/"
