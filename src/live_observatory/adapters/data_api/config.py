"""Data API adapter configuration and quota constants.

Quota unit costs (from the YouTube Data API v3 documentation):
- ``videos.list``: 1 unit per call (batch up to 50 IDs)
"""

from __future__ import annotations

from live_observatory.adapters.base import AdapterDescriptor, PriorityTier
from live_observatory.core.targets import TargetKind

DATA_API_DESCRIPTOR = AdapterDescriptor(
    name="data_api",
    supported_targets=frozenset({TargetKind.VIDEO}),
    soft_timeout=5.0,
    quota_cost=1,
    tier=PriorityTier.FALLBACK,
    confidence=3,
)
"""Highest confidence: a "not live" answer from the API is final."""

VIDEO_PARTS: str = "snippet,liveStreamingDetails"
"""``part`` requested for a single-video lookup."""

VIEWER_PARTS: str = "liveStreamingDetails"
"""``part`` requested for batch viewer refreshes."""

MAX_IDS_PER_VIDEOS_CALL: int = 50
"""Maximum number of ids accepted by one ``videos.list`` call."""

QUOTA_EXCEEDED_REASONS: frozenset[str] = frozenset({"quotaExceeded", "dailyLimitExceeded"})
RATE_LIMIT_REASONS: frozenset[str] = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})

HEALTH_CHECK_VIDEO_ID: str = "dQw4w9WgXcQ"
"""Long-lived public video used by the health check (1 quota unit)."""
