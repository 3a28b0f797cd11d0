"""Watch-page scrape adapter configuration."""

from __future__ import annotations

from live_observatory.adapters.base import AdapterDescriptor, PriorityTier
from live_observatory.core.targets import TargetKind

HTML_SCRAPE_DESCRIPTOR = AdapterDescriptor(
    name="html_scrape",
    supported_targets=frozenset({TargetKind.VIDEO, TargetKind.CHANNEL}),
    soft_timeout=4.0,
    quota_cost=0,
    tier=PriorityTier.FALLBACK,
    confidence=1,
)

PLAYER_RESPONSE_VAR: str = "ytInitialPlayerResponse"
INITIAL_DATA_VAR: str = "ytInitialData"
