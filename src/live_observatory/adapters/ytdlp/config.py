"""yt-dlp adapter configuration."""

from __future__ import annotations

from live_observatory.adapters.base import AdapterDescriptor, PriorityTier
from live_observatory.core.targets import TargetKind

YTDLP_DESCRIPTOR = AdapterDescriptor(
    name="ytdlp",
    supported_targets=frozenset({TargetKind.VIDEO, TargetKind.CHANNEL, TargetKind.HANDLE}),
    soft_timeout=15.0,
    quota_cost=0,
    tier=PriorityTier.LAST_RESORT,
    confidence=2,
)

YTDLP_BASE_ARGS: tuple[str, ...] = ("--dump-json", "--no-download", "--skip-download")

NOT_LIVE_MARKERS: tuple[str, ...] = (
    "sign in to confirm",
    "not a bot",
    "unavailable",
    "not currently live",
)
"""Lower-cased stderr fragments that mean "nothing live to report"."""

COOKIE_DOMAINS: tuple[tuple[str, str], ...] = ((".youtube.com", "TRUE"), ("youtube.com", "FALSE"))
"""``(domain, include_subdomains)`` rows written for every cookie."""

COOKIE_LIFETIME_SECONDS: int = 365 * 24 * 60 * 60
