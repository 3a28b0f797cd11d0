"""Internal API adapter configuration and web-client constants."""

from __future__ import annotations

import re

from live_observatory.adapters.base import AdapterDescriptor, PriorityTier
from live_observatory.core.targets import TargetKind

INNERTUBE_DESCRIPTOR = AdapterDescriptor(
    name="innertube",
    supported_targets=frozenset({TargetKind.VIDEO, TargetKind.CHANNEL, TargetKind.HANDLE}),
    soft_timeout=8.0,
    quota_cost=0,
    tier=PriorityTier.PRIMARY,
    confidence=2,
)

# ---------------------------------------------------------------------------
# Web client identity
# ---------------------------------------------------------------------------

CLIENT_NAME: str = "WEB"
CLIENT_NAME_ID: str = "1"
"""Numeric id sent in ``X-YouTube-Client-Name`` for the WEB client."""

CLIENT_HL: str = "en"
CLIENT_GL: str = "US"

# ---------------------------------------------------------------------------
# Home-page bootstrap patterns
# ---------------------------------------------------------------------------

CLIENT_VERSION_RE: re.Pattern[str] = re.compile(r'"INNERTUBE_CLIENT_VERSION"\s*:\s*"([^"]+)"')
VISITOR_DATA_RE: re.Pattern[str] = re.compile(r'"VISITOR_DATA"\s*:\s*"([^"]+)"')
API_KEY_RE: re.Pattern[str] = re.compile(r'"INNERTUBE_API_KEY"\s*:\s*"([^"]+)"')

SESSION_RESET_STATUSES: frozenset[int] = frozenset({400, 403})
"""Statuses that suggest a stale client version or visitor token."""
