"""Static YouTube endpoints, identifier patterns, and request defaults.

These constants are shared by the adapters and by :mod:`live_observatory.core.targets`.
They describe upstream conventions rather than deployment policy, which is
why they live here and not in :mod:`.settings`.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Identifier patterns
# ---------------------------------------------------------------------------

VIDEO_ID_PATTERN: re.Pattern[str] = re.compile(r"^[A-Za-z0-9_-]{11}$")
"""Exactly 11 URL-safe characters."""

CHANNEL_ID_PATTERN: re.Pattern[str] = re.compile(r"^UC[A-Za-z0-9_-]{22}$")
"""24 characters with the fixed ``UC`` prefix."""

HANDLE_PATTERN: re.Pattern[str] = re.compile(r"^[^\s/?#]+$")
"""Free-form handle: anything without whitespace or URL separators."""

WATCH_URL_VIDEO_ID: re.Pattern[str] = re.compile(r"[?&]v=([A-Za-z0-9_-]{11})")
"""Extracts the video id from a ``watch?v=`` URL or ``Location`` header."""

# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------

YOUTUBE_BASE_URL: str = "https://www.youtube.com"

YOUTUBE_WATCH_URL: str = YOUTUBE_BASE_URL + "/watch?v={video_id}"
"""Watch page for a single video."""

YOUTUBE_CHANNEL_LIVE_URL: str = YOUTUBE_BASE_URL + "/channel/{channel_id}/live"
"""Redirects to the current live video when the channel is live."""

YOUTUBE_HANDLE_LIVE_URL: str = YOUTUBE_BASE_URL + "/@{handle}/live"
"""Handle equivalent of :data:`YOUTUBE_CHANNEL_LIVE_URL`."""

YOUTUBE_DATA_API_BASE_URL: str = "https://www.googleapis.com/youtube/v3"
"""Base URL for all YouTube Data API v3 endpoints."""

INNERTUBE_API_BASE_URL: str = YOUTUBE_BASE_URL + "/youtubei/v1"
"""Base URL of YouTube's internal web-client API."""

# ---------------------------------------------------------------------------
# Request defaults
# ---------------------------------------------------------------------------

DEFAULT_USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
)

DEFAULT_ACCEPT_LANGUAGE: str = "en-US,en;q=0.9"
"""English first so that "watching now" markers are predictable."""

DEFAULT_HTML_ACCEPT: str = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8"
)

# ---------------------------------------------------------------------------
# Canonical record bounds
# ---------------------------------------------------------------------------

MAX_DESCRIPTION_CHARS: int = 300
"""Descriptions are truncated to this many characters."""

MAX_TAGS: int = 20
"""At most this many tags are kept per record."""

WATCHING_NOW_PATTERN: re.Pattern[str] = re.compile(
    r"(watching now|watching|espectadores|mirando ahora|viendo ahora|zuschauer)",
    re.IGNORECASE,
)
"""Localized "currently watching" markers that tag a count as a concurrent estimate."""
