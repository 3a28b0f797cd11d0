"""Configuration package for Live Observatory.

Re-exports the most commonly used configuration symbols so that
callers can write::

    from live_observatory.config import get_settings, Settings

without needing to know which sub-module each symbol lives in.
"""

from __future__ import annotations

from live_observatory.config.settings import ALL_ADAPTERS, Settings, get_settings
from live_observatory.config.youtube_defaults import (
    CHANNEL_ID_PATTERN,
    MAX_DESCRIPTION_CHARS,
    MAX_TAGS,
    VIDEO_ID_PATTERN,
)

__all__ = [
    # settings
    "ALL_ADAPTERS",
    "Settings",
    "get_settings",
    # youtube defaults
    "CHANNEL_ID_PATTERN",
    "VIDEO_ID_PATTERN",
    "MAX_DESCRIPTION_CHARS",
    "MAX_TAGS",
]
