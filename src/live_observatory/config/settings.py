"""Application settings loaded from environment variables.

Uses Pydantic Settings v2 for validated, type-safe configuration.
Credentials (the YouTube Data API key, cookies) are accessed exclusively
through this module; never call ``os.getenv`` directly elsewhere in the
codebase.

Every variable carries the ``LIVE_OBSERVATORY_`` prefix, e.g.
``LIVE_OBSERVATORY_YOUTUBE_API_KEY`` or ``LIVE_OBSERVATORY_EXECUTION_MODE``.

Usage::

    from live_observatory.config.settings import get_settings

    settings = get_settings()
    deadline = settings.global_deadline_seconds
"""

from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from live_observatory.config.youtube_defaults import DEFAULT_USER_AGENTS

ALL_ADAPTERS: tuple[str, ...] = (
    "fast_status",
    "innertube",
    "html_scrape",
    "data_api",
    "ytdlp",
)
"""Names of every adapter shipped with the package, in registration order."""


class Settings(BaseSettings):
    """Process-wide configuration backed by environment variables and an optional .env file.

    Every field has a default so that the engine starts with free adapters
    only.  The paid Data API adapter is enabled implicitly when
    ``youtube_api_key`` is supplied.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIVE_OBSERVATORY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    log_level: str = "INFO"
    """Logging verbosity.  One of: DEBUG, INFO, WARNING, ERROR, CRITICAL."""

    # ------------------------------------------------------------------
    # Resolution policy
    # ------------------------------------------------------------------

    global_deadline_seconds: float = Field(default=12.0, gt=0)
    """Upper bound on a single resolution.  Long enough to try two or three
    adapters, short enough to bound caller latency."""

    execution_mode: Literal["sequential", "parallel"] = "sequential"
    """``sequential`` minimizes upstream load and quota; ``parallel`` trades
    load for latency by running up to ``max_parallel_adapters`` at once."""

    max_parallel_adapters: int = Field(default=2, ge=1)
    """Concurrency bound used when ``execution_mode == "parallel"``."""

    enabled_adapters: list[str] = Field(default_factory=lambda: list(ALL_ADAPTERS))
    """Adapters the engine is allowed to build.  ``data_api`` additionally
    requires ``youtube_api_key``."""

    adapter_timeouts: dict[str, float] = Field(default_factory=dict)
    """Per-adapter soft-timeout overrides in seconds, keyed by adapter name."""

    rate_limit_cooldown_seconds: float = 60.0
    """Cooldown applied to an adapter after an upstream HTTP 429 that did not
    carry its own ``Retry-After`` value."""

    # ------------------------------------------------------------------
    # Freshness cache
    # ------------------------------------------------------------------

    status_ttl_seconds: float = 30.0
    """TTL for status-only reads.  Liveness flips matter quickly."""

    viewers_ttl_seconds: float = 30.0
    """TTL for viewer-count reads."""

    full_ttl_seconds: float = 300.0
    """TTL for full-metadata reads.  Descriptive fields rarely change while live."""

    cache_sweep_interval_seconds: float = 60.0
    """Interval of the optional background sweep.  Expiry is always checked
    lazily on read; the sweep only reclaims memory."""

    # ------------------------------------------------------------------
    # YouTube Data API v3 (paid adapter)
    # ------------------------------------------------------------------

    youtube_api_key: Optional[str] = None
    """Data API v3 key.  When ``None`` the paid adapter is never built."""

    quota_daily_limit: int = Field(default=10_000, ge=0)
    """Free daily allowance of quota units for the configured key."""

    quota_reset_period_hours: float = Field(default=24.0, gt=0)
    """Length of a quota period.  Not tied to the provider's billing boundary."""

    quota_reset_anchor: Optional[datetime] = None
    """Start of the first quota period.  ``None`` means process start."""

    quota_cost_per_1000_units: float = 0.003
    """USD charged per 1,000 units consumed above the free allowance."""

    # ------------------------------------------------------------------
    # Scraping / subprocess adapters
    # ------------------------------------------------------------------

    http_user_agents: list[str] = Field(
        default_factory=lambda: list(DEFAULT_USER_AGENTS)
    )
    """Browser user agents rotated across scraping requests."""

    ytdlp_binary: str = "yt-dlp"
    """Executable name or path of the ``yt-dlp`` binary."""

    youtube_cookies: Optional[str] = None
    """Browser cookie header (``NAME=value; NAME2=value2``) converted into a
    Netscape cookie file for ``yt-dlp``."""

    @field_validator("enabled_adapters")
    @classmethod
    def _known_adapters(cls, value: list[str]) -> list[str]:
        unknown = sorted(set(value) - set(ALL_ADAPTERS))
        if unknown:
            raise ValueError(
                f"Unknown adapters {unknown}; expected a subset of {list(ALL_ADAPTERS)}"
            )
        return value

    def soft_timeout_for(self, adapter_name: str, default: float) -> float:
        """Return the configured soft timeout for *adapter_name* or *default*."""
        return float(self.adapter_timeouts.get(adapter_name, default))


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings singleton.

    Uses ``functools.lru_cache`` so that Pydantic Settings reads the
    environment and .env file exactly once per process lifetime.  In tests,
    call ``get_settings.cache_clear()`` after patching environment variables.
    """
    return Settings()
