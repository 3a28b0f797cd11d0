"""Shared pytest fixtures for Live Observatory tests.

Fixture summary
---------------
settings         Settings with short deadlines, isolated from .env files.
video_target     A valid video Target.
channel_target   A valid channel Target.
handle_target    A valid handle Target.
fresh_registry   Snapshot/restore of the adapter registry around a test.

All tests run without network access: HTTP is mocked with respx and the
yt-dlp subprocess with unittest.mock.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from live_observatory.adapters import registry
from live_observatory.config.settings import Settings, get_settings
from live_observatory.core.targets import Target
from tests.factories.payloads import CHANNEL_ID, VIDEO_ID

# Make sure nothing cached from a developer's environment leaks into tests.
get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Settings tuned for fast tests: sequential mode, sub-second deadline."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        global_deadline_seconds=0.5,
        execution_mode="sequential",
        max_parallel_adapters=2,
        youtube_api_key=None,
        youtube_cookies=None,
        rate_limit_cooldown_seconds=30.0,
    )


@pytest.fixture
def video_target() -> Target:
    return Target.video(VIDEO_ID)


@pytest.fixture
def channel_target() -> Target:
    return Target.channel(CHANNEL_ID)


@pytest.fixture
def handle_target() -> Target:
    return Target.handle("@lofigirl")


@pytest.fixture
def fresh_registry() -> Iterator[dict]:
    """Yield the live registry dict and restore its contents afterwards."""
    saved = dict(registry._REGISTRY)
    try:
        yield registry._REGISTRY
    finally:
        registry._REGISTRY.clear()
        registry._REGISTRY.update(saved)
