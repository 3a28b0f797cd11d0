"""Watch-page scrape adapter.

Fetches ``/watch?v={id}`` and pulls the two JSON blobs the page embeds:

- ``ytInitialPlayerResponse``: video details, microformat and live
  broadcast details (same structure as the internal ``player`` response).
- ``ytInitialData``: the rendered page model, searched for a
  "N watching now" text.

Channel targets are first resolved through the channel ``/live`` page.
"""

from __future__ import annotations

import logging
from typing import Any

from live_observatory.adapters._youtube_web import (
    YouTubeWebAdapter,
    extract_json_from_html,
    find_watching_now_text,
    player_live_flag,
)
from live_observatory.adapters.base import RawResult, RawShape
from live_observatory.adapters.html_scrape.config import (
    HTML_SCRAPE_DESCRIPTOR,
    INITIAL_DATA_VAR,
    PLAYER_RESPONSE_VAR,
)
from live_observatory.adapters.registry import register
from live_observatory.config.youtube_defaults import YOUTUBE_BASE_URL, YOUTUBE_WATCH_URL
from live_observatory.core.exceptions import AdapterUnavailableError
from live_observatory.core.targets import Target

logger = logging.getLogger(__name__)


@register
class HtmlScrapeAdapter(YouTubeWebAdapter):
    """Scrapes the watch page for player and page-model JSON."""

    descriptor = HTML_SCRAPE_DESCRIPTOR

    async def fetch(self, target: Target) -> RawResult | None:
        if target.is_video:
            video_id = target.value
        else:
            probe = await self._probe_live_page(target)
            if not probe.is_live:
                logger.debug("html_scrape: %s has no live video", target)
                return None
            video_id = probe.video_id  # type: ignore[assignment]

        response = await self._get(
            YOUTUBE_WATCH_URL.format(video_id=video_id), follow_redirects=True
        )
        html = response.text
        player = extract_json_from_html(html, PLAYER_RESPONSE_VAR)
        if player is None:
            raise AdapterUnavailableError(
                f"html_scrape: {PLAYER_RESPONSE_VAR} not found for {video_id}",
                adapter=self.name,
            )

        payload: dict[str, Any] = {
            "playerResponse": player,
            "watchingNowText": find_watching_now_text(
                extract_json_from_html(html, INITIAL_DATA_VAR)
            ),
            "liveFlagInPlayer": player_live_flag(player),
        }
        logger.debug(
            "html_scrape: %s live_flag=%s watching_now=%r",
            video_id,
            payload["liveFlagInPlayer"],
            payload["watchingNowText"],
        )
        return RawResult(
            source=self.name,
            shape=RawShape.WATCH_PAGE,
            target=target,
            payload=payload,
        )

    async def health_check(self) -> dict[str, Any]:
        return await self._reachability_check(YOUTUBE_BASE_URL + "/")
