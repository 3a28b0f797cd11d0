"""Fast status adapter: channel ``/live`` redirect probe.

Strategy:

1. GET ``/channel/{id}/live`` (or ``/@{handle}/live``) without following
   redirects.  A 3xx to ``watch?v=...`` yields the live video id.
2. Otherwise the rendered page is checked for a canonical watch link plus
   the ``"isLiveNow":true`` marker.

Anything else is a confirmed "not live" (``None``).
"""

from __future__ import annotations

import logging
from typing import Any

from live_observatory.adapters._youtube_web import (
    YouTubeWebAdapter,
    extract_json_from_html,
    find_watching_now_text,
    owner_channel_name,
    page_channel_id,
    page_title,
)
from live_observatory.adapters.base import RawResult, RawShape
from live_observatory.adapters.fast_status.config import (
    FAST_STATUS_DESCRIPTOR,
    HEALTH_CHECK_URL,
)
from live_observatory.adapters.registry import register
from live_observatory.core.targets import Target, TargetKind

logger = logging.getLogger(__name__)


@register
class FastStatusAdapter(YouTubeWebAdapter):
    """Liveness-only probe based on the channel ``/live`` redirect."""

    descriptor = FAST_STATUS_DESCRIPTOR

    async def fetch(self, target: Target) -> RawResult | None:
        probe = await self._probe_live_page(target)
        if not probe.is_live:
            logger.debug("fast_status: %s is not live", target)
            return None

        payload: dict[str, Any] = {
            "videoId": probe.video_id,
            "channelId": target.value if target.kind is TargetKind.CHANNEL else None,
            "isLiveNow": True,
            "title": None,
            "author": None,
        }
        if probe.html:
            payload["channelId"] = payload["channelId"] or page_channel_id(probe.html)
            payload["title"] = page_title(probe.html)
            payload["author"] = owner_channel_name(probe.html)
            payload["watchingNowText"] = find_watching_now_text(
                extract_json_from_html(probe.html, "ytInitialData")
            )
        logger.debug("fast_status: %s is live as %s", target, probe.video_id)
        return RawResult(
            source=self.name,
            shape=RawShape.STATUS_PROBE,
            target=target,
            payload=payload,
        )

    async def health_check(self) -> dict[str, Any]:
        return await self._reachability_check(HEALTH_CHECK_URL)
