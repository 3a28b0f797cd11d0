"""Internal API adapter: ``youtubei/v1/player`` plus ``next`` for live viewers.

Session bootstrap:
    The youtube.com home page is fetched once to read
    ``INNERTUBE_CLIENT_VERSION`` and ``VISITOR_DATA`` (plus the public
    ``INNERTUBE_API_KEY`` when present).  The session lives in a
    :class:`~live_observatory.core.lazy.LazyResource`: a failed bootstrap is
    retried on the next call, and a 400/403 from the API discards the session
    so that the next call re-bootstraps with a fresh client version.

Target handling:
    - Video: ``player`` is called directly.
    - Channel / handle: the ``/live`` page is probed first; no live video
      means ``None``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from live_observatory.adapters._youtube_web import (
    YouTubeWebAdapter,
    check_response,
    find_watching_now_text,
    random_user_agent,
)
from live_observatory.adapters.base import AdapterDescriptor, RawResult, RawShape
from live_observatory.adapters.innertube.config import (
    API_KEY_RE,
    CLIENT_GL,
    CLIENT_HL,
    CLIENT_NAME,
    CLIENT_NAME_ID,
    CLIENT_VERSION_RE,
    INNERTUBE_DESCRIPTOR,
    SESSION_RESET_STATUSES,
    VISITOR_DATA_RE,
)
from live_observatory.adapters.registry import register
from live_observatory.config.settings import Settings
from live_observatory.config.youtube_defaults import INNERTUBE_API_BASE_URL, YOUTUBE_BASE_URL
from live_observatory.core.exceptions import AdapterUnavailableError
from live_observatory.core.lazy import LazyResource
from live_observatory.core.targets import Target

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InnertubeSession:
    """Web-client identity scraped from the home page."""

    client_version: str
    visitor_data: Optional[str] = None
    api_key: Optional[str] = None

    def context(self) -> dict[str, Any]:
        client: dict[str, Any] = {
            "clientName": CLIENT_NAME,
            "clientVersion": self.client_version,
            "hl": CLIENT_HL,
            "gl": CLIENT_GL,
        }
        if self.visitor_data:
            client["visitorData"] = self.visitor_data
        return {"client": client}

    def headers(self, user_agent: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": user_agent,
            "Origin": YOUTUBE_BASE_URL,
            "X-YouTube-Client-Name": CLIENT_NAME_ID,
            "X-YouTube-Client-Version": self.client_version,
        }
        if self.visitor_data:
            headers["X-Goog-Visitor-Id"] = self.visitor_data
        return headers


def parse_session(html: str) -> InnertubeSession | None:
    """Read the web-client identity from a youtube.com page, if present."""
    version = CLIENT_VERSION_RE.search(html or "")
    if version is None:
        return None
    visitor = VISITOR_DATA_RE.search(html)
    api_key = API_KEY_RE.search(html)
    return InnertubeSession(
        client_version=version.group(1),
        visitor_data=visitor.group(1) if visitor else None,
        api_key=api_key.group(1) if api_key else None,
    )


def player_is_live(player: dict[str, Any]) -> bool:
    details = player.get("videoDetails") or {}
    microformat = (player.get("microformat") or {}).get("playerMicroformatRenderer") or {}
    broadcast = microformat.get("liveBroadcastDetails") or {}
    return details.get("isLive") is True or broadcast.get("isLiveNow") is True


@register
class InnertubeAdapter(YouTubeWebAdapter):
    """Rich metadata from YouTube's internal web-client API.

    Args:
        settings: Application settings.
        http_client: Optional injected client (tests).
        descriptor: Optional descriptor override.
    """

    descriptor = INNERTUBE_DESCRIPTOR

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        descriptor: AdapterDescriptor | None = None,
    ) -> None:
        super().__init__(settings=settings, http_client=http_client, descriptor=descriptor)
        self._session: LazyResource[InnertubeSession] = LazyResource(
            self._bootstrap_session, name="innertube session"
        )

    @property
    def session(self) -> LazyResource[InnertubeSession]:
        return self._session

    async def _bootstrap_session(self) -> InnertubeSession:
        response = await self._get(YOUTUBE_BASE_URL + "/", follow_redirects=True)
        session = parse_session(response.text)
        if session is None:
            raise AdapterUnavailableError(
                "innertube: INNERTUBE_CLIENT_VERSION not found on home page",
                adapter=self.name,
            )
        logger.debug(
            "innertube: session bootstrapped client_version=%s visitor=%s",
            session.client_version,
            bool(session.visitor_data),
        )
        return session

    # ------------------------------------------------------------------
    # API calls
    # ------------------------------------------------------------------

    async def _call(self, endpoint: str, video_id: str) -> dict[str, Any]:
        """POST one ``youtubei/v1`` request and return the decoded body.

        Raises:
            AdapterRateLimitError: HTTP 429.
            AdapterUnavailableError: Transport errors, error statuses, and a
                body that is not JSON.  400/403 also discard the session.
        """
        session = await self._session.get()
        params = {"prettyPrint": "false"}
        if session.api_key:
            params["key"] = session.api_key
        body = {
            "context": session.context(),
            "videoId": video_id,
            "contentCheckOk": True,
            "racyCheckOk": True,
        }
        url = f"{INNERTUBE_API_BASE_URL}/{endpoint}"
        try:
            response = await self._client().post(
                url,
                params=params,
                json=body,
                headers=session.headers(random_user_agent(self._settings.http_user_agents)),
            )
        except httpx.RequestError as exc:
            raise AdapterUnavailableError(
                f"innertube: connection error on '{endpoint}': {exc}", adapter=self.name
            ) from exc

        if response.status_code in SESSION_RESET_STATUSES:
            logger.info(
                "innertube: HTTP %d on '%s', discarding session",
                response.status_code,
                endpoint,
            )
            await self._session.reset()
        check_response(response, self.name, self._settings.rate_limit_cooldown_seconds)
        try:
            data = response.json()
        except ValueError as exc:
            raise AdapterUnavailableError(
                f"innertube: non-JSON body from '{endpoint}'", adapter=self.name
            ) from exc
        if not isinstance(data, dict):
            raise AdapterUnavailableError(
                f"innertube: unexpected body from '{endpoint}'", adapter=self.name
            )
        return data

    async def _watching_now_text(self, video_id: str) -> Optional[str]:
        """Best-effort "N watching now" lookup via ``next``.  Never raises."""
        try:
            data = await self._call("next", video_id)
        except (httpx.HTTPError, AdapterUnavailableError) as exc:
            logger.debug("innertube: next lookup failed for %s: %s", video_id, exc)
            return None
        return find_watching_now_text(data)

    # ------------------------------------------------------------------
    # SourceAdapter interface
    # ------------------------------------------------------------------

    async def fetch(self, target: Target) -> RawResult | None:
        if target.is_video:
            video_id = target.value
        else:
            probe = await self._probe_live_page(target)
            if not probe.is_live:
                logger.debug("innertube: %s has no live video", target)
                return None
            video_id = probe.video_id  # type: ignore[assignment]

        player = await self._call("player", video_id)
        status = (player.get("playabilityStatus") or {}).get("status")
        if not player.get("videoDetails"):
            raise AdapterUnavailableError(
                f"innertube: no videoDetails for {video_id} (playability={status})",
                adapter=self.name,
            )

        live = player_is_live(player)
        if not live and not target.is_video:
            # The /live page pointed at a broadcast the player no longer reports as live.
            return None

        payload: dict[str, Any] = {"player": player}
        if live:
            payload["watchingNowText"] = await self._watching_now_text(video_id)
        return RawResult(
            source=self.name,
            shape=RawShape.PLAYER_RESPONSE,
            target=target,
            payload=payload,
        )

    async def health_check(self) -> dict[str, Any]:
        """Verify that a web-client session can be bootstrapped.

        Returns:
            Dict with ``status``, ``adapter``, ``checked_at`` and optionally
            ``detail`` / ``client_version``.
        """
        base: dict[str, Any] = {
            "adapter": self.name,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            session = await self._session.get()
        except AdapterUnavailableError as exc:
            return {**base, "status": "down", "detail": str(exc)}
        return {**base, "status": "ok", "client_version": session.client_version}

    async def aclose(self) -> None:
        await self._session.aclose()
        await super().aclose()
