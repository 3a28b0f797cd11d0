"""Shared HTTP and HTML helpers for the adapters that talk to youtube.com.

Separates network plumbing and page-parsing heuristics from the adapter
classes so that every adapter maps upstream failures to the same
exceptions:

- HTTP 429 -> :class:`AdapterRateLimitError` (``Retry-After`` honoured)
- any other 4xx/5xx or a transport error -> :class:`AdapterUnavailableError`

Parsing helpers:

- :func:`extract_json_from_html`: pull ``ytInitialPlayerResponse`` /
  ``ytInitialData`` out of a page.
- :func:`find_watching_now_text`: locate a "N watching now" text anywhere in
  a nested JSON structure.
- :func:`probe_live_page`: resolve a channel or handle ``/live`` URL into the
  currently live video id.
"""

from __future__ import annotations

import json
import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import httpx

from live_observatory.adapters.base import AdapterDescriptor, SourceAdapter
from live_observatory.config.settings import Settings, get_settings
from live_observatory.config.youtube_defaults import (
    DEFAULT_ACCEPT_LANGUAGE,
    DEFAULT_HTML_ACCEPT,
    DEFAULT_USER_AGENTS,
    WATCH_URL_VIDEO_ID,
    WATCHING_NOW_PATTERN,
    YOUTUBE_CHANNEL_LIVE_URL,
    YOUTUBE_HANDLE_LIVE_URL,
)
from live_observatory.core.exceptions import AdapterRateLimitError, AdapterUnavailableError
from live_observatory.core.targets import Target, TargetKind

logger = logging.getLogger(__name__)

_LIVE_FLAG_RE = re.compile(r'"isLiveNow"\s*:\s*true')
_CANONICAL_RE = re.compile(
    r'<link\s+rel="canonical"\s+href="[^"]*?watch\?v=([A-Za-z0-9_-]{11})'
)
_VIDEO_ID_RE = re.compile(r'"videoId"\s*:\s*"([A-Za-z0-9_-]{11})"')
_META_TITLE_RE = re.compile(r'<meta\s+name="title"\s+content="([^"]*)"')
_OWNER_RE = re.compile(r'"ownerChannelName"\s*:\s*"([^"]*)"')
_CHANNEL_ID_RE = re.compile(r'"(?:externalChannelId|channelId)"\s*:\s*"(UC[A-Za-z0-9_-]{22})"')

# Pre-accepts the EU cookie wall so pages render instead of redirecting to consent.
_CONSENT_COOKIES: dict[str, str] = {"CONSENT": "YES+cb", "SOCS": "CAI"}


# ---------------------------------------------------------------------------
# HTTP plumbing
# ---------------------------------------------------------------------------


def random_user_agent(user_agents: Sequence[str] | None = None) -> str:
    return random.choice(list(user_agents or DEFAULT_USER_AGENTS))


def build_http_client(timeout: float) -> httpx.AsyncClient:
    """Return a client preconfigured for scraping youtube.com.

    Redirects are not followed by default; callers opt in per request.
    """
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=False,
        headers={"Accept-Language": DEFAULT_ACCEPT_LANGUAGE},
        cookies=_CONSENT_COOKIES,
    )


def parse_retry_after(value: Optional[str], default: float) -> float:
    """Interpret a ``Retry-After`` header given in seconds."""
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    return seconds if seconds > 0 else default


def check_response(
    response: httpx.Response,
    adapter: str,
    rate_limit_cooldown: float = 60.0,
) -> None:
    """Raise the adapter exception matching an error status.

    3xx responses pass through; callers that disabled redirects inspect the
    ``Location`` header themselves.

    Raises:
        AdapterRateLimitError: HTTP 429.
        AdapterUnavailableError: Any other HTTP status >= 400.
    """
    status = response.status_code
    if status == 429:
        raise AdapterRateLimitError(
            f"{adapter}: HTTP 429 from {response.request.url.host}",
            retry_after=parse_retry_after(
                response.headers.get("Retry-After"), rate_limit_cooldown
            ),
            adapter=adapter,
        )
    if status >= 400:
        raise AdapterUnavailableError(
            f"{adapter}: HTTP {status} for {response.request.url}",
            adapter=adapter,
        )


async def get_page(
    client: httpx.AsyncClient,
    url: str,
    adapter: str,
    *,
    follow_redirects: bool = False,
    user_agents: Sequence[str] | None = None,
    rate_limit_cooldown: float = 60.0,
) -> httpx.Response:
    """GET *url* with browser-like headers and map failures to adapter errors."""
    try:
        response = await client.get(
            url,
            follow_redirects=follow_redirects,
            headers={
                "User-Agent": random_user_agent(user_agents),
                "Accept": DEFAULT_HTML_ACCEPT,
                "Cache-Control": "no-cache",
            },
        )
    except httpx.RequestError as exc:
        raise AdapterUnavailableError(
            f"{adapter}: connection error for {url}: {exc}", adapter=adapter
        ) from exc
    check_response(response, adapter, rate_limit_cooldown)
    return response


# ---------------------------------------------------------------------------
# HTML / JSON extraction
# ---------------------------------------------------------------------------


def extract_json_from_html(html: str, var_name: str) -> Optional[dict[str, Any]]:
    """Decode the JSON object assigned to *var_name* inside a page.

    Matches ``var ytInitialData = {...};``, ``window["ytInitialData"] = {...}``
    and the embedded ``"ytInitialPlayerResponse": {...}`` form.

    Returns:
        The decoded object, or ``None`` when absent or not valid JSON.
    """
    if not html:
        return None
    decoder = json.JSONDecoder()
    pattern = re.compile(rf'{re.escape(var_name)}"?\]?\s*[=:]\s*(?=\{{)')
    for match in pattern.finditer(html):
        try:
            value, _ = decoder.raw_decode(html, match.end())
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def _text_of(node: Any) -> Optional[str]:
    """Flatten a YouTube text node (``simpleText`` or ``runs``) to a string."""
    if isinstance(node, str):
        return node
    if isinstance(node, dict):
        if isinstance(node.get("simpleText"), str):
            return node["simpleText"]
        runs = node.get("runs")
        if isinstance(runs, list):
            return " ".join(
                run["text"] for run in runs if isinstance(run, dict) and run.get("text")
            )
    return None


def find_watching_now_text(obj: Any) -> Optional[str]:
    """Return the first "currently watching" text found in a nested structure.

    Walks dicts and lists depth-first.  ``runs`` arrays are joined before
    matching since YouTube splits "1,234" and "watching now" into separate
    runs.
    """
    stack = [obj]
    while stack:
        node = stack.pop()
        if isinstance(node, dict):
            text = _text_of(node)
            if text and WATCHING_NOW_PATTERN.search(text) and re.search(r"\d", text):
                return text
            stack.extend(reversed(list(node.values())))
        elif isinstance(node, list):
            stack.extend(reversed(node))
        elif isinstance(node, str):
            if WATCHING_NOW_PATTERN.search(node) and re.search(r"\d", node):
                return node
    return None


def live_flag_in_html(html: str) -> bool:
    return bool(html) and _LIVE_FLAG_RE.search(html) is not None


def player_live_flag(player: Optional[dict[str, Any]]) -> bool:
    """Return ``True`` when the player response carries ``"isLiveNow": true``.

    Only *player* is searched.  A watch page's ``ytInitialData`` also lists
    related broadcasts, and their markers say nothing about this video.
    """
    stack: list[Any] = [player]
    while stack:
        node = stack.pop()
        if isinstance(node, dict):
            if node.get("isLiveNow") is True:
                return True
            stack.extend(node.values())
        elif isinstance(node, list):
            stack.extend(node)
    return False


def video_id_from_location(location: Optional[str]) -> Optional[str]:
    if not location:
        return None
    match = WATCH_URL_VIDEO_ID.search(location)
    return match.group(1) if match else None


def canonical_video_id(html: str) -> Optional[str]:
    match = _CANONICAL_RE.search(html or "")
    return match.group(1) if match else None


def first_video_id(html: str) -> Optional[str]:
    match = _VIDEO_ID_RE.search(html or "")
    return match.group(1) if match else None


def page_title(html: str) -> Optional[str]:
    match = _META_TITLE_RE.search(html or "")
    return match.group(1) if match else None


def owner_channel_name(html: str) -> Optional[str]:
    match = _OWNER_RE.search(html or "")
    return match.group(1) if match else None


def page_channel_id(html: str) -> Optional[str]:
    match = _CHANNEL_ID_RE.search(html or "")
    return match.group(1) if match else None


# ---------------------------------------------------------------------------
# Channel /live resolution
# ---------------------------------------------------------------------------


def live_page_url(target: Target) -> str:
    """Return the ``/live`` URL of a channel or handle target."""
    if target.kind is TargetKind.CHANNEL:
        return YOUTUBE_CHANNEL_LIVE_URL.format(channel_id=target.value)
    if target.kind is TargetKind.HANDLE:
        return YOUTUBE_HANDLE_LIVE_URL.format(handle=target.value)
    raise ValueError(f"{target} has no /live page")


@dataclass(frozen=True)
class LivePageProbe:
    """What the ``/live`` page revealed.

    Attributes:
        video_id: Candidate live video id, if any.
        html: Page body (empty when the probe stopped at a redirect).
        redirected: Whether the page answered with a redirect to a watch URL.
        live_flag: Whether the body carried an ``"isLiveNow":true`` marker.
    """

    video_id: Optional[str]
    html: str = ""
    redirected: bool = False
    live_flag: bool = False

    @property
    def is_live(self) -> bool:
        return self.video_id is not None and (self.redirected or self.live_flag)


async def probe_live_page(
    client: httpx.AsyncClient,
    target: Target,
    adapter: str,
    *,
    user_agents: Sequence[str] | None = None,
    rate_limit_cooldown: float = 60.0,
) -> LivePageProbe:
    """Resolve a channel or handle into its current live video, if any.

    A 3xx to ``watch?v=`` is taken as proof of a live broadcast.  Otherwise
    the body's canonical watch link is combined with the ``isLiveNow``
    marker.

    Raises:
        AdapterRateLimitError: HTTP 429.
        AdapterUnavailableError: Transport errors, 404 for an unknown
            channel, and other error statuses.
    """
    url = live_page_url(target)
    response = await get_page(
        client,
        url,
        adapter,
        user_agents=user_agents,
        rate_limit_cooldown=rate_limit_cooldown,
    )
    if response.is_redirect:
        location = response.headers.get("Location")
        video_id = video_id_from_location(location)
        if video_id is not None:
            logger.debug("%s: %s redirects to live video %s", adapter, url, video_id)
            return LivePageProbe(video_id=video_id, redirected=True)
        response = await get_page(
            client,
            url,
            adapter,
            follow_redirects=True,
            user_agents=user_agents,
            rate_limit_cooldown=rate_limit_cooldown,
        )

    html = response.text
    live_flag = live_flag_in_html(html)
    video_id = canonical_video_id(html)
    if video_id is None and live_flag:
        video_id = first_video_id(html)
    return LivePageProbe(video_id=video_id, html=html, live_flag=live_flag)


# ---------------------------------------------------------------------------
# Base class for youtube.com adapters
# ---------------------------------------------------------------------------


class YouTubeWebAdapter(SourceAdapter):
    """Common HTTP client ownership for adapters that scrape youtube.com.

    Args:
        settings: Application settings (user agents, rate-limit cooldown).
        http_client: Optional injected client, e.g. for tests.  An injected
            client is never closed by the adapter.
        descriptor: Optional descriptor override.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        descriptor: AdapterDescriptor | None = None,
    ) -> None:
        super().__init__(descriptor=descriptor)
        self._settings = settings or get_settings()
        self._http_client = http_client
        self._owns_client = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = build_http_client(self.descriptor.soft_timeout)
        return self._http_client

    async def _get(self, url: str, *, follow_redirects: bool = False) -> httpx.Response:
        return await get_page(
            self._client(),
            url,
            self.name,
            follow_redirects=follow_redirects,
            user_agents=self._settings.http_user_agents,
            rate_limit_cooldown=self._settings.rate_limit_cooldown_seconds,
        )

    async def _probe_live_page(self, target: Target) -> LivePageProbe:
        return await probe_live_page(
            self._client(),
            target,
            self.name,
            user_agents=self._settings.http_user_agents,
            rate_limit_cooldown=self._settings.rate_limit_cooldown_seconds,
        )

    async def _reachability_check(self, url: str) -> dict[str, Any]:
        """Health check helper: GET *url* and report ok/degraded/down."""
        base: dict[str, Any] = {
            "adapter": self.name,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self._get(url, follow_redirects=True)
        except AdapterRateLimitError as exc:
            return {**base, "status": "degraded", "detail": f"Rate limited: {exc}"}
        except AdapterUnavailableError as exc:
            return {**base, "status": "down", "detail": str(exc)}
        return {**base, "status": "ok"}

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
