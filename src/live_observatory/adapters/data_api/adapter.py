"""YouTube Data API v3 adapter.

Single-video lookups call ``videos.list?part=snippet,liveStreamingDetails``
(1 quota unit).  The orchestrator consumes the quota before calling
:meth:`DataApiAdapter.fetch`; this adapter never touches the quota ledger
itself.

:meth:`DataApiAdapter.refresh_viewer_counts` re-reads
``liveStreamingDetails`` for many videos at once, 50 ids per call.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from live_observatory.adapters.base import AdapterDescriptor, RawResult, RawShape, SourceAdapter
from live_observatory.adapters.data_api._client import fetch_videos_batch
from live_observatory.adapters.data_api.config import (
    DATA_API_DESCRIPTOR,
    HEALTH_CHECK_VIDEO_ID,
    MAX_IDS_PER_VIDEOS_CALL,
    VIEWER_PARTS,
)
from live_observatory.adapters.registry import register
from live_observatory.config.settings import Settings, get_settings
from live_observatory.core.exceptions import (
    AdapterAuthError,
    AdapterRateLimitError,
    AdapterUnavailableError,
    QuotaExhaustedError,
)
from live_observatory.core.schemas.live_metadata import ViewerCountKind
from live_observatory.core.targets import Target

logger = logging.getLogger(__name__)


@register
class DataApiAdapter(SourceAdapter):
    """Authoritative metadata from the paid YouTube Data API v3.

    Args:
        settings: Application settings.  ``youtube_api_key`` is used when
            *api_key* is not given.
        http_client: Optional injected :class:`httpx.AsyncClient` (tests).
        descriptor: Optional descriptor override.
        api_key: Explicit API key.

    Raises:
        AdapterAuthError: If no API key is available.
    """

    descriptor = DATA_API_DESCRIPTOR

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        descriptor: AdapterDescriptor | None = None,
        api_key: str | None = None,
    ) -> None:
        super().__init__(descriptor=descriptor)
        self._settings = settings or get_settings()
        self._api_key = api_key or self._settings.youtube_api_key
        if not self._api_key:
            raise AdapterAuthError(
                "data_api: no API key configured (LIVE_OBSERVATORY_YOUTUBE_API_KEY)",
                adapter=self.descriptor.name,
            )
        self._http_client = http_client
        self._owns_client = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.descriptor.soft_timeout)
        return self._http_client

    # ------------------------------------------------------------------
    # SourceAdapter interface
    # ------------------------------------------------------------------

    async def fetch(self, target: Target) -> RawResult | None:
        items = await fetch_videos_batch(
            client=self._client(),
            api_key=self._api_key,  # type: ignore[arg-type]
            video_ids=[target.value],
            rate_limit_cooldown=self._settings.rate_limit_cooldown_seconds,
        )
        if not items:
            raise AdapterUnavailableError(
                f"data_api: video {target.value} not found", adapter=self.name
            )
        return RawResult(
            source=self.name,
            shape=RawShape.DATA_API_VIDEO,
            target=target,
            payload=items[0],
        )

    async def refresh_viewer_counts(self, video_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Return current viewer figures for *video_ids*, keyed by video id.

        Ids the API does not return (deleted, private) are omitted.  Each
        value carries ``videoId``, ``isLiveNow``, ``concurrentViewers``,
        ``viewerCountKind`` and ``actualStartTime``.

        Raises:
            QuotaExhaustedError: On quota exhaustion.
            AdapterAuthError: On authentication failure.
            AdapterUnavailableError: On other API errors.
        """
        counts: dict[str, dict[str, Any]] = {}
        for start in range(0, len(video_ids), MAX_IDS_PER_VIDEOS_CALL):
            batch = video_ids[start : start + MAX_IDS_PER_VIDEOS_CALL]
            items = await fetch_videos_batch(
                client=self._client(),
                api_key=self._api_key,  # type: ignore[arg-type]
                video_ids=batch,
                part=VIEWER_PARTS,
                rate_limit_cooldown=self._settings.rate_limit_cooldown_seconds,
            )
            for item in items:
                entry = self._viewer_entry(item)
                if entry is not None:
                    counts[entry["videoId"]] = entry
        logger.info(
            "data_api: refreshed viewer counts requested=%d returned=%d",
            len(video_ids),
            len(counts),
        )
        return counts

    @staticmethod
    def _viewer_entry(item: dict[str, Any]) -> dict[str, Any] | None:
        video_id = item.get("id")
        if not video_id:
            return None
        live = item.get("liveStreamingDetails") or {}
        raw_viewers = live.get("concurrentViewers")
        try:
            viewers = int(raw_viewers) if raw_viewers is not None else None
        except (TypeError, ValueError):
            viewers = None
        return {
            "videoId": video_id,
            "isLiveNow": bool(live.get("actualStartTime")) and not live.get("actualEndTime"),
            "concurrentViewers": viewers,
            "viewerCountKind": (
                ViewerCountKind.CONCURRENT_AUTHORITATIVE.value
                if viewers is not None
                else ViewerCountKind.UNKNOWN.value
            ),
            "actualStartTime": live.get("actualStartTime"),
        }

    async def health_check(self) -> dict[str, Any]:
        """Verify YouTube Data API v3 connectivity.

        Calls ``videos.list(id="dQw4w9WgXcQ", part="snippet")``, which costs 1
        quota unit.  Callers charge it to the ledger first, as
        ``ResolutionOrchestrator.check_adapters()`` does.

        Returns:
            Dict with ``status``, ``adapter``, ``checked_at``, and optionally
            ``detail``.
        """
        base: dict[str, Any] = {
            "adapter": self.name,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            items = await fetch_videos_batch(
                client=self._client(),
                api_key=self._api_key,  # type: ignore[arg-type]
                video_ids=[HEALTH_CHECK_VIDEO_ID],
                part="snippet",
            )
        except (QuotaExhaustedError, AdapterRateLimitError) as exc:
            return {**base, "status": "degraded", "detail": f"Quota exhausted: {exc}"}
        except AdapterAuthError as exc:
            return {**base, "status": "down", "detail": str(exc)}
        except AdapterUnavailableError as exc:
            return {**base, "status": "degraded", "detail": str(exc)}
        if not items:
            return {**base, "status": "degraded", "detail": "Empty items in health check response."}
        return {**base, "status": "ok"}

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
