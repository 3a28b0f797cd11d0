"""Normalizer pipeline: raw adapter results -> canonical live-metadata records.

The ``Normalizer`` class maps each adapter's raw payload to
:class:`~live_observatory.core.schemas.live_metadata.LiveMetadataRecord`.
It is the single boundary between upstream response shapes and the
canonical model: adapters never build records themselves.

Fields absent from a payload stay ``None`` (or empty).  Viewer counts are
always tagged with their provenance:

- ``liveStreamingDetails.concurrentViewers`` from the paid Data API
  -> ``concurrentViewersAuthoritative``
- a count explicitly reported as "watching now", or yt-dlp's
  ``concurrent_viewer_count`` -> ``concurrentViewersEstimate``
- a lifetime ``viewCount`` / ``view_count`` used as a stand-in
  -> ``totalViews``

Example usage::

    from live_observatory.core.normalizer import Normalizer

    record = Normalizer().normalize(raw_result)
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from live_observatory.adapters.base import RawResult, RawShape
from live_observatory.config.youtube_defaults import WATCHING_NOW_PATTERN
from live_observatory.core.exceptions import NormalizationError
from live_observatory.core.schemas.live_metadata import (
    LiveMetadataRecord,
    Thumbnail,
    ViewerCountKind,
)
from live_observatory.core.targets import TargetKind

logger = logging.getLogger(__name__)

# Grouped digits ("1,234", "1.234", "1 234") or a plain run of digits.
_NUMBER_RE = re.compile(r"\d{1,3}(?:[.,\s]\d{3})+|\d+")
_GROUP_SEPARATORS_RE = re.compile(r"[.,\s]")


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def parse_viewer_text(text: str | None) -> int | None:
    """Extract a viewer count from localized text.

    Handles thousands separators used across locales, including the
    non-breaking space::

        parse_viewer_text("1,234 watching now")    # 1234
        parse_viewer_text("1.234 espectadores")    # 1234
        parse_viewer_text("12\\u00a0345 watching")  # 12345

    Args:
        text: Free text containing a number.

    Returns:
        The first number found, or ``None`` when *text* has no digits.
    """
    if not text:
        return None
    match = _NUMBER_RE.search(text.replace("\u00a0", " "))
    if match is None:
        return None
    return int(_GROUP_SEPARATORS_RE.sub("", match.group(0)))


def is_watching_now_text(text: str | None) -> bool:
    """Return ``True`` when *text* reports a "currently watching" figure."""
    return bool(text) and WATCHING_NOW_PATTERN.search(text) is not None


def _non_negative_int(value: Any) -> int | None:
    """Coerce *value* to an int >= 0, or ``None`` when that is not possible."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        value = int(value)
    try:
        number = int(str(value).replace(",", "").strip())
    except ValueError:
        return None
    return number if number >= 0 else None


def _parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 string or a UNIX epoch into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("normalizer: unparseable timestamp %r", value)
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _thumbnails(items: Any) -> list[Thumbnail]:
    if not isinstance(items, list):
        return []
    return [
        Thumbnail(
            url=item["url"],
            width=_non_negative_int(item.get("width")),
            height=_non_negative_int(item.get("height")),
        )
        for item in items
        if isinstance(item, dict) and item.get("url")
    ]


def _data_api_thumbnails(mapping: Any) -> list[Thumbnail]:
    """Flatten the Data API's ``{"default": {...}, "high": {...}}`` mapping."""
    if not isinstance(mapping, dict):
        return []
    return _thumbnails(list(mapping.values()))


def _tags(items: Any) -> list[str]:
    if not isinstance(items, list):
        return []
    return [str(tag) for tag in items if tag]


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


class Normalizer:
    """Maps raw adapter results to the canonical live-metadata record.

    The normalizer is stateless; a single instance can be shared across
    tasks.  Each :class:`~live_observatory.adapters.base.RawShape` has one
    private mapping method.
    """

    def __init__(self) -> None:
        self._mappers: dict[RawShape, Callable[[dict[str, Any]], dict[str, Any]]] = {
            RawShape.STATUS_PROBE: self._from_status_probe,
            RawShape.PLAYER_RESPONSE: self._from_player_response,
            RawShape.WATCH_PAGE: self._from_watch_page,
            RawShape.DATA_API_VIDEO: self._from_data_api_video,
            RawShape.YTDLP_INFO: self._from_ytdlp_info,
        }

    def normalize(
        self,
        raw: RawResult,
        resolved_at: datetime | None = None,
    ) -> LiveMetadataRecord:
        """Normalize a single raw adapter result.

        Args:
            raw: The adapter's raw result.
            resolved_at: Timestamp recorded on the record.  Defaults to now.

        Returns:
            A validated :class:`LiveMetadataRecord` whose ``sourceMethod`` is
            ``raw.source`` and whose ``mode`` is the target kind.

        Raises:
            NormalizationError: If the shape is unknown, the payload is not a
                dict, or the mapped fields fail validation.
        """
        mapper = self._mappers.get(raw.shape)
        if mapper is None:
            raise NormalizationError(
                f"No mapping for raw shape {raw.shape!r}", source=raw.source
            )
        if not isinstance(raw.payload, dict):
            raise NormalizationError(
                f"Payload from '{raw.source}' is not a JSON object",
                source=raw.source,
            )

        try:
            fields = mapper(raw.payload)
        except (KeyError, TypeError, AttributeError) as exc:
            raise NormalizationError(
                f"Malformed {raw.shape.value} payload from '{raw.source}': {exc}",
                source=raw.source,
                payload=raw.payload,
            ) from exc

        if fields.get("video_id") is None and raw.target.kind is TargetKind.VIDEO:
            fields["video_id"] = raw.target.value
        if fields.get("channel_id") is None and raw.target.kind is TargetKind.CHANNEL:
            fields["channel_id"] = raw.target.value

        try:
            return LiveMetadataRecord(
                **fields,
                source_method=raw.source,
                resolved_at=resolved_at or datetime.now(timezone.utc),
                mode=raw.target.kind.value,
            )
        except ValidationError as exc:
            raise NormalizationError(
                f"Normalized record from '{raw.source}' failed validation: {exc}",
                source=raw.source,
                payload=raw.payload,
            ) from exc

    # ------------------------------------------------------------------
    # Viewer-count classification
    # ------------------------------------------------------------------

    @staticmethod
    def _viewer_fields(
        authoritative: Any = None,
        watching_now_text: str | None = None,
        estimate: Any = None,
        total_views: Any = None,
    ) -> dict[str, Any]:
        """Pick the best available viewer figure and tag its provenance."""
        value = _non_negative_int(authoritative)
        if value is not None:
            return {
                "concurrent_viewers": value,
                "viewer_count_kind": ViewerCountKind.CONCURRENT_AUTHORITATIVE,
            }
        if is_watching_now_text(watching_now_text):
            value = parse_viewer_text(watching_now_text)
            if value is not None:
                return {
                    "concurrent_viewers": value,
                    "viewer_count_kind": ViewerCountKind.CONCURRENT_ESTIMATE,
                }
        value = _non_negative_int(estimate)
        if value is not None:
            return {
                "concurrent_viewers": value,
                "viewer_count_kind": ViewerCountKind.CONCURRENT_ESTIMATE,
            }
        value = _non_negative_int(total_views)
        if value is not None:
            return {
                "concurrent_viewers": value,
                "viewer_count_kind": ViewerCountKind.TOTAL_VIEWS,
            }
        return {"concurrent_viewers": None, "viewer_count_kind": ViewerCountKind.UNKNOWN}

    # ------------------------------------------------------------------
    # Per-shape mappings
    # ------------------------------------------------------------------

    def _from_status_probe(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "video_id": payload.get("videoId"),
            "channel_id": payload.get("channelId"),
            "channel_name": payload.get("author"),
            "title": payload.get("title"),
            "is_live_now": payload.get("isLiveNow") is True,
            "is_live_content": payload.get("isLiveNow") is True,
            **self._viewer_fields(
                watching_now_text=payload.get("watchingNowText"),
                total_views=payload.get("viewCount"),
            ),
        }

    def _from_player(
        self,
        player: dict[str, Any],
        watching_now_text: str | None,
        live_hint: bool = False,
    ) -> dict[str, Any]:
        """Shared mapping for anything that carries a ``player`` response."""
        details = player.get("videoDetails") or {}
        microformat = (player.get("microformat") or {}).get(
            "playerMicroformatRenderer"
        ) or {}
        broadcast = microformat.get("liveBroadcastDetails") or {}

        is_live_now = (
            broadcast.get("isLiveNow") is True
            or details.get("isLive") is True
            or (live_hint and not broadcast.get("endTimestamp"))
        )
        thumbnails = _thumbnails((details.get("thumbnail") or {}).get("thumbnails"))
        if not thumbnails:
            thumbnails = _thumbnails(
                (microformat.get("thumbnail") or {}).get("thumbnails")
            )
        description = details.get("shortDescription")
        if description is None:
            description = (microformat.get("description") or {}).get("simpleText")
        title = details.get("title")
        if title is None:
            title = (microformat.get("title") or {}).get("simpleText")

        return {
            "video_id": details.get("videoId"),
            "channel_id": details.get("channelId") or microformat.get("externalChannelId"),
            "channel_name": details.get("author") or microformat.get("ownerChannelName"),
            "title": title,
            "is_live_now": is_live_now,
            "is_live_content": details.get("isLiveContent") is True or bool(broadcast),
            **self._viewer_fields(
                watching_now_text=watching_now_text if is_live_now else None,
                total_views=details.get("viewCount"),
            ),
            "actual_start_time": _parse_timestamp(broadcast.get("startTimestamp")),
            "scheduled_start_time": _parse_timestamp(
                broadcast.get("scheduledStartTimestamp")
            ),
            "end_time": _parse_timestamp(broadcast.get("endTimestamp")),
            "description": description,
            "thumbnails": thumbnails,
            "tags": _tags(details.get("keywords") or microformat.get("keywords")),
        }

    def _from_player_response(self, payload: dict[str, Any]) -> dict[str, Any]:
        player = payload.get("player")
        if not isinstance(player, dict):
            raise TypeError("'player' must be an object")
        return self._from_player(player, payload.get("watchingNowText"))

    def _from_watch_page(self, payload: dict[str, Any]) -> dict[str, Any]:
        player = payload.get("playerResponse")
        if not isinstance(player, dict):
            raise TypeError("'playerResponse' must be an object")
        return self._from_player(
            player,
            payload.get("watchingNowText"),
            live_hint=payload.get("liveFlagInPlayer") is True,
        )

    def _from_data_api_video(self, payload: dict[str, Any]) -> dict[str, Any]:
        snippet = payload.get("snippet") or {}
        live = payload.get("liveStreamingDetails") or {}
        is_live_now = snippet.get("liveBroadcastContent") == "live" or (
            bool(live.get("actualStartTime")) and not live.get("actualEndTime")
        )
        return {
            "video_id": payload.get("id"),
            "channel_id": snippet.get("channelId"),
            "channel_name": snippet.get("channelTitle"),
            "title": snippet.get("title"),
            "is_live_now": is_live_now,
            "is_live_content": bool(live),
            **self._viewer_fields(authoritative=live.get("concurrentViewers")),
            "actual_start_time": _parse_timestamp(live.get("actualStartTime")),
            "scheduled_start_time": _parse_timestamp(live.get("scheduledStartTime")),
            "end_time": _parse_timestamp(live.get("actualEndTime")),
            "description": snippet.get("description"),
            "thumbnails": _data_api_thumbnails(snippet.get("thumbnails")),
            "tags": _tags(snippet.get("tags")),
        }

    def _from_ytdlp_info(self, payload: dict[str, Any]) -> dict[str, Any]:
        live_status = payload.get("live_status")
        is_live_now = payload.get("is_live") is True or live_status == "is_live"
        start = payload.get("release_timestamp") or (
            payload.get("timestamp") if is_live_now else None
        )
        return {
            "video_id": payload.get("id"),
            "channel_id": payload.get("channel_id"),
            "channel_name": payload.get("channel") or payload.get("uploader"),
            "title": payload.get("fulltitle") or payload.get("title"),
            "is_live_now": is_live_now,
            "is_live_content": payload.get("was_live") is True
            or live_status in ("is_live", "was_live", "post_live", "is_upcoming"),
            **self._viewer_fields(
                estimate=payload.get("concurrent_viewer_count") if is_live_now else None,
                total_views=payload.get("view_count"),
            ),
            "actual_start_time": _parse_timestamp(start)
            if live_status != "is_upcoming"
            else None,
            "scheduled_start_time": _parse_timestamp(payload.get("release_timestamp"))
            if live_status == "is_upcoming"
            else None,
            "description": payload.get("description"),
            "thumbnails": _thumbnails(payload.get("thumbnails")),
            "tags": _tags(payload.get("tags")),
        }
