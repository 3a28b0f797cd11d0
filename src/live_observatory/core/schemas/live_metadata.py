"""Pydantic schemas for resolution results.

:class:`LiveMetadataRecord` is the canonical, adapter-agnostic answer to
"is this target live right now, and what do we know about it?".  Its JSON
field names are a stable external contract and are produced through
camelCase aliases::

    record.to_json_dict()
    # {"videoId": "...", "isLiveNow": true, "viewerCountKind": "...", ...}

:class:`NotFound` is returned instead of a record when no adapter produced
any signal at all, which means the target may not exist.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from live_observatory.config.youtube_defaults import MAX_DESCRIPTION_CHARS, MAX_TAGS


class FieldSet(str, Enum):
    """Which part of the record a caller needs.

    Each value has its own cache TTL, so a status-only read can be much
    fresher than a full-metadata read for the same target.
    """

    STATUS = "status"
    VIEWERS = "viewers"
    FULL = "full"


class ViewerCountKind(str, Enum):
    """Provenance tag for ``concurrentViewers``.

    Attributes:
        UNKNOWN: No viewer figure is available.
        TOTAL_VIEWS: A lifetime view counter used as a stand-in.  Not a
            concurrent figure.
        CONCURRENT_ESTIMATE: A count explicitly reported as "watching now"
            by a free source.
        CONCURRENT_AUTHORITATIVE: A count from the paid Data API lookup.
    """

    UNKNOWN = "unknown"
    TOTAL_VIEWS = "totalViews"
    CONCURRENT_ESTIMATE = "concurrentViewersEstimate"
    CONCURRENT_AUTHORITATIVE = "concurrentViewersAuthoritative"


class Thumbnail(BaseModel):
    """A single thumbnail rendition."""

    model_config = ConfigDict(frozen=True)

    url: str
    width: Optional[int] = None
    height: Optional[int] = None


class LiveMetadataRecord(BaseModel):
    """Canonical live-metadata record.

    Instances are immutable.  Every optional field stays ``None`` (or empty)
    when the producing adapter did not report it; nothing is defaulted to a
    sentinel that could be mistaken for real data.

    Attributes:
        video_id: 11-character video id, when known.
        channel_id: ``UC...`` channel id, when known.
        channel_name: Channel display name.
        title: Video title.
        is_live_now: Whether the stream is broadcasting right now.
        is_live_content: Whether the video is (or was) a live broadcast.
        concurrent_viewers: Viewer figure; never negative.
        viewer_count_kind: What ``concurrent_viewers`` actually measures.
            Always ``unknown`` when ``concurrent_viewers`` is ``None``.
        actual_start_time: When the broadcast actually started.
        scheduled_start_time: When the broadcast was scheduled to start.
        end_time: When the broadcast ended.
        description: Description prefix, at most 300 characters.
        thumbnails: Thumbnail renditions.
        tags: At most 20 tags.
        source_method: Name of the adapter that produced the record, or
            ``"deadline"`` for the degraded "assume offline" answer.
        resolved_at: When the record was produced.
        note: Free-text qualifier.  Distinguishes a confirmed "not live"
            from "could not determine, assuming offline".
        mode: Which target kind (``video``, ``channel``, ``handle``) the
            record was resolved for.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    video_id: Optional[str] = None
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    title: Optional[str] = None
    is_live_now: bool = False
    is_live_content: bool = False
    concurrent_viewers: Optional[int] = Field(default=None, ge=0)
    viewer_count_kind: ViewerCountKind = ViewerCountKind.UNKNOWN
    actual_start_time: Optional[datetime] = None
    scheduled_start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    description: Optional[str] = None
    thumbnails: list[Thumbnail] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    source_method: str
    resolved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    note: Optional[str] = None
    mode: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _unknown_kind_without_viewers(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        viewers = data.get("concurrent_viewers", data.get("concurrentViewers"))
        if viewers is None:
            data = {
                k: v
                for k, v in data.items()
                if k not in ("viewer_count_kind", "viewerCountKind")
            }
            data["viewer_count_kind"] = ViewerCountKind.UNKNOWN
        return data

    @field_validator("actual_start_time", "scheduled_start_time", "end_time", "resolved_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("description")
    @classmethod
    def _bound_description(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value[:MAX_DESCRIPTION_CHARS]

    @field_validator("tags")
    @classmethod
    def _bound_tags(cls, value: list[str]) -> list[str]:
        return list(value[:MAX_TAGS])

    @property
    def is_degraded(self) -> bool:
        """True for the "could not determine, assuming offline" answer."""
        return self.source_method == "deadline"

    def live_duration_seconds(self, now: Optional[datetime] = None) -> Optional[int]:
        """Return whole seconds elapsed since ``actual_start_time``.

        Args:
            now: Reference time; defaults to the current UTC time.

        Returns:
            Elapsed seconds, or ``None`` when the stream is not live or its
            start time is unknown.  Clock skew never yields a negative value.
        """
        if not self.is_live_now or self.actual_start_time is None:
            return None
        now = now or datetime.now(timezone.utc)
        return max(0, int((now - self.actual_start_time).total_seconds()))

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize with the stable camelCase field names."""
        return self.model_dump(by_alias=True, mode="json")


class NotFound(BaseModel):
    """Outcome when every adapter failed without producing any signal.

    Distinct from a "not live" record: the target may not exist at all.

    Attributes:
        target: String form of the target, e.g. ``"video:dQw4w9WgXcQ"``.
        mode: Target kind.
        attempted: Adapters that were tried, in order.
        note: Human-readable explanation.
    """

    model_config = ConfigDict(frozen=True)

    target: str
    mode: str
    attempted: list[str] = Field(default_factory=list)
    note: str = "no adapter produced a signal; the target may not exist"

    def to_json_dict(self) -> dict[str, Any]:
        return {"found": False, **self.model_dump(mode="json")}
