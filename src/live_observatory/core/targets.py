"""Resolution targets: the identifier being resolved.

A :class:`Target` is a discriminated union over :class:`TargetKind`.  Exactly
one variant is set per resolution request, and construction validates the
identifier so that malformed input is rejected before any adapter runs.

Example usage::

    from live_observatory.core.targets import Target

    Target.video("dQw4w9WgXcQ")
    Target.channel("UCuAXFkgsw1L7xaCfnd5JJOw")
    Target.handle("@lofigirl")
    Target.parse("UCuAXFkgsw1L7xaCfnd5JJOw")   # kind inferred
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from live_observatory.config.youtube_defaults import (
    CHANNEL_ID_PATTERN,
    HANDLE_PATTERN,
    VIDEO_ID_PATTERN,
)
from live_observatory.core.exceptions import InvalidTargetError


class TargetKind(str, Enum):
    """Variant of a :class:`Target`.

    The string values double as the record ``mode`` and as a cache-key
    segment, so they must never change.
    """

    VIDEO = "video"
    CHANNEL = "channel"
    HANDLE = "handle"


@dataclass(frozen=True)
class Target:
    """Immutable, validated resolution target.

    Prefer the ``video`` / ``channel`` / ``handle`` / ``parse`` constructors;
    direct construction also validates via ``__post_init__``.

    Attributes:
        kind: Which identifier variant ``value`` holds.
        value: The identifier.  Handles are stored without the leading ``@``.
    """

    kind: TargetKind
    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.kind, TargetKind):
            raise InvalidTargetError(self.kind, "unknown target kind")
        if not isinstance(self.value, str):
            raise InvalidTargetError(self.value, "identifier must be a string")
        if self.kind is TargetKind.VIDEO and not VIDEO_ID_PATTERN.match(self.value):
            raise InvalidTargetError(
                self.value,
                "video id must be exactly 11 characters of letters, digits, '-' or '_'",
            )
        if self.kind is TargetKind.CHANNEL and not CHANNEL_ID_PATTERN.match(self.value):
            raise InvalidTargetError(
                self.value,
                "channel id must be exactly 24 characters starting with 'UC'",
            )
        if self.kind is TargetKind.HANDLE and not HANDLE_PATTERN.match(self.value):
            raise InvalidTargetError(
                self.value,
                "handle must be non-empty and contain no whitespace or URL separators",
            )

    @classmethod
    def video(cls, video_id: str) -> Target:
        return cls(TargetKind.VIDEO, video_id)

    @classmethod
    def channel(cls, channel_id: str) -> Target:
        return cls(TargetKind.CHANNEL, channel_id)

    @classmethod
    def handle(cls, handle: str) -> Target:
        """Build a handle target, stripping one leading ``@``."""
        if isinstance(handle, str) and handle.startswith("@"):
            handle = handle[1:]
        return cls(TargetKind.HANDLE, handle)

    @classmethod
    def parse(cls, value: str) -> Target:
        """Infer the target kind from a bare identifier.

        ``@name`` is always a handle.  Otherwise a 24-character ``UC...``
        string is a channel id, an 11-character URL-safe string is a video id,
        and anything else that passes the handle check is treated as a handle.

        Raises:
            InvalidTargetError: If *value* matches no variant.
        """
        if not isinstance(value, str) or not value.strip():
            raise InvalidTargetError(value, "identifier must be a non-empty string")
        value = value.strip()
        if value.startswith("@"):
            return cls.handle(value)
        if CHANNEL_ID_PATTERN.match(value):
            return cls.channel(value)
        if VIDEO_ID_PATTERN.match(value):
            return cls.video(value)
        return cls.handle(value)

    @property
    def is_video(self) -> bool:
        return self.kind is TargetKind.VIDEO

    def __str__(self) -> str:
        prefix = "@" if self.kind is TargetKind.HANDLE else ""
        return f"{self.kind.value}:{prefix}{self.value}"
