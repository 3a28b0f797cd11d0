"""Pydantic schemas for resolution results."""

from live_observatory.core.schemas.live_metadata import (
    FieldSet,
    LiveMetadataRecord,
    NotFound,
    Thumbnail,
    ViewerCountKind,
)

__all__ = [
    "FieldSet",
    "LiveMetadataRecord",
    "NotFound",
    "Thumbnail",
    "ViewerCountKind",
]
