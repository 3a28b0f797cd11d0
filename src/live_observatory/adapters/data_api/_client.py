"""Low-level HTTP client functions for the Data API adapter.

Separates network I/O from the adapter so that error mapping stays in one
place:

- :func:`extract_error_reason`: extract ``reason`` from a YouTube error body.
- :func:`make_api_request`: one GET with the shared error mapping.
- :func:`fetch_videos_batch`: one ``videos.list`` batch call.

Callers provide the :class:`httpx.AsyncClient` and are responsible for
consuming quota before calling these functions.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from live_observatory.adapters.data_api.config import (
    MAX_IDS_PER_VIDEOS_CALL,
    QUOTA_EXCEEDED_REASONS,
    RATE_LIMIT_REASONS,
    VIDEO_PARTS,
)
from live_observatory.config.youtube_defaults import YOUTUBE_DATA_API_BASE_URL
from live_observatory.core.exceptions import (
    AdapterAuthError,
    AdapterRateLimitError,
    AdapterUnavailableError,
    QuotaExhaustedError,
)

logger = logging.getLogger(__name__)

_ADAPTER = "data_api"


def extract_error_reason(response: httpx.Response) -> str:
    """Extract the ``reason`` field from a YouTube API error response body.

    Args:
        response: The :class:`httpx.Response` containing the error body.

    Returns:
        The ``reason`` string (e.g. ``"quotaExceeded"``), or ``"unknown"``
        if the body cannot be parsed.
    """
    try:
        body = response.json()
    except ValueError:
        return "unknown"
    if not isinstance(body, dict):
        return "unknown"
    errors = (body.get("error") or {}).get("errors") or []
    if errors and isinstance(errors[0], dict):
        return errors[0].get("reason", "unknown")
    return "unknown"


async def make_api_request(
    client: httpx.AsyncClient,
    endpoint: str,
    params: dict[str, Any],
    rate_limit_cooldown: float = 60.0,
) -> dict[str, Any]:
    """Make a YouTube Data API v3 GET request with error handling.

    Args:
        client: Shared :class:`httpx.AsyncClient`.
        endpoint: API endpoint path segment (e.g. ``"videos"``).
        params: Query parameter dict.  Must include ``key``.
        rate_limit_cooldown: ``retry_after`` reported for rate limits.

    Returns:
        Parsed JSON response dict.

    Raises:
        QuotaExhaustedError: HTTP 403 with ``reason="quotaExceeded"``.
        AdapterRateLimitError: HTTP 429, or 403 with a rate-limit reason.
        AdapterAuthError: HTTP 401 or any other HTTP 403.
        AdapterUnavailableError: Any other non-2xx HTTP response or network error.
    """
    url = f"{YOUTUBE_DATA_API_BASE_URL}/{endpoint}"
    try:
        response = await client.get(url, params=params)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as exc:
        status_code = exc.response.status_code
        if status_code == 403:
            reason = extract_error_reason(exc.response)
            if reason in QUOTA_EXCEEDED_REASONS:
                raise QuotaExhaustedError(
                    f"data_api: quota exceeded on endpoint '{endpoint}'",
                    adapter=_ADAPTER,
                ) from exc
            if reason in RATE_LIMIT_REASONS:
                raise AdapterRateLimitError(
                    f"data_api: {reason} on endpoint '{endpoint}'",
                    retry_after=rate_limit_cooldown,
                    adapter=_ADAPTER,
                ) from exc
            raise AdapterAuthError(
                f"data_api: HTTP 403 (reason={reason}) on endpoint '{endpoint}'",
                adapter=_ADAPTER,
            ) from exc
        if status_code == 401:
            raise AdapterAuthError(
                f"data_api: HTTP 401 on endpoint '{endpoint}'",
                adapter=_ADAPTER,
            ) from exc
        if status_code == 429:
            raise AdapterRateLimitError(
                f"data_api: HTTP 429 on endpoint '{endpoint}'",
                retry_after=rate_limit_cooldown,
                adapter=_ADAPTER,
            ) from exc
        raise AdapterUnavailableError(
            f"data_api: HTTP {status_code} on endpoint '{endpoint}'",
            adapter=_ADAPTER,
        ) from exc
    except httpx.RequestError as exc:
        raise AdapterUnavailableError(
            f"data_api: connection error on endpoint '{endpoint}': {exc}",
            adapter=_ADAPTER,
        ) from exc
    except ValueError as exc:
        raise AdapterUnavailableError(
            f"data_api: non-JSON body on endpoint '{endpoint}'",
            adapter=_ADAPTER,
        ) from exc


async def fetch_videos_batch(
    client: httpx.AsyncClient,
    api_key: str,
    video_ids: list[str],
    part: str = VIDEO_PARTS,
    rate_limit_cooldown: float = 60.0,
) -> list[dict[str, Any]]:
    """Fetch a batch of up to 50 video resources.

    Calls ``videos.list`` (1 quota unit for up to 50 IDs).

    Args:
        client: Shared HTTP client.
        api_key: YouTube Data API v3 key.
        video_ids: List of video ID strings (max 50).
        part: Comma-separated resource parts.
        rate_limit_cooldown: ``retry_after`` reported for rate limits.

    Returns:
        List of raw video resource dicts.  Unknown or private ids are simply
        absent from the list.

    Raises:
        ValueError: If more than 50 ids are passed.
        QuotaExhaustedError: On quota exhaustion.
        AdapterAuthError: On authentication failure.
        AdapterUnavailableError: On other API errors.
    """
    if len(video_ids) > MAX_IDS_PER_VIDEOS_CALL:
        raise ValueError(
            f"videos.list accepts at most {MAX_IDS_PER_VIDEOS_CALL} ids, got {len(video_ids)}"
        )
    params: dict[str, Any] = {
        "id": ",".join(video_ids),
        "part": part,
        "key": api_key,
    }
    data = await make_api_request(
        client=client,
        endpoint="videos",
        params=params,
        rate_limit_cooldown=rate_limit_cooldown,
    )
    items: list[dict[str, Any]] = data.get("items", [])
    logger.debug(
        "data_api: videos.list batch size=%d -> %d items returned",
        len(video_ids),
        len(items),
    )
    return items
