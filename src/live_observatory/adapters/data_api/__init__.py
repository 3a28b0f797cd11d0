"""YouTube Data API v3 adapter package (paid, metered).

The only source of authoritative concurrent-viewer counts.  Every call
costs quota units, so the orchestrator consults it after the free sources
unless the caller explicitly asked for viewer counts.

Credential: ``LIVE_OBSERVATORY_YOUTUBE_API_KEY``.  Without it the adapter is
never built.
"""

from live_observatory.adapters.data_api.adapter import DataApiAdapter

__all__ = ["DataApiAdapter"]
