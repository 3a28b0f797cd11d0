"""Internal web-client API adapter package.

Talks to the ``youtubei/v1`` endpoints that the youtube.com web player
uses.  Richest free source: title, channel, broadcast timestamps,
thumbnails and keywords come from the ``player`` response, and a
"watching now" count is read from the ``next`` response while live.
"""

from live_observatory.adapters.innertube.adapter import InnertubeAdapter

__all__ = ["InnertubeAdapter"]
