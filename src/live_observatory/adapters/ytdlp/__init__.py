"""yt-dlp subprocess adapter package.

Slow but resilient last resort: ``yt-dlp`` tracks YouTube's player changes
independently of this codebase.
"""

from live_observatory.adapters.ytdlp.adapter import YtDlpAdapter

__all__ = ["YtDlpAdapter"]
