"""yt-dlp adapter: ``yt-dlp --dump-json`` in a subprocess.

The subprocess is started with :func:`asyncio.create_subprocess_exec` and is
killed whenever the awaiting task is cancelled (hard timeout or global
deadline), so no ``yt-dlp`` process outlives its resolution.

Channels and handles are passed as their ``/live`` URL; yt-dlp follows the
redirect to the running broadcast or reports "not currently live".

When ``youtube_cookies`` is configured, the cookie header is converted once
into a Netscape cookie file and passed with ``--cookies``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile
import time
from datetime import datetime, timezone
from typing import Any, Optional

from live_observatory.adapters._youtube_web import live_page_url
from live_observatory.adapters.base import AdapterDescriptor, RawResult, RawShape, SourceAdapter
from live_observatory.adapters.registry import register
from live_observatory.adapters.ytdlp.config import (
    COOKIE_DOMAINS,
    COOKIE_LIFETIME_SECONDS,
    NOT_LIVE_MARKERS,
    YTDLP_BASE_ARGS,
    YTDLP_DESCRIPTOR,
)
from live_observatory.config.settings import Settings, get_settings
from live_observatory.config.youtube_defaults import YOUTUBE_WATCH_URL
from live_observatory.core.exceptions import AdapterUnavailableError
from live_observatory.core.lazy import LazyResource
from live_observatory.core.targets import Target

logger = logging.getLogger(__name__)


def netscape_cookie_lines(cookie_header: str, now: Optional[float] = None) -> list[str]:
    """Convert a ``NAME=value; NAME2=value2`` header into Netscape cookie-file lines.

    Values may themselves contain ``=``.  ``__Secure-`` cookies are flagged
    secure.
    """
    expiry = int((now if now is not None else time.time()) + COOKIE_LIFETIME_SECONDS)
    lines = ["# Netscape HTTP Cookie File", "# This is a generated file!  Do not edit.", ""]
    for part in cookie_header.split(";"):
        name, _, value = part.strip().partition("=")
        if not name or not value:
            continue
        secure = "TRUE" if name.startswith("__Secure-") else "FALSE"
        for domain, include_subdomains in COOKIE_DOMAINS:
            lines.append(
                "\t".join((domain, include_subdomains, "/", secure, str(expiry), name, value))
            )
    return lines


def is_not_live_error(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in NOT_LIVE_MARKERS)


def info_is_live(info: dict[str, Any]) -> bool:
    return info.get("is_live") is True or info.get("live_status") == "is_live"


@register
class YtDlpAdapter(SourceAdapter):
    """Runs ``yt-dlp`` and returns its info dict.

    Args:
        settings: Application settings (``ytdlp_binary``, ``youtube_cookies``).
        descriptor: Optional descriptor override.
    """

    descriptor = YTDLP_DESCRIPTOR

    def __init__(
        self,
        settings: Settings | None = None,
        descriptor: AdapterDescriptor | None = None,
    ) -> None:
        super().__init__(descriptor=descriptor)
        self._settings = settings or get_settings()
        self._cookie_file: LazyResource[Optional[str]] = LazyResource(
            self._write_cookie_file, closer=self._remove_cookie_file, name="ytdlp cookie file"
        )

    # ------------------------------------------------------------------
    # Cookie file
    # ------------------------------------------------------------------

    async def _write_cookie_file(self) -> Optional[str]:
        if not self._settings.youtube_cookies:
            return None
        fd, path = tempfile.mkstemp(prefix="live_observatory_", suffix="_cookies.txt")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write("\n".join(netscape_cookie_lines(self._settings.youtube_cookies)))
        logger.debug("ytdlp: cookie file written to %s", path)
        return path

    @staticmethod
    async def _remove_cookie_file(path: Optional[str]) -> None:
        if path:
            with contextlib.suppress(FileNotFoundError):
                os.remove(path)

    # ------------------------------------------------------------------
    # Subprocess
    # ------------------------------------------------------------------

    def _url_for(self, target: Target) -> str:
        if target.is_video:
            return YOUTUBE_WATCH_URL.format(video_id=target.value)
        return live_page_url(target)

    async def build_command(self, target: Target) -> list[str]:
        command = [self._settings.ytdlp_binary, *YTDLP_BASE_ARGS]
        cookie_file = await self._cookie_file.get()
        if cookie_file:
            command += ["--cookies", cookie_file]
        command.append(self._url_for(target))
        return command

    async def _run(self, command: list[str]) -> tuple[int, bytes, bytes]:
        """Run *command* to completion, killing it if the caller is cancelled.

        Raises:
            AdapterUnavailableError: If the binary cannot be started.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise AdapterUnavailableError(
                f"ytdlp: cannot start '{command[0]}': {exc}", adapter=self.name
            ) from exc

        try:
            stdout, stderr = await process.communicate()
        finally:
            if process.returncode is None:
                logger.info("ytdlp: killing pid=%s", process.pid)
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
        return process.returncode, stdout, stderr  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # SourceAdapter interface
    # ------------------------------------------------------------------

    async def fetch(self, target: Target) -> RawResult | None:
        command = await self.build_command(target)
        returncode, stdout, stderr = await self._run(command)
        error_text = stderr.decode("utf-8", errors="replace").strip()

        if returncode != 0:
            if is_not_live_error(error_text):
                logger.debug("ytdlp: %s reported not live: %s", target, error_text[-200:])
                return None
            raise AdapterUnavailableError(
                f"ytdlp: exit code {returncode} for {target}: {error_text[-300:]}",
                adapter=self.name,
            )

        first_line = stdout.decode("utf-8", errors="replace").strip().splitlines()[:1]
        try:
            info = json.loads(first_line[0]) if first_line else None
        except ValueError as exc:
            raise AdapterUnavailableError(
                f"ytdlp: invalid JSON output for {target}", adapter=self.name
            ) from exc
        if not isinstance(info, dict):
            raise AdapterUnavailableError(
                f"ytdlp: empty output for {target}", adapter=self.name
            )

        if not info_is_live(info) and not target.is_video:
            return None
        return RawResult(
            source=self.name,
            shape=RawShape.YTDLP_INFO,
            target=target,
            payload=info,
        )

    async def health_check(self) -> dict[str, Any]:
        """Check that the ``yt-dlp`` binary runs.

        Returns:
            Dict with ``status``, ``adapter``, ``checked_at`` and either
            ``version`` or ``detail``.
        """
        base: dict[str, Any] = {
            "adapter": self.name,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            returncode, stdout, stderr = await asyncio.wait_for(
                self._run([self._settings.ytdlp_binary, "--version"]),
                timeout=self.descriptor.soft_timeout,
            )
        except AdapterUnavailableError as exc:
            return {**base, "status": "down", "detail": str(exc)}
        except asyncio.TimeoutError:
            return {**base, "status": "degraded", "detail": "yt-dlp --version timed out"}
        if returncode != 0:
            return {
                **base,
                "status": "down",
                "detail": stderr.decode("utf-8", errors="replace").strip(),
            }
        return {**base, "status": "ok", "version": stdout.decode("utf-8").strip()}

    async def aclose(self) -> None:
        await self._cookie_file.aclose()
