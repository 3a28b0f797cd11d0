"""structlog setup for the resolution engine.

``configure_logging()`` is called once by the embedding process.  Afterwards
adapters log through the stdlib API (``logging.getLogger(__name__)``) and
the orchestrator through ``structlog.get_logger(__name__)``; both end up in
the same processor chain and renderer.

Every record emitted inside :func:`resolution_context` carries the
``resolution_id``, ``target_kind`` and ``target`` of the resolution that
produced it, so a single lookup can be followed across adapters::

    with resolution_context(target) as resolution_id:
        ...
"""

from __future__ import annotations

import logging
import re
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from live_observatory.core.targets import Target

resolution_id_var: ContextVar[Optional[str]] = ContextVar("resolution_id", default=None)
"""ID of the resolution currently running in this task, if any."""

REDACTED = "[REDACTED]"

_SECRET_KEY_PARTS: tuple[str, ...] = (
    "api_key",
    "apikey",
    "authorization",
    "cookie",
    "password",
    "secret",
    "token",
    "visitor_data",
)

# ?key=... / &key=... in logged URLs (Data API and internal API requests).
_URL_KEY_PARAM = re.compile(r"([?&]key=)[^&\s\"']+")

_QUIET_LIBRARIES: tuple[str, ...] = ("httpx", "httpcore", "asyncio")


# ---------------------------------------------------------------------------
# Resolution context
# ---------------------------------------------------------------------------


@contextmanager
def resolution_context(target: Target) -> Iterator[str]:
    """Bind a fresh resolution id (and the target) to every log record."""
    resolution_id = uuid.uuid4().hex
    token = resolution_id_var.set(resolution_id)
    try:
        with structlog.contextvars.bound_contextvars(
            resolution_id=resolution_id,
            target_kind=target.kind.value,
            target=target.value,
        ):
            yield resolution_id
    finally:
        resolution_id_var.reset(token)


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SECRET_KEY_PARTS)


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        return _URL_KEY_PARAM.sub(r"\1" + REDACTED, value)
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and _is_secret_key(k) else _scrub(v)
            for k, v in value.items()
        }
    return value


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Mask credentials before any renderer sees them.

    Values under secret-looking keys are replaced at any nesting depth, and
    ``key=`` query parameters are masked inside string values such as URLs.
    """
    for key, value in list(event_dict.items()):
        event_dict[key] = REDACTED if _is_secret_key(key) else _scrub(value)
    return event_dict


def _add_resolution_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    # Covers records from code that set the ContextVar without binding.
    resolution_id = resolution_id_var.get()
    if resolution_id is not None:
        event_dict.setdefault("resolution_id", resolution_id)
    return event_dict


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def configure_logging(
    log_level: str = "INFO",
    *,
    json_output: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """Install the structlog processor chain on the root logger.

    Args:
        log_level: Level name, case-insensitive.  Unknown names fall back to
            ``INFO``.
        json_output: Force JSON (``True``) or console (``False``) rendering.
            By default ``DEBUG`` gets the console renderer and every other
            level gets newline-delimited JSON.
        stream: Where records are written.  Defaults to ``sys.stdout``.

    Calling it again replaces the previous handler instead of adding one.
    """
    level_name = log_level.upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level_name, level = "INFO", logging.INFO
    if json_output is None:
        json_output = level_name != "DEBUG"

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_resolution_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _redact_secrets,
    ]
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=stream is None)
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(level if level_name == "DEBUG" else logging.WARNING)

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
