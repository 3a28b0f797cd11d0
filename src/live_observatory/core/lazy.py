"""Lazily initialized, explicitly owned async resources.

Client sessions that need a network round-trip to build (for example the
internal API session that first scrapes a visitor token) are wrapped in a
:class:`LazyResource`.  Initialization runs at most once at a time behind an
``asyncio.Lock``.  A failed initialization leaves the resource empty, so
the next caller retries instead of inheriting a poisoned value.

Usage::

    session = LazyResource(build_session, closer=close_session, name="innertube")
    value = await session.get()
    await session.reset()   # force re-initialization on the next get()
    await session.aclose()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LazyResource(Generic[T]):
    """Once-guard around an async factory.

    Args:
        factory: Coroutine function producing the resource.
        closer: Optional coroutine function releasing a built resource.
        name: Label used in log messages.
    """

    def __init__(
        self,
        factory: Callable[[], Awaitable[T]],
        closer: Optional[Callable[[T], Awaitable[None]]] = None,
        name: str = "resource",
    ) -> None:
        self._factory = factory
        self._closer = closer
        self._name = name
        self._value: Optional[T] = None
        self._ready = False
        self._lock = asyncio.Lock()
        self.init_attempts = 0
        self.init_failures = 0

    @property
    def ready(self) -> bool:
        return self._ready

    async def get(self) -> T:
        """Return the resource, building it first if necessary.

        Concurrent callers wait on the same initialization.  Cancellation
        of the caller during initialization leaves the resource empty.

        Raises:
            Exception: Whatever the factory raised.  The failure is not
                cached; the next call re-attempts initialization.
        """
        if self._ready:
            return self._value  # type: ignore[return-value]
        async with self._lock:
            if self._ready:
                return self._value  # type: ignore[return-value]
            self.init_attempts += 1
            try:
                value = await self._factory()
            except Exception:
                self.init_failures += 1
                logger.warning(
                    "lazy: initialization of %s failed (attempt %d)",
                    self._name,
                    self.init_attempts,
                )
                raise
            self._value = value
            self._ready = True
            logger.debug("lazy: %s initialized", self._name)
            return value

    async def reset(self) -> None:
        """Discard the current value so the next :meth:`get` rebuilds it."""
        async with self._lock:
            await self._release()

    async def aclose(self) -> None:
        async with self._lock:
            await self._release()

    async def _release(self) -> None:
        value, ready = self._value, self._ready
        self._value = None
        self._ready = False
        if ready and self._closer is not None:
            await self._closer(value)  # type: ignore[arg-type]
