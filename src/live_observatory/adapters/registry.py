"""Adapter registry for dynamic discovery and registration of source adapters.

Adapters register themselves on import using the ``@register`` decorator.
The registry is a module-level singleton that maps ``descriptor.name``
strings to ``SourceAdapter`` subclasses.

Example: registering an adapter::

    from live_observatory.adapters.registry import register
    from live_observatory.adapters.base import SourceAdapter

    @register
    class FastStatusAdapter(SourceAdapter):
        descriptor = AdapterDescriptor(name="fast_status", ...)
        ...

Example: looking up an adapter::

    from live_observatory.adapters.registry import get_adapter, list_adapters

    cls = get_adapter("fast_status")
    adapter = cls()

    list_adapters()
    # [{"name": "fast_status", "tier": "primary", ...}, ...]
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from live_observatory.adapters.base import SourceAdapter

logger = logging.getLogger(__name__)

# Registry singleton: descriptor.name -> SourceAdapter subclass
_REGISTRY: dict[str, type[SourceAdapter]] = {}

ADAPTER_DESCRIPTIONS: dict[str, str] = {
    "fast_status": "Channel /live redirect probe; answers liveness only",
    "innertube": "YouTube internal web-client API (player endpoint); rich metadata",
    "html_scrape": "Watch-page HTML scrape of ytInitialPlayerResponse and ytInitialData",
    "data_api": "YouTube Data API v3 videos.list; authoritative concurrent viewers (paid)",
    "ytdlp": "yt-dlp --dump-json subprocess; slow but resilient",
}


def register(cls: type[SourceAdapter]) -> type[SourceAdapter]:
    """Decorator that registers a ``SourceAdapter`` subclass in the global registry.

    If an adapter with the same name has already been registered, the new
    registration overwrites the old one and a warning is emitted.

    Args:
        cls: ``SourceAdapter`` subclass to register.

    Returns:
        The same class (decorator pass-through).

    Raises:
        AttributeError: If ``cls`` does not define ``descriptor``.
    """
    name: str = cls.descriptor.name
    if name in _REGISTRY:
        logger.warning(
            "Adapter '%s' is already registered (was %s). Overwriting with %s.",
            name,
            _REGISTRY[name].__qualname__,
            cls.__qualname__,
        )
    _REGISTRY[name] = cls
    logger.debug("Registered source adapter: name=%s class=%s", name, cls.__qualname__)
    return cls


def get_adapter(name: str) -> type[SourceAdapter]:
    """Retrieve a registered ``SourceAdapter`` class by name.

    Args:
        name: The adapter's ``descriptor.name`` (e.g. ``"innertube"``).

    Returns:
        The registered ``SourceAdapter`` subclass.

    Raises:
        KeyError: If no adapter with the given name is registered.  Callers
            should call ``autodiscover()`` before their first lookup.
    """
    try:
        return _REGISTRY[name]
    except KeyError:
        registered = sorted(_REGISTRY.keys())
        raise KeyError(
            f"No adapter registered under '{name}'. "
            f"Registered adapters: {registered}. "
            "Did you forget to call autodiscover() or import the adapter module?"
        ) from None


def list_adapters() -> list[dict[str, Any]]:
    """Return metadata for all registered adapters, ordered by tier then name.

    Returns:
        List of dicts, each containing the descriptor fields plus a
        ``description`` and the fully qualified ``adapter_class``.
    """
    return [
        {
            **cls.descriptor.to_dict(),
            "description": ADAPTER_DESCRIPTIONS.get(cls.descriptor.name, ""),
            "adapter_class": f"{cls.__module__}.{cls.__qualname__}",
        }
        for cls in sorted(
            _REGISTRY.values(),
            key=lambda c: (c.descriptor.tier, c.descriptor.name),
        )
    ]


def autodiscover() -> None:
    """Import all ``adapter`` modules to trigger ``@register`` decorators.

    Walks the ``live_observatory.adapters`` package tree and imports every
    submodule named ``adapter``.  Idempotent.  A module that fails to import
    is logged and skipped so that the remaining adapters still load.
    """
    import live_observatory.adapters as adapters_pkg

    adapters_path = adapters_pkg.__path__
    adapters_prefix = adapters_pkg.__name__ + "."

    for _finder, module_name, _is_pkg in pkgutil.walk_packages(
        path=adapters_path, prefix=adapters_prefix
    ):
        if module_name.endswith(".adapter"):
            try:
                importlib.import_module(module_name)
                logger.debug("Autodiscovered adapter module: %s", module_name)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Failed to import adapter module '%s': %s",
                    module_name,
                    exc,
                    exc_info=True,
                )
