"""Source adapters.

Each adapter lives in its own sub-package with an ``adapter`` module that
registers the adapter class via :func:`~live_observatory.adapters.registry.register`,
and a ``config`` module with its static constants.
"""
