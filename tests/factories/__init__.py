"""Test doubles and Factory Boy payload factories.

Available helpers
-----------------
FakeAdapter                 scripted SourceAdapter (payload, None, exception, delay)
FakePaidAdapter             quota-consuming FakeAdapter with batch viewer refresh
StatusProbePayloadFactory   ``/live`` probe payload dict (live by default)
DataApiVideoFactory         Data API ``videos.list`` item dict
"""

from __future__ import annotations

from tests.factories.adapters import FakeAdapter, FakePaidAdapter
from tests.factories.payloads import DataApiVideoFactory, StatusProbePayloadFactory

__all__ = [
    "DataApiVideoFactory",
    "FakeAdapter",
    "FakePaidAdapter",
    "StatusProbePayloadFactory",
]
