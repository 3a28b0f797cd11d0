"""Unit tests for the adapter base module and registry.

Tests cover:
- PriorityTier ordering and RawShape values
- AdapterDescriptor helpers (consumes_quota, with_timeout, to_dict)
- SourceAdapter defaults (supports, health_check, aclose, repr)
- Registry: register, get_adapter, list_adapters, overwrite warning
- autodiscover() registers all five built-in adapters

These are pure unit tests: no network, no subprocess.
"""

from __future__ import annotations

import logging

import pytest

from live_observatory.adapters.base import (
    AdapterDescriptor,
    PriorityTier,
    RawResult,
    RawShape,
    SourceAdapter,
)
from live_observatory.adapters.registry import autodiscover, get_adapter, list_adapters, register
from live_observatory.core.targets import Target, TargetKind


def _make_adapter_class(name: str = "_test_minimal") -> type[SourceAdapter]:
    """Return a minimal concrete SourceAdapter subclass (not registered)."""

    class _MinimalAdapter(SourceAdapter):
        descriptor = AdapterDescriptor(
            name=name,
            supported_targets=frozenset({TargetKind.VIDEO}),
            soft_timeout=2.0,
            tier=PriorityTier.FALLBACK,
        )

        async def fetch(self, target: Target) -> RawResult | None:
            return None

    return _MinimalAdapter


# ---------------------------------------------------------------------------
# Enums and descriptor
# ---------------------------------------------------------------------------


class TestEnums:
    def test_tiers_sort_primary_first(self) -> None:
        assert sorted([PriorityTier.LAST_RESORT, PriorityTier.PRIMARY, PriorityTier.FALLBACK]) == [
            PriorityTier.PRIMARY,
            PriorityTier.FALLBACK,
            PriorityTier.LAST_RESORT,
        ]

    def test_raw_shape_is_str(self) -> None:
        assert RawShape("data_api_video") is RawShape.DATA_API_VIDEO
        assert RawShape.YTDLP_INFO == "ytdlp_info"


class TestAdapterDescriptor:
    def test_free_adapter_consumes_no_quota(self) -> None:
        cls = _make_adapter_class()
        assert cls.descriptor.consumes_quota is False

    def test_with_timeout_returns_copy(self) -> None:
        cls = _make_adapter_class()
        tuned = cls.descriptor.with_timeout(0.5)
        assert tuned.soft_timeout == 0.5
        assert cls.descriptor.soft_timeout == 2.0

    def test_to_dict(self) -> None:
        descriptor = AdapterDescriptor(
            name="paid",
            supported_targets=frozenset({TargetKind.VIDEO, TargetKind.CHANNEL}),
            soft_timeout=5.0,
            quota_cost=1,
            tier=PriorityTier.FALLBACK,
            confidence=3,
        )
        assert descriptor.to_dict() == {
            "name": "paid",
            "supported_targets": ["channel", "video"],
            "soft_timeout": 5.0,
            "quota_cost": 1,
            "tier": "fallback",
            "confidence": 3,
        }


# ---------------------------------------------------------------------------
# SourceAdapter defaults
# ---------------------------------------------------------------------------


class TestSourceAdapterInterface:
    def test_abstract_class_cannot_be_instantiated(self) -> None:
        with pytest.raises(TypeError):
            SourceAdapter()  # type: ignore[abstract]

    def test_supports_checks_target_kind(self) -> None:
        adapter = _make_adapter_class()()
        assert adapter.supports(Target.video("dQw4w9WgXcQ"))
        assert not adapter.supports(Target.handle("@lofigirl"))

    def test_descriptor_override_per_instance(self) -> None:
        cls = _make_adapter_class()
        adapter = cls(descriptor=cls.descriptor.with_timeout(9.0))
        assert adapter.descriptor.soft_timeout == 9.0
        assert cls.descriptor.soft_timeout == 2.0

    async def test_health_check_default_returns_not_implemented(self) -> None:
        adapter = _make_adapter_class()()
        result = await adapter.health_check()
        assert result["status"] == "not_implemented"
        assert result["adapter"] == "_test_minimal"
        assert "checked_at" in result

    async def test_aclose_default_is_noop(self) -> None:
        await _make_adapter_class()().aclose()

    def test_repr_includes_name_and_tier(self) -> None:
        r = repr(_make_adapter_class()())
        assert "_test_minimal" in r
        assert "fallback" in r


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestAdapterRegistry:
    def test_register_and_retrieve(self, fresh_registry: dict) -> None:
        cls = register(_make_adapter_class("_test_registry"))
        assert get_adapter("_test_registry") is cls

    def test_unknown_name_raises_key_error(self, fresh_registry: dict) -> None:
        with pytest.raises(KeyError, match="autodiscover"):
            get_adapter("_does_not_exist")

    def test_overwrite_logs_warning(self, fresh_registry: dict, caplog: pytest.LogCaptureFixture) -> None:
        register(_make_adapter_class("_test_dup"))
        with caplog.at_level(logging.WARNING, logger="live_observatory.adapters.registry"):
            second = register(_make_adapter_class("_test_dup"))
        assert get_adapter("_test_dup") is second
        assert "already registered" in caplog.text

    def test_autodiscover_registers_builtin_adapters(self, fresh_registry: dict) -> None:
        autodiscover()
        names = {entry["name"] for entry in list_adapters()}
        assert {"fast_status", "innertube", "html_scrape", "data_api", "ytdlp"} <= names

    def test_list_adapters_orders_by_tier(self, fresh_registry: dict) -> None:
        autodiscover()
        entries = [e for e in list_adapters() if not e["name"].startswith("_")]
        tiers = [e["tier"] for e in entries]
        order = {"primary": 0, "fallback": 1, "last_resort": 2}
        assert tiers == sorted(tiers, key=order.__getitem__)
        assert entries[-1]["name"] == "ytdlp"
        assert all(e["description"] for e in entries)
