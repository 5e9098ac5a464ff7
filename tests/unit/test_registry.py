"""Tests for arkive.providers.registry: ProviderRegistry."""

import pytest

from arkive.providers.registry import ProviderRegistry, registry
from arkive.providers.snapshot.base import SnapshotProvider
from arkive.providers.snapshot.passthrough import PassthroughSnapshotProvider
from arkive.providers.systemstate.process import ProcessSystemStateTool


class _Dummy:
    def __init__(self, config):
        self.config = config


class TestProviderRegistry:
    def test_register_and_get(self):
        reg = ProviderRegistry()
        reg.register("snapshot", "dummy", _Dummy)
        provider = reg.get("snapshot", "dummy", {"x": 1})
        assert isinstance(provider, _Dummy)
        assert provider.config == {"x": 1}

    def test_get_without_config(self):
        reg = ProviderRegistry()
        reg.register("snapshot", "dummy", _Dummy)
        assert reg.get("snapshot", "dummy").config == {}

    def test_unknown_family(self):
        with pytest.raises(KeyError, match="family"):
            ProviderRegistry().get_entry("nope", "x")

    def test_unknown_name(self):
        reg = ProviderRegistry()
        reg.register("snapshot", "dummy", _Dummy)
        with pytest.raises(KeyError):
            reg.get_entry("snapshot", "other")

    def test_list_family(self):
        reg = ProviderRegistry()
        reg.register("systemstate", "a", _Dummy)
        reg.register("systemstate", "b", _Dummy)
        assert [e.name for e in reg.list_family("systemstate")] == ["a", "b"]
        assert reg.list_family("virtualization") == []


class TestBuiltins:
    def test_passthrough_registered(self):
        provider = registry.get("snapshot", "passthrough")
        assert isinstance(provider, PassthroughSnapshotProvider)
        assert isinstance(provider, SnapshotProvider)

    def test_process_tool_registered(self):
        assert isinstance(registry.get("systemstate", "process"), ProcessSystemStateTool)
