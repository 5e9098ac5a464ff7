"""Central registry for external collaborators (snapshot, virtualization, system state)."""

from __future__ import annotations

import logging
from dataclasses import dataclass

log = logging.getLogger(__name__)

FAMILIES = ("snapshot", "virtualization", "systemstate")


@dataclass
class ProviderEntry:
    """Metadata about a registered provider."""

    family: str  # "snapshot", "virtualization", "systemstate"
    name: str  # "passthrough", "process", ...
    cls: type


class ProviderRegistry:
    """Name-based lookup of collaborator classes, configured from config.yaml."""

    def __init__(self) -> None:
        self._providers: dict[str, dict[str, ProviderEntry]] = {}

    def register(self, family: str, name: str, cls: type) -> None:
        """Register a provider class under a family."""
        self._providers.setdefault(family, {})[name] = ProviderEntry(family=family, name=name, cls=cls)
        log.debug("Registered provider: %s/%s", family, name)

    def get_entry(self, family: str, name: str) -> ProviderEntry:
        """Get a ProviderEntry without instantiating."""
        fam = self._providers.get(family)
        if fam is None:
            raise KeyError(f"Unknown provider family: {family!r}")
        entry = fam.get(name)
        if entry is None:
            raise KeyError(f"Unknown provider: {family}/{name!r}")
        return entry

    def get(self, family: str, name: str, config: dict | None = None) -> object:
        """Instantiate a provider by family and name."""
        return self.get_entry(family, name).cls(config or {})

    def list_family(self, family: str) -> list[ProviderEntry]:
        """List all providers in a family."""
        return list(self._providers.get(family, {}).values())


def _builtin_registry() -> ProviderRegistry:
    from arkive.providers.snapshot.passthrough import PassthroughSnapshotProvider
    from arkive.providers.systemstate.process import ProcessSystemStateTool

    reg = ProviderRegistry()
    reg.register("snapshot", "passthrough", PassthroughSnapshotProvider)
    reg.register("systemstate", "process", ProcessSystemStateTool)
    return reg


# Global singleton
registry = _builtin_registry()
