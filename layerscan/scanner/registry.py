# layerscan/scanner/registry.py
"""
Explicit plugin registry.

A DiscoveryRegistry is built once at start-up, handed to the orchestrator
and frozen before the first port is scanned. After freeze() it is
read-only, so any number of concurrent pipeline runs can iterate it
without locking. Nothing here is process-wide state: build as many
registries as you like (tests do).

    registry = DiscoveryRegistry()
    registry.register(TLSSessionDiscovery(config))
    registry.register(TCPSessionDiscovery(config))
    registry.register(HTTPDiscovery(config))
    registry.register(RedisDiscovery(config))
    registry.freeze()

Each layer carries its own match policy. The defaults are first-match for
session and presentation and run-all for application.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from layerscan.config import ScanConfig
from layerscan.scanner.applications import ALL_APPLICATION_PLUGINS
from layerscan.scanner.base import (
    ApplicationPlugin,
    Layer,
    MatchPolicy,
    PresentationPlugin,
    SessionPlugin,
    Transport,
)
from layerscan.scanner.collaborators import (
    EtcdAnonymousReadProbe,
    EtcdctlProbe,
    KubeletAnonymousAccessProbe,
    VulnerabilityProbe,
)
from layerscan.scanner.presentations import ALL_PRESENTATION_PLUGINS
from layerscan.scanner.sessions import ALL_SESSION_PLUGINS

logger = logging.getLogger(__name__)

Plugin = Union[SessionPlugin, PresentationPlugin, ApplicationPlugin]


class RegistryFrozenError(RuntimeError):
    """Raised when registering into a registry that scanning already uses."""


@dataclass(frozen=True)
class PluginEntry:
    """One registered capability: protocol id, required transport, the plugin."""
    layer: Layer
    protocol: str
    transport: Transport
    plugin: Plugin


class DiscoveryRegistry:

    def __init__(
        self,
        session_policy: MatchPolicy = MatchPolicy.FIRST,
        presentation_policy: MatchPolicy = MatchPolicy.FIRST,
        application_policy: MatchPolicy = MatchPolicy.ALL,
    ):
        self._policies: Dict[Layer, MatchPolicy] = {
            Layer.SESSION: MatchPolicy(session_policy),
            Layer.PRESENTATION: MatchPolicy(presentation_policy),
            Layer.APPLICATION: MatchPolicy(application_policy),
        }
        self._pending: Dict[Layer, List[PluginEntry]] = {layer: [] for layer in Layer}
        self._entries: Optional[Dict[Layer, Tuple[PluginEntry, ...]]] = None

    @property
    def frozen(self) -> bool:
        return self._entries is not None

    def register(self, plugin: Plugin) -> "DiscoveryRegistry":
        """Append plugin to its layer. Evaluation follows registration order."""
        if self.frozen:
            raise RegistryFrozenError(
                f"Cannot register {plugin!r}: registry is frozen once scanning begins"
            )
        if not plugin.protocol:
            raise ValueError(f"{type(plugin).__name__} has no protocol identifier")

        entry = PluginEntry(
            layer=plugin.layer,
            protocol=plugin.protocol,
            transport=Transport(plugin.transport),
            plugin=plugin,
        )
        for existing in self._pending[entry.layer]:
            if existing.protocol == entry.protocol and existing.transport == entry.transport:
                logger.warning(
                    f"Plugin {entry.layer.value}/{entry.protocol} registered twice; "
                    f"both will be evaluated"
                )
        self._pending[entry.layer].append(entry)
        logger.debug(f"Registered {entry.layer.value} plugin {entry.protocol}/{entry.transport.value}")
        return self

    def freeze(self) -> "DiscoveryRegistry":
        """Make the registry read-only. Idempotent."""
        if self._entries is None:
            self._entries = {layer: tuple(entries) for layer, entries in self._pending.items()}
            self._pending = {layer: [] for layer in Layer}
        return self

    def entries(self, layer: Layer, transport: Optional[Transport] = None) -> Tuple[PluginEntry, ...]:
        """Entries for layer in registration order, optionally filtered by transport."""
        source = self._entries if self._entries is not None else self._pending
        items = tuple(source[layer])
        if transport is None:
            return items
        return tuple(e for e in items if e.transport == Transport(transport))

    def policy(self, layer: Layer) -> MatchPolicy:
        return self._policies[layer]

    def protocols(self, layer: Layer) -> List[str]:
        return [e.protocol for e in self.entries(layer)]

    def __repr__(self) -> str:
        counts = ", ".join(f"{layer.value}={len(self.entries(layer))}" for layer in Layer)
        state = "frozen" if self.frozen else "open"
        return f"<DiscoveryRegistry {counts} {state}>"


# ---------------------------------------------------------------------------
# Default wiring
# ---------------------------------------------------------------------------

def build_collaborators(config: ScanConfig) -> Dict[str, Optional[VulnerabilityProbe]]:
    """Corroboration probes keyed by the application plugin that uses them."""
    if not config.corroborate:
        return {"etcd": None, "kubelet": None}

    if config.etcdctl_path:
        etcd_probe: VulnerabilityProbe = EtcdctlProbe(binary=config.etcdctl_path,
                                                      timeout=config.read_timeout * 5)
    else:
        etcd_probe = EtcdAnonymousReadProbe(timeout=config.read_timeout)

    return {
        "etcd": etcd_probe,
        "kubelet": KubeletAnonymousAccessProbe(ports=config.kubelet_ports,
                                               timeout=config.read_timeout),
    }


def default_registry(config: Optional[ScanConfig] = None) -> DiscoveryRegistry:
    """Registry with every built-in plugin, frozen and ready for scanning."""
    config = config or ScanConfig()
    registry = DiscoveryRegistry(
        session_policy=MatchPolicy(config.session_policy),
        presentation_policy=MatchPolicy(config.presentation_policy),
        application_policy=MatchPolicy(config.application_policy),
    )

    for plugin_cls in ALL_SESSION_PLUGINS.values():
        registry.register(plugin_cls(config))

    for plugin_cls in ALL_PRESENTATION_PLUGINS.values():
        registry.register(plugin_cls(config))

    probes = build_collaborators(config)
    for name, plugin_cls in ALL_APPLICATION_PLUGINS.items():
        if name in probes:
            registry.register(plugin_cls(config, probe=probes[name]))
        else:
            registry.register(plugin_cls(config))

    return registry.freeze()
