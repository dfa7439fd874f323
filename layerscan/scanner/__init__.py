# layerscan/scanner/__init__.py
"""
layerscan detection engine.

Usage:
    from layerscan.scanner import Scanner

    scanner = Scanner(config)
    reports = scanner.scan(targets, ports)

Architecture:
    Scanner
    ├── PortProber (bounded-concurrency TCP/UDP probing)
    └── DiscoveryOrchestrator (one pipeline run per open port)
        ├── Session layer         : TLSSessionDiscovery, TCPSessionDiscovery
        ├── Presentation layer    : HTTPDiscovery
        └── Application layer     : etcd, kube-apiserver, kubelet, postgresql, redis
"""

from layerscan.scanner.orchestrator import DiscoveryOrchestrator, Scanner
from layerscan.scanner.prober import PortProber
from layerscan.scanner.registry import DiscoveryRegistry, default_registry

__all__ = [
    "DiscoveryOrchestrator", "Scanner", "PortProber",
    "DiscoveryRegistry", "default_registry",
]
