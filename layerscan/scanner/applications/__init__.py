# layerscan/scanner/applications/__init__.py
"""
Application-layer discovery plugins.
Each plugin identifies one concrete service and its exposure posture.
Under the default run-all policy every plugin runs on every TCP port,
so each must reject foreign replies cheaply.
"""
from layerscan.scanner.applications.etcd_app import EtcdDiscovery
from layerscan.scanner.applications.kube_apiserver_app import KubeAPIServerDiscovery
from layerscan.scanner.applications.kubelet_app import KubeletDiscovery
from layerscan.scanner.applications.postgres_app import PostgresDiscovery
from layerscan.scanner.applications.redis_app import RedisDiscovery

# Registry of all available application plugins, in evaluation order.
ALL_APPLICATION_PLUGINS = {
    "etcd": EtcdDiscovery,
    "kube-apiserver": KubeAPIServerDiscovery,
    "kubelet": KubeletDiscovery,
    "postgresql": PostgresDiscovery,
    "redis": RedisDiscovery,
}

__all__ = [
    "EtcdDiscovery", "KubeAPIServerDiscovery", "KubeletDiscovery",
    "PostgresDiscovery", "RedisDiscovery", "ALL_APPLICATION_PLUGINS",
]
