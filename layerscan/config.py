# layerscan/config.py
"""
Runtime configuration.

Defaults live in ScanConfig. Any field can be overridden from the
environment (LAYERSCAN_* variables, see ENV_VARS) and the CLI applies
its flags on top of that.

    config = ScanConfig.from_env()
    config = config.replace(concurrency=50)
    config.validate()
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from layerscan.errors import UsageError

logger = logging.getLogger(__name__)

POLICY_NAMES = ("first", "all")

# field name -> (env var, parser)
ENV_VARS = {
    "connect_timeout": ("LAYERSCAN_TIMEOUT_MS", "ms"),
    "read_timeout": ("LAYERSCAN_READ_TIMEOUT_MS", "ms"),
    "concurrency": ("LAYERSCAN_CONCURRENCY", "int"),
    "discovery_workers": ("LAYERSCAN_DISCOVERY_WORKERS", "int"),
    "target_workers": ("LAYERSCAN_TARGET_WORKERS", "int"),
    "max_response_bytes": ("LAYERSCAN_MAX_RESPONSE_BYTES", "int"),
    "max_targets": ("LAYERSCAN_MAX_TARGETS", "int"),
    "session_policy": ("LAYERSCAN_SESSION_POLICY", "str"),
    "presentation_policy": ("LAYERSCAN_PRESENTATION_POLICY", "str"),
    "application_policy": ("LAYERSCAN_APPLICATION_POLICY", "str"),
    "corroborate": ("LAYERSCAN_CORROBORATE", "bool"),
    "postgres_user": ("LAYERSCAN_POSTGRES_USER", "str"),
    "postgres_password": ("LAYERSCAN_POSTGRES_PASSWORD", "str"),
    "postgres_database": ("LAYERSCAN_POSTGRES_DATABASE", "str"),
    "kubelet_ports": ("LAYERSCAN_KUBELET_PORTS", "ports"),
    "etcdctl_path": ("LAYERSCAN_ETCDCTL", "str"),
}


@dataclass(frozen=True)
class ScanConfig:
    """
    Tunables for one scan.

    Timeouts are in seconds. connect_timeout bounds every connect the
    prober and the session plugins make; read_timeout bounds reads and
    TLS handshakes while a plugin is talking to the service.
    """
    connect_timeout: float = 0.1
    read_timeout: float = 2.0

    # Admission gate size for the port prober
    concurrency: int = 100
    discovery_workers: int = 16
    target_workers: int = 4

    max_response_bytes: int = 8192
    max_targets: int = 65536

    session_policy: str = "first"
    presentation_policy: str = "first"
    application_policy: str = "all"

    corroborate: bool = True
    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None
    postgres_database: str = "postgres"
    kubelet_ports: Tuple[int, ...] = field(default=(10250, 10255))
    etcdctl_path: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ScanConfig":
        environ = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        for name, (var, kind) in ENV_VARS.items():
            raw = environ.get(var)
            if raw is None or raw.strip() == "":
                continue
            overrides[name] = _parse_env(var, raw.strip(), kind)
        if overrides:
            logger.debug(f"Config overrides from environment: {sorted(overrides)}")
        return cls(**overrides)

    def replace(self, **changes: Any) -> "ScanConfig":
        """Copy with the given fields changed. None values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return dataclasses.replace(self, **changes)

    def validate(self) -> "ScanConfig":
        if self.connect_timeout <= 0 or self.read_timeout <= 0:
            raise UsageError("Timeouts must be positive")
        if self.read_timeout < self.connect_timeout:
            raise UsageError("Read timeout must not be shorter than the connect timeout")
        for name in ("concurrency", "discovery_workers", "target_workers",
                     "max_response_bytes", "max_targets"):
            if getattr(self, name) < 1:
                raise UsageError(f"{name} must be at least 1")
        for name in ("session_policy", "presentation_policy", "application_policy"):
            if getattr(self, name) not in POLICY_NAMES:
                raise UsageError(
                    f"{name} must be one of {', '.join(POLICY_NAMES)}, got {getattr(self, name)!r}"
                )
        for port in self.kubelet_ports:
            if not 1 <= port <= 65535:
                raise UsageError(f"Invalid kubelet port: {port}")
        return self


def _parse_env(var: str, raw: str, kind: str) -> Any:
    try:
        if kind == "ms":
            return int(raw) / 1000.0
        if kind == "int":
            return int(raw)
        if kind == "bool":
            return raw.lower() in ("1", "true", "yes", "on")
        if kind == "ports":
            return tuple(int(p) for p in raw.split(",") if p.strip())
    except ValueError:
        raise UsageError(f"Invalid value for {var}: {raw!r}")
    return raw
