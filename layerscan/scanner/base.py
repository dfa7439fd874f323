# layerscan/scanner/base.py
"""
Base classes for the layered discovery pipeline.

Architecture:
    OpenPort flows through:  Session → Presentation → Application

SessionPlugin:       Probes a (host, port) pair. On success hands back a
                     SessionHandle the upper layers talk through.

PresentationPlugin:  Given a SessionHandle, classifies the request/response
                     framing (e.g. HTTP) and extracts its version.

ApplicationPlugin:   Given a SessionHandle and the presentation verdict (or
                     None), identifies the concrete service and its
                     exposure posture.

Every plugin is wrapped by run(), which never raises: connection failures,
malformed replies and unexpected errors all become a not-detected
LayerResult carrying the error text. A failing plugin therefore cannot
abort its siblings, other ports or other targets.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from layerscan.config import ScanConfig
from layerscan.errors import ScanError
from layerscan.targets import ScanTarget

if TYPE_CHECKING:
    from layerscan.scanner.session import SessionHandle

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Transport(str, Enum):
    TCP = "tcp"
    UDP = "udp"


class Layer(str, Enum):
    SESSION = "session"
    PRESENTATION = "presentation"
    APPLICATION = "application"


class MatchPolicy(str, Enum):
    FIRST = "first"     # stop at the first plugin that detects
    ALL = "all"         # run every plugin whose transport matches


class FindingStatus(str, Enum):
    VULNERABLE = "vulnerable"
    NOT_VULNERABLE = "not_vulnerable"
    UNCORROBORATED = "uncorroborated"


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class OpenPort:
    """One (ip, port, transport) the prober confirmed reachable."""
    ip: str
    port: int
    transport: Transport = Transport.TCP

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}/{self.transport.value}"


@dataclass(frozen=True)
class Finding:
    """
    Exposure evidence attached to a verdict.

    Fields:
        check:     stable identifier, e.g. "etcd-anonymous-read"
        status:    vulnerable / not_vulnerable / uncorroborated
        evidence:  what was observed, or why it could not be confirmed
    """
    check: str
    status: FindingStatus
    evidence: str = ""


@dataclass(frozen=True)
class LayerResult:
    """
    Verdict of one plugin invocation. Read-only once built.

    properties is a string -> string mapping; the keys each plugin sets
    are listed in that plugin's module docstring.
    """
    layer: Layer
    protocol: str
    detected: bool
    version: Optional[str] = None
    properties: Dict[str, str] = field(default_factory=dict)
    findings: Tuple[Finding, ...] = ()
    error: Optional[str] = None

    @classmethod
    def miss(cls, layer: Layer, protocol: str, error: Optional[str] = None, **properties: str):
        return cls(layer=layer, protocol=protocol, detected=False,
                   properties=dict(properties), error=error)

    @property
    def label(self) -> str:
        if self.version:
            return f"{self.protocol}/{self.version}"
        return self.protocol


@dataclass(frozen=True)
class SessionLayerResult(LayerResult):
    """Session verdict. session is only set when detected is True."""
    session: Optional["SessionHandle"] = field(default=None, compare=False, repr=False)


@dataclass
class PortReport:
    """
    Aggregated pipeline result for one open port.

    applications holds only the verdicts that detected something (empty
    means "unknown service"); attempts holds every application verdict,
    misses and errors included.
    """
    open_port: OpenPort
    session: Optional[SessionLayerResult] = None
    presentation: Optional[LayerResult] = None
    applications: List[LayerResult] = field(default_factory=list)
    attempts: List[LayerResult] = field(default_factory=list)
    duration_seconds: float = field(default=0.0, compare=False)

    @property
    def skipped(self) -> bool:
        """True when no session plugin detected, so nothing above ran."""
        return self.session is None or not self.session.detected

    @property
    def findings(self) -> List[Finding]:
        return [f for app in self.applications for f in app.findings]


@dataclass
class TargetReport:
    """Everything learned about one target."""
    target: ScanTarget
    open_ports: List[OpenPort] = field(default_factory=list)
    port_reports: List[PortReport] = field(default_factory=list)
    probes_attempted: int = 0
    error: Optional[str] = None
    duration_seconds: float = field(default=0.0, compare=False)

    def ports_for(self, transport: Transport) -> List[int]:
        return [p.port for p in self.open_ports if p.transport == transport]

    @property
    def skipped(self) -> List[OpenPort]:
        return [r.open_port for r in self.port_reports if r.skipped]


# ---------------------------------------------------------------------------
# Plugin base classes
# ---------------------------------------------------------------------------

def _guarded(layer: Layer, protocol: str, where: str, fn: Callable[[], LayerResult],
             miss: Callable[..., LayerResult]):
    """Run fn, converting any failure into a not-detected result."""
    start = time.monotonic()
    try:
        result = fn()
    except (ScanError, OSError) as e:
        logger.debug(f"{layer.value} plugin '{protocol}' not detected on {where}: {e}")
        return miss(layer, protocol, error=f"{type(e).__name__}: {e}")
    except Exception as e:
        logger.exception(f"{layer.value} plugin '{protocol}' failed on {where}")
        return miss(layer, protocol, error=f"{type(e).__name__}: {e}")

    if result is None:
        return miss(layer, protocol)

    elapsed = round(time.monotonic() - start, 3)
    if result.detected:
        logger.info(f"{layer.value} '{result.label}' detected on {where} ({elapsed}s)")
    else:
        logger.debug(f"{layer.value} '{protocol}' not detected on {where} ({elapsed}s)")
    return result


class _BasePlugin(ABC):
    """Shared plugin plumbing: identity, transport requirement, config."""

    #: Protocol identifier reported in results, e.g. "tls", "http", "redis".
    protocol: str = ""
    #: Transport the plugin needs the open port to be on.
    transport: Transport = Transport.TCP
    layer: Layer

    def __init__(self, config: Optional[ScanConfig] = None):
        self.config = config or ScanConfig()

    def result(self, detected: bool, version: Optional[str] = None,
               properties: Optional[Dict[str, str]] = None,
               findings: Optional[List[Finding]] = None) -> LayerResult:
        return LayerResult(
            layer=self.layer,
            protocol=self.protocol,
            detected=detected,
            version=version,
            properties=dict(properties or {}),
            findings=tuple(findings or ()),
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.protocol}/{self.transport.value}>"


class SessionPlugin(_BasePlugin):
    """
    Abstract base for session-layer discovery.

    To add one:
        1. Subclass SessionPlugin, set protocol (and transport if not tcp)
        2. Implement discover(host, port) -> SessionLayerResult
        3. Register it in layerscan/scanner/sessions/__init__.py
    """

    layer = Layer.SESSION

    def run(self, host: str, port: int) -> SessionLayerResult:
        """
        Execute discover() with error handling.

        DO NOT OVERRIDE THIS METHOD. Override discover() instead.
        """
        return _guarded(self.layer, self.protocol, f"{host}:{port}",
                        lambda: self.discover(host, port), SessionLayerResult.miss)

    @abstractmethod
    def discover(self, host: str, port: int) -> SessionLayerResult:
        ...

    def detected(self, session: "SessionHandle",
                 properties: Optional[Dict[str, str]] = None) -> SessionLayerResult:
        return SessionLayerResult(
            layer=self.layer,
            protocol=self.protocol,
            detected=True,
            properties=dict(properties or {}),
            session=session,
        )


class PresentationPlugin(_BasePlugin):
    """
    Abstract base for presentation-layer discovery.

    discover() receives the pipeline's SessionHandle. It must (re)connect
    the handle itself; the orchestrator closes it when the run ends.
    """

    layer = Layer.PRESENTATION

    def run(self, session: "SessionHandle") -> LayerResult:
        """DO NOT OVERRIDE THIS METHOD. Override discover() instead."""
        return _guarded(self.layer, self.protocol, str(session),
                        lambda: self.discover(session), LayerResult.miss)

    @abstractmethod
    def discover(self, session: "SessionHandle") -> LayerResult:
        ...


class ApplicationPlugin(_BasePlugin):
    """
    Abstract base for application-layer discovery.

    discover() receives the SessionHandle and the presentation verdict,
    or None when no presentation protocol was detected.
    """

    layer = Layer.APPLICATION

    def run(self, session: "SessionHandle",
            presentation: Optional[LayerResult] = None) -> LayerResult:
        """DO NOT OVERRIDE THIS METHOD. Override discover() instead."""
        return _guarded(self.layer, self.protocol, str(session),
                        lambda: self.discover(session, presentation), LayerResult.miss)

    @abstractmethod
    def discover(self, session: "SessionHandle",
                 presentation: Optional[LayerResult]) -> LayerResult:
        ...
