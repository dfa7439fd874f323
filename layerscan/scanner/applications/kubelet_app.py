# layerscan/scanner/applications/kubelet_app.py
"""
Kubelet (node agent API) discovery.

Probe:    GET /healthz over the session handle, then GET /version
Detected: /healthz answers HTTP 200 with body "ok" and /version does not
          carry a Kubernetes API server signature (the API server
          answers /healthz the same way)

Findings:
    kubelet-anonymous-access:  whether pods / node info can be listed
                               without credentials on the kubelet companion
                               ports (10250 TLS, 10255 read-only), as
                               reported by the corroboration probe
"""

from __future__ import annotations

import logging
from typing import List, Optional

from layerscan.config import ScanConfig
from layerscan.errors import ProtocolMismatchError, SessionConnectError, TransportError
from layerscan.scanner.applications.kube_apiserver_app import apiserver_signatures
from layerscan.scanner.base import ApplicationPlugin, Finding, LayerResult, Transport
from layerscan.scanner.collaborators import ServiceContext, VulnerabilityProbe, corroborate
from layerscan.scanner.http_wire import http_exchange
from layerscan.scanner.session import SessionHandle

logger = logging.getLogger(__name__)

CHECK = "kubelet-anonymous-access"


class KubeletDiscovery(ApplicationPlugin):

    protocol = "kubelet"
    transport = Transport.TCP

    def __init__(self, config: Optional[ScanConfig] = None,
                 probe: Optional[VulnerabilityProbe] = None):
        super().__init__(config)
        self.probe = probe

    def discover(self, session: SessionHandle,
                 presentation: Optional[LayerResult]) -> LayerResult:
        response = http_exchange(session, "GET", "/healthz", self.config.max_response_bytes)
        if response.status != 200 or response.text.strip() != "ok":
            return self.result(False)

        if self._is_apiserver(session):
            logger.debug(f"{session.host}:{session.port} /healthz is ok but /version is an API server's")
            return self.result(False)

        findings: List[Finding] = []
        if self.config.corroborate:
            ctx = ServiceContext(session.host, session.port, self.protocol,
                                 tls=session.kind == "tls")
            findings.append(corroborate(self.probe, ctx, CHECK))

        return self.result(True, properties={"health": "ok"}, findings=findings)

    def _is_apiserver(self, session: SessionHandle) -> bool:
        try:
            response = http_exchange(session, "GET", "/version", self.config.max_response_bytes)
        except (SessionConnectError, TransportError, ProtocolMismatchError) as e:
            logger.debug(f"/version on {session.host}:{session.port} unreadable: {e}")
            return False
        return bool(apiserver_signatures(response))
