# layerscan/scanner/applications/etcd_app.py
"""
etcd (coordination service) discovery.

Probe:    GET /version over the session handle
Detected: the reply mentions "etcdserver", the key etcd puts in its
          version payload: {"etcdserver":"3.5.9","etcdcluster":"3.5.0"}

Version: the etcdserver value.

Properties:
    cluster_version:  the etcdcluster value, when present

Findings:
    etcd-anonymous-read:  whether the keyspace can be read without
                          credentials, confirmed by the configured
                          corroboration probe
"""

from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional

from layerscan.config import ScanConfig
from layerscan.scanner.base import ApplicationPlugin, Finding, LayerResult, Transport
from layerscan.scanner.collaborators import ServiceContext, VulnerabilityProbe, corroborate
from layerscan.scanner.http_wire import http_exchange
from layerscan.scanner.session import SessionHandle

logger = logging.getLogger(__name__)

SIGNATURE = "etcdserver"
CHECK = "etcd-anonymous-read"


class EtcdDiscovery(ApplicationPlugin):

    protocol = "etcd"
    transport = Transport.TCP

    def __init__(self, config: Optional[ScanConfig] = None,
                 probe: Optional[VulnerabilityProbe] = None):
        super().__init__(config)
        self.probe = probe

    def discover(self, session: SessionHandle,
                 presentation: Optional[LayerResult]) -> LayerResult:
        response = http_exchange(session, "GET", "/version", self.config.max_response_bytes)
        if SIGNATURE not in response.text:
            return self.result(False)

        version = None
        properties: Dict[str, str] = {}
        try:
            payload = json.loads(response.text)
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            version = payload.get("etcdserver") or None
            if payload.get("etcdcluster"):
                properties["cluster_version"] = str(payload["etcdcluster"])

        findings: List[Finding] = []
        if self.config.corroborate:
            ctx = ServiceContext(session.host, session.port, self.protocol,
                                 tls=session.kind == "tls", version=version)
            findings.append(corroborate(self.probe, ctx, CHECK))

        return self.result(True, version=version, properties=properties, findings=findings)
