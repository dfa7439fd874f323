# layerscan/scanner/applications/kube_apiserver_app.py
"""
Kubernetes API server (orchestration control plane) discovery.

Probe:    GET /version over the session handle
Detected: any of these signatures
    server-header    Server header mentions Kubernetes
    version-payload  JSON body with gitVersion plus goVersion/platform
    status-object    JSON Kubernetes Status object (typical 401/403 reply)
    body             JSON body mentioning kubernetes

Version: gitVersion from the version payload, when readable.

Properties:
    signature:      comma-separated list of the signatures that matched
    auth_required:  "true" when /version was refused with 401/403
    distribution:   "minikube" when the payload says so
    platform:       platform from the version payload
    server:         Server header, when present
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from layerscan.scanner.base import ApplicationPlugin, LayerResult, Transport
from layerscan.scanner.http_wire import HTTPResponse, http_exchange
from layerscan.scanner.session import SessionHandle

logger = logging.getLogger(__name__)


class KubeAPIServerDiscovery(ApplicationPlugin):

    protocol = "kube-apiserver"
    transport = Transport.TCP

    def discover(self, session: SessionHandle,
                 presentation: Optional[LayerResult]) -> LayerResult:
        response = http_exchange(session, "GET", "/version", self.config.max_response_bytes)
        signatures = apiserver_signatures(response)
        if not signatures:
            return self.result(False)

        server = response.header("server")
        body = response.text
        payload = _json_object(body)

        version = None
        properties: Dict[str, str] = {
            "signature": ",".join(signatures),
            "auth_required": "true" if response.status in (401, 403) else "false",
        }
        if payload is not None and payload.get("gitVersion"):
            version = str(payload["gitVersion"])
        if payload is not None and payload.get("platform"):
            properties["platform"] = str(payload["platform"])
        if "minikube" in body.lower():
            properties["distribution"] = "minikube"
        if server:
            properties["server"] = server

        return self.result(True, version=version, properties=properties)


def apiserver_signatures(response: HTTPResponse) -> List[str]:
    """Names of the API server signatures a /version reply carries."""
    body = response.text
    payload = _json_object(body)

    signatures: List[str] = []
    if "kubernetes" in response.header("server").lower():
        signatures.append("server-header")
    if payload is not None:
        if "gitVersion" in payload and ("goVersion" in payload or "platform" in payload):
            signatures.append("version-payload")
        if payload.get("kind") == "Status" and "apiVersion" in payload:
            signatures.append("status-object")
        if not signatures and "kubernetes" in body.lower():
            signatures.append("body")
    return signatures


def _json_object(body: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(body)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
