# layerscan/scanner/presentations/http_presentation.py
"""
HTTP presentation-layer discovery.

Sends `GET / HTTP/1.1` over the session handle, reads a bounded reply and
matches the status-line grammar `HTTP/<d>.<d> <ddd>[ <reason>]`. Any reply
that does not start with a status line is "not detected"; the pipeline
then continues to application discovery on the raw handle.

Version: the HTTP version token from the status line, e.g. "1.1".

Properties:
    status:  numeric status code as a string
    reason:  reason phrase (may be empty)
    server:  Server header, only when present
"""

from __future__ import annotations

import logging
from typing import Dict

from layerscan.errors import ProtocolMismatchError
from layerscan.scanner.base import LayerResult, PresentationPlugin, Transport
from layerscan.scanner.http_wire import http_exchange
from layerscan.scanner.session import SessionHandle

logger = logging.getLogger(__name__)


class HTTPDiscovery(PresentationPlugin):

    protocol = "http"
    transport = Transport.TCP

    def discover(self, session: SessionHandle) -> LayerResult:
        try:
            response = http_exchange(session, "GET", "/", self.config.max_response_bytes)
        except ProtocolMismatchError as e:
            return LayerResult.miss(self.layer, self.protocol, error=str(e))

        properties: Dict[str, str] = {
            "status": str(response.status),
            "reason": response.reason,
        }
        server = response.header("server")
        if server:
            properties["server"] = server

        return self.result(True, version=response.version, properties=properties)
