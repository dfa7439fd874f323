# layerscan/scanner/sessions/tls_session.py
"""
TLS session discovery.

Detected only when a full TLS handshake completes. Certificates are not
verified: the point is to learn that the stream is encrypted, not to
trust it. A plain-text service answering our ClientHello with garbage,
or closing the connection, is reported as not detected without raising.

Properties (only when detected):
    tls_version:  negotiated protocol, e.g. "TLSv1.3"
    cipher:       negotiated cipher suite name
"""

from __future__ import annotations

import logging

from layerscan.errors import SessionConnectError
from layerscan.scanner.base import SessionLayerResult, SessionPlugin, Transport
from layerscan.scanner.session import TLSSessionHandle

logger = logging.getLogger(__name__)


class TLSSessionDiscovery(SessionPlugin):

    protocol = "tls"
    transport = Transport.TCP

    def discover(self, host: str, port: int) -> SessionLayerResult:
        session = TLSSessionHandle(
            host, port,
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.read_timeout,
        )
        try:
            session.connect()
        except SessionConnectError as e:
            return SessionLayerResult.miss(self.layer, self.protocol, error=str(e))

        properties = session.tls_info()
        session.close()
        return self.detected(session, properties)
