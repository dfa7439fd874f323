# layerscan/scanner/sessions/tcp_session.py
"""
Plain TCP session discovery.

Detected whenever a TCP connect succeeds. This is the fallback session
layer: register it after anything that needs a handshake (TLS), since
under first-match it would otherwise win every time.

Properties: none.
"""

from __future__ import annotations

import logging

from layerscan.scanner.base import SessionLayerResult, SessionPlugin, Transport
from layerscan.scanner.session import PlainSessionHandle

logger = logging.getLogger(__name__)


class TCPSessionDiscovery(SessionPlugin):

    protocol = "tcp"
    transport = Transport.TCP

    def discover(self, host: str, port: int) -> SessionLayerResult:
        session = PlainSessionHandle(
            host, port,
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.read_timeout,
        )
        # Raises SessionConnectError if the port went away since probing
        session.connect()
        session.close()
        return self.detected(session)
