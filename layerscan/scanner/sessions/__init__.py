# layerscan/scanner/sessions/__init__.py
"""
Session-layer discovery plugins.
Each plugin decides whether a (host, port) speaks plain TCP or TLS and,
when it does, hands back a SessionHandle for the layers above.
"""
from layerscan.scanner.sessions.tls_session import TLSSessionDiscovery
from layerscan.scanner.sessions.tcp_session import TCPSessionDiscovery

# Registry of all available session plugins.
# ORDER MATTERS under first-match: TLS must be tried before plain TCP.
ALL_SESSION_PLUGINS = {
    "tls": TLSSessionDiscovery,
    "tcp": TCPSessionDiscovery,
}

__all__ = ["TLSSessionDiscovery", "TCPSessionDiscovery", "ALL_SESSION_PLUGINS"]
