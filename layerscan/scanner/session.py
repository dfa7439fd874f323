# layerscan/scanner/session.py
"""
Session handles: one uniform connect/read/write/close surface over a plain
TCP socket or a TLS-wrapped one, so presentation and application plugins
never branch on the transport kind.

Rules every handle follows:
    - at most one underlying connection at a time; connect() on an open
      handle drops the old connection first
    - close() is always safe: before connect, after a failed connect,
      or twice in a row
    - every socket operation carries a timeout; failures surface as
      SessionConnectError (connect/handshake) or TransportError (read/write)
"""

from __future__ import annotations

import contextlib
import ipaddress
import logging
import socket
import ssl
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from layerscan.errors import SessionConnectError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_READ_SIZE = 4096


def insecure_tls_context() -> ssl.SSLContext:
    """
    Client context that accepts any certificate.

    The goal here is protocol identification, not certificate validation.
    """
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


class SessionHandle(ABC):
    """
    Base class for session handles.

    Subclasses only implement _open(); everything else is shared.
    """

    kind: str = ""

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = 0.1,
        read_timeout: float = 2.0,
    ):
        self._host = host
        self._port = port
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self._sock: Optional[socket.socket] = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self) -> None:
        """Open a fresh connection, closing any previous one."""
        self.close()
        self._sock = self._open()

    @abstractmethod
    def _open(self) -> socket.socket:
        """Create and return the connected socket. Raise SessionConnectError on failure."""
        ...

    def write(self, data: bytes) -> int:
        sock = self._require_socket()
        try:
            sock.sendall(data)
        except (socket.timeout, OSError) as e:
            raise TransportError(f"write to {self} failed: {type(e).__name__}: {e}") from e
        return len(data)

    def read(self, size: int = DEFAULT_READ_SIZE) -> bytes:
        """Read up to size bytes. Returns b"" when the peer closed the connection."""
        sock = self._require_socket()
        try:
            return sock.recv(size)
        except socket.timeout as e:
            raise TransportError(f"read from {self} timed out") from e
        except OSError as e:
            raise TransportError(f"read from {self} failed: {type(e).__name__}: {e}") from e

    def read_response(
        self,
        limit: int,
        complete: Optional[Callable[[bytes], bool]] = None,
    ) -> bytes:
        """
        Read into a buffer bounded by limit bytes.

        Stops at EOF, at the limit, or as soon as complete(buffer) says
        the reply is whole. A timeout after some bytes arrived ends the
        read normally; a timeout with nothing received is a TransportError.
        """
        buf = b""
        while len(buf) < limit:
            try:
                chunk = self.read(min(DEFAULT_READ_SIZE, limit - len(buf)))
            except TransportError:
                if buf:
                    break
                raise
            if not chunk:
                break
            buf += chunk
            if complete is not None and complete(buf):
                break
        return buf[:limit]

    def close(self) -> None:
        sock, self._sock = self._sock, None
        if sock is None:
            return
        with contextlib.suppress(OSError):
            sock.close()

    def _require_socket(self) -> socket.socket:
        if self._sock is None:
            raise TransportError(f"{self} is not connected")
        return self._sock

    def _dial(self) -> socket.socket:
        try:
            sock = socket.create_connection((self._host, self._port), timeout=self.connect_timeout)
        except (socket.timeout, OSError) as e:
            raise SessionConnectError(
                f"connect to {self._host}:{self._port} failed: {type(e).__name__}: {e}"
            ) from e
        sock.settimeout(self.read_timeout)
        return sock

    def __enter__(self) -> "SessionHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __str__(self) -> str:
        return f"{self.kind}://{self._host}:{self._port}"

    def __repr__(self) -> str:
        state = "open" if self.connected else "closed"
        return f"<{type(self).__name__} {self._host}:{self._port} {state}>"


class PlainSessionHandle(SessionHandle):
    """Raw TCP byte stream."""

    kind = "tcp"

    def _open(self) -> socket.socket:
        return self._dial()


class TLSSessionHandle(SessionHandle):
    """TLS over TCP, handshake completed inside connect()."""

    kind = "tls"

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = 0.1,
        read_timeout: float = 2.0,
        server_name: Optional[str] = None,
        context: Optional[ssl.SSLContext] = None,
    ):
        super().__init__(host, port, connect_timeout, read_timeout)
        self.server_name = server_name or _sni_name(host)
        self._context = context or insecure_tls_context()

    def _open(self) -> socket.socket:
        raw = self._dial()
        try:
            return self._context.wrap_socket(raw, server_hostname=self.server_name)
        except (ssl.SSLError, socket.timeout, OSError) as e:
            raw.close()
            raise SessionConnectError(
                f"TLS handshake with {self._host}:{self._port} failed: {type(e).__name__}: {e}"
            ) from e

    def tls_info(self) -> Dict[str, str]:
        """Negotiated protocol version and cipher of the live connection."""
        sock = self._sock
        if not isinstance(sock, ssl.SSLSocket):
            return {}
        info: Dict[str, str] = {}
        version = sock.version()
        if version:
            info["tls_version"] = version
        cipher = sock.cipher()
        if cipher:
            info["cipher"] = cipher[0]
        return info


def _sni_name(host: str) -> Optional[str]:
    """SNI must be a hostname, never an IP literal."""
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return host
    return None
