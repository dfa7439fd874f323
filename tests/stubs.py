# tests/stubs.py
"""
Loopback stub servers for the test suite.

Every stub binds 127.0.0.1:0, reads one chunk from each connection,
answers with a canned reply and closes. The reply may be bytes or a
callable taking the received bytes.
"""

from __future__ import annotations

import datetime
import socket
import socketserver
import ssl
import struct
import threading
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

Reply = Union[bytes, Callable[[bytes], bytes]]

LOOPBACK = "127.0.0.1"


class _CannedReplyHandler(socketserver.BaseRequestHandler):

    def handle(self):
        conn = self.request
        conn.settimeout(2.0)
        try:
            if isinstance(conn, ssl.SSLSocket):
                conn.do_handshake()
            data = conn.recv(65536)
        except OSError:
            return
        self.server.received.append(data)
        reply = self.server.reply(data) if callable(self.server.reply) else self.server.reply
        try:
            conn.sendall(reply)
        except OSError:
            pass


class StubTCPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, reply: Reply):
        self.reply = reply
        self.received = []
        super().__init__((LOOPBACK, 0), _CannedReplyHandler)

    @property
    def port(self) -> int:
        return self.server_address[1]


class StubTLSServer(StubTCPServer):
    """Same as StubTCPServer, with the handshake done in the handler thread."""

    def __init__(self, reply: Reply, context: ssl.SSLContext):
        self.context = context
        super().__init__(reply)

    def get_request(self):
        sock, addr = self.socket.accept()
        return self.context.wrap_socket(sock, server_side=True,
                                        do_handshake_on_connect=False), addr


class _UDPEchoHandler(socketserver.BaseRequestHandler):

    def handle(self):
        data, sock = self.request
        sock.sendto(b"pong" + data, self.client_address)


class StubUDPServer(socketserver.ThreadingMixIn, socketserver.UDPServer):
    daemon_threads = True

    def __init__(self):
        super().__init__((LOOPBACK, 0), _UDPEchoHandler)

    @property
    def port(self) -> int:
        return self.server_address[1]


def serve(server: socketserver.BaseServer) -> threading.Thread:
    thread = threading.Thread(target=server.serve_forever, kwargs={"poll_interval": 0.05},
                              daemon=True)
    thread.start()
    return thread


def unused_port(kind: int = socket.SOCK_STREAM) -> int:
    """A loopback port nothing is listening on (bound then released)."""
    with socket.socket(socket.AF_INET, kind) as sock:
        sock.bind((LOOPBACK, 0))
        return sock.getsockname()[1]


# ---------------------------------------------------------------------------
# TLS material
# ---------------------------------------------------------------------------

def write_self_signed_cert(directory: Path) -> Tuple[Path, Path]:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName("localhost")]), critical=False)
        .sign(key, hashes.SHA256())
    )
    cert_path = directory / "stub.crt"
    key_path = directory / "stub.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ))
    return cert_path, key_path


def server_tls_context(cert_path: Path, key_path: Path) -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(str(cert_path), str(key_path))
    return ctx


# ---------------------------------------------------------------------------
# Canned replies
# ---------------------------------------------------------------------------

def http_reply(status: str = "200 OK", body: bytes = b"",
               headers: Optional[Dict[str, str]] = None, version: str = "1.1") -> bytes:
    lines = [f"HTTP/{version} {status}"]
    for name, value in (headers or {}).items():
        lines.append(f"{name}: {value}")
    lines.append(f"Content-Length: {len(body)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body


def redis_info_reply(fields: Dict[str, str]) -> bytes:
    payload = "# Server\r\n" + "".join(f"{k}:{v}\r\n" for k, v in fields.items())
    data = payload.encode()
    return b"$" + str(len(data)).encode() + b"\r\n" + data + b"\r\n"


def pg_message(kind: bytes, payload: bytes) -> bytes:
    return kind + struct.pack("!i", len(payload) + 4) + payload


def pg_auth_request(code: int, extra: bytes = b"") -> bytes:
    return pg_message(b"R", struct.pack("!i", code) + extra)


def pg_parameter_status(name: str, value: str) -> bytes:
    return pg_message(b"S", name.encode() + b"\x00" + value.encode() + b"\x00")


def pg_error(severity: str, code: str, message: str) -> bytes:
    fields = f"S{severity}\x00C{code}\x00M{message}\x00\x00".encode()
    return pg_message(b"E", fields)


def pg_ready() -> bytes:
    return pg_message(b"Z", b"I")
