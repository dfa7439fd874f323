# layerscan/scanner/http_wire.py
"""
Minimal HTTP/1.x over a SessionHandle.

Presentation and application plugins talk HTTP through the pipeline's
session handle rather than through an HTTP client library, so the same
code works over plain TCP and TLS and the handle stays the only
connection the run owns. This module only does what those probes need:
build a request, read a bounded reply, parse the status line, headers
and body.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Optional

from layerscan.errors import ProtocolMismatchError
from layerscan.scanner.session import SessionHandle

logger = logging.getLogger(__name__)

USER_AGENT = "layerscan/0.1"

# HTTP/<major>.<minor> <3-digit status>[ <reason>]
STATUS_LINE_RE = re.compile(rb"^HTTP/(\d+\.\d+) (\d{3})(?: ([^\r\n]*))?\r?\n")

HEADER_END = b"\r\n\r\n"


@dataclass
class HTTPResponse:
    version: str
    status: int
    reason: str
    headers: Dict[str, str] = field(default_factory=dict)  # lower-cased names
    body: bytes = b""

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def build_request(
    method: str,
    path: str,
    host: str,
    headers: Optional[Dict[str, str]] = None,
    body: bytes = b"",
) -> bytes:
    lines = [
        f"{method} {path} HTTP/1.1",
        f"Host: {host}",
        f"User-Agent: {USER_AGENT}",
        "Accept: */*",
        "Connection: close",
    ]
    for name, value in (headers or {}).items():
        lines.append(f"{name}: {value}")
    if body:
        lines.append(f"Content-Length: {len(body)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body


def response_complete(buf: bytes) -> bool:
    """True once headers plus the announced body are in buf."""
    head_end = buf.find(HEADER_END)
    if head_end < 0:
        return False
    head = buf[:head_end].decode("latin-1", errors="replace").lower()
    body = buf[head_end + len(HEADER_END):]

    status = STATUS_LINE_RE.match(buf)
    if status and (status.group(2) in (b"204", b"304") or status.group(2).startswith(b"1")):
        return True

    length = re.search(r"^content-length:\s*(\d+)\s*$", head, re.MULTILINE)
    if length:
        return len(body) >= int(length.group(1))
    if re.search(r"^transfer-encoding:.*chunked", head, re.MULTILINE):
        return body.endswith(b"0\r\n\r\n")
    # No framing: read until the server closes
    return False


def parse_response(data: bytes) -> HTTPResponse:
    """
    Parse a raw HTTP/1.x response.

    Raises ProtocolMismatchError if data does not start with a status line.
    """
    match = STATUS_LINE_RE.match(data)
    if not match:
        raise ProtocolMismatchError(f"not an HTTP status line: {data[:40]!r}")

    version = match.group(1).decode("ascii")
    status = int(match.group(2))
    reason = (match.group(3) or b"").decode("latin-1", errors="replace").strip()

    rest = data[match.end():]
    head_end = rest.find(b"\r\n\r\n")
    if rest.startswith(b"\r\n"):
        raw_headers, body = b"", rest[2:]
    elif head_end >= 0:
        raw_headers, body = rest[:head_end], rest[head_end + 4:]
    else:
        # Truncated by the read bound: keep what headers we have
        raw_headers, body = rest, b""

    headers: Dict[str, str] = {}
    for line in raw_headers.decode("latin-1", errors="replace").split("\r\n"):
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            continue
        key = name.strip().lower()
        if key in headers:
            headers[key] = f"{headers[key]}, {value.strip()}"
        else:
            headers[key] = value.strip()

    if "chunked" in headers.get("transfer-encoding", "").lower():
        body = _dechunk(body)

    return HTTPResponse(version=version, status=status, reason=reason, headers=headers, body=body)


def http_exchange(
    session: SessionHandle,
    method: str,
    path: str,
    limit: int,
    headers: Optional[Dict[str, str]] = None,
    body: bytes = b"",
) -> HTTPResponse:
    """Open a fresh connection on session, send one request, parse the reply."""
    session.connect()
    session.write(build_request(method, path, session.host, headers=headers, body=body))
    raw = session.read_response(limit, complete=response_complete)
    return parse_response(raw)


def _dechunk(body: bytes) -> bytes:
    out = b""
    pos = 0
    while pos < len(body):
        line_end = body.find(b"\r\n", pos)
        if line_end < 0:
            break
        size_field = body[pos:line_end].split(b";", 1)[0].strip()
        try:
            size = int(size_field, 16)
        except ValueError:
            # Not really chunked; hand back what we got
            return body
        if size == 0:
            break
        start = line_end + 2
        out += body[start:start + size]
        pos = start + size + 2
    return out
