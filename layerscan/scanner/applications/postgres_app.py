# layerscan/scanner/applications/postgres_app.py
"""
PostgreSQL (relational database) discovery.

Probe:
    1. Send a protocol 3.0 StartupMessage over the session handle and read
       the backend's answer. Only a well-formed AuthenticationRequest ('R')
       or ErrorResponse ('E', with severity and SQLSTATE fields) counts as
       PostgreSQL; anything else is a protocol mismatch.
    2. If the server let us in without a password (trust), read
       server_version from the ParameterStatus messages that follow.
    3. If credentials are configured, run `SELECT version()` through
       SQLAlchemy for the full version banner.

Version: server_version, or the number from the version() banner.

Properties:
    auth_method:     trust / password / md5 / sasl / gss / sspi / kerberos / rejected
    sasl_mechanisms: comma-separated, for SASL
    error_code:      SQLSTATE, when the server answered with an error
    version_banner:  full `SELECT version()` text

Findings:
    postgres-trust-auth:  the startup user was admitted without a password

Connection profile:
    Read-only. The startup packet never carries a password and the session
    is terminated right after the handshake.
"""

from __future__ import annotations

import logging
import re
import struct
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from layerscan.errors import ProtocolMismatchError, TransportError
from layerscan.scanner.base import (
    ApplicationPlugin,
    Finding,
    FindingStatus,
    LayerResult,
    Transport,
)
from layerscan.scanner.session import SessionHandle

logger = logging.getLogger(__name__)

PROTOCOL_V3 = 196608  # 3 << 16
BACKEND_TYPES = b"RSKZENA"
MAX_MESSAGE_LENGTH = 1 << 16

AUTH_METHODS = {
    0: "trust",
    2: "kerberos",
    3: "password",
    5: "md5",
    7: "gss",
    9: "sspi",
    10: "sasl",
}

VERSION_RE = re.compile(r"PostgreSQL (\S+)")
TERMINATE = b"X" + struct.pack("!i", 4)


def build_startup(user: str, database: str) -> bytes:
    params = b"user\x00" + user.encode() + b"\x00database\x00" + database.encode() + b"\x00\x00"
    body = struct.pack("!i", PROTOCOL_V3) + params
    return struct.pack("!i", len(body) + 4) + body


def iter_messages(buf: bytes) -> Iterator[Tuple[bytes, bytes]]:
    """
    Yield (type, payload) for each complete backend message in buf.

    Raises ProtocolMismatchError on an unknown type byte or an absurd
    length, which is how non-PostgreSQL replies are rejected.
    """
    pos = 0
    while pos + 5 <= len(buf):
        kind = buf[pos:pos + 1]
        (length,) = struct.unpack("!i", buf[pos + 1:pos + 5])
        if kind not in BACKEND_TYPES or not 4 <= length <= MAX_MESSAGE_LENGTH:
            raise ProtocolMismatchError(f"not a PostgreSQL backend message: {buf[pos:pos + 8]!r}")
        end = pos + 1 + length
        if end > len(buf):
            return
        yield kind, buf[pos + 5:end]
        pos = end


def startup_reply_complete(buf: bytes) -> bool:
    try:
        for kind, payload in iter_messages(buf):
            if kind in (b"E", b"Z"):
                return True
            if kind == b"R" and len(payload) >= 4 and struct.unpack("!i", payload[:4])[0] != 0:
                return True
    except ProtocolMismatchError:
        return True
    return False


def _error_fields(payload: bytes) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for chunk in payload.split(b"\x00"):
        if chunk:
            fields[chr(chunk[0])] = chunk[1:].decode("utf-8", errors="replace")
    return fields


class PostgresDiscovery(ApplicationPlugin):

    protocol = "postgresql"
    transport = Transport.TCP

    def discover(self, session: SessionHandle,
                 presentation: Optional[LayerResult]) -> LayerResult:
        user = self.config.postgres_user or "postgres"
        database = self.config.postgres_database

        session.connect()
        session.write(build_startup(user, database))
        raw = session.read_response(self.config.max_response_bytes, complete=startup_reply_complete)
        messages = list(iter_messages(raw))
        if not messages or messages[0][0] not in (b"R", b"E"):
            raise ProtocolMismatchError(f"unexpected startup reply: {raw[:16]!r}")

        properties: Dict[str, str] = {}
        findings: List[Finding] = []
        version: Optional[str] = None

        kind, payload = messages[0]
        if kind == b"E":
            fields = _error_fields(payload)
            code = fields.get("C", "")
            if "S" not in fields or len(code) != 5:
                raise ProtocolMismatchError("error response without severity/SQLSTATE")
            properties["auth_method"] = "rejected"
            properties["error_code"] = code
        else:
            if len(payload) < 4:
                raise ProtocolMismatchError("truncated authentication request")
            (code,) = struct.unpack("!i", payload[:4])
            if code not in AUTH_METHODS:
                raise ProtocolMismatchError(f"unknown authentication code {code}")
            method = AUTH_METHODS[code]
            properties["auth_method"] = method
            if method == "sasl":
                mechanisms = [m.decode(errors="replace") for m in payload[4:].split(b"\x00") if m]
                properties["sasl_mechanisms"] = ",".join(mechanisms)
            if method == "trust":
                version = self._server_version(messages)
                findings.append(Finding(
                    "postgres-trust-auth",
                    FindingStatus.VULNERABLE,
                    f"PostgreSQL on {session.host}:{session.port} admitted user "
                    f"'{user}' without a password",
                ))
                try:
                    session.write(TERMINATE)
                except TransportError as e:
                    logger.debug(f"Terminate to {session} not sent: {e}")

        session.close()

        if self.config.postgres_user and self.config.postgres_password is not None:
            banner = self._query_version(session)
            if banner:
                properties["version_banner"] = banner
                match = VERSION_RE.search(banner)
                if match:
                    version = version or match.group(1)

        return self.result(True, version=version, properties=properties, findings=findings)

    def _server_version(self, messages: List[Tuple[bytes, bytes]]) -> Optional[str]:
        for kind, payload in messages:
            if kind != b"S":
                continue
            name, _, rest = payload.partition(b"\x00")
            if name == b"server_version":
                return rest.split(b"\x00", 1)[0].decode("utf-8", errors="replace")
        return None

    def _query_version(self, session: SessionHandle) -> Optional[str]:
        """SELECT version() with the configured credentials. None on any failure."""
        url = URL.create(
            "postgresql+psycopg2",
            username=self.config.postgres_user,
            password=self.config.postgres_password,
            host=session.host,
            port=session.port,
            database=self.config.postgres_database,
        )
        engine = None
        try:
            engine = create_engine(
                url,
                poolclass=NullPool,
                connect_args={
                    "connect_timeout": max(1, int(self.config.read_timeout)),
                    "sslmode": "require" if session.kind == "tls" else "prefer",
                },
            )
            with engine.connect() as conn:
                banner = conn.execute(text("SELECT version()")).scalar()
        except (SQLAlchemyError, ImportError) as e:
            logger.debug(f"version() query on {session.host}:{session.port} failed: {e}")
            return None
        finally:
            if engine is not None:
                engine.dispose()
        if banner and "PostgreSQL" in str(banner):
            return str(banner)
        return None
