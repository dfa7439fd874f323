# layerscan/scanner/applications/redis_app.py
"""
Redis (in-memory store) discovery.

Probe:    send INFO as a RESP array over the session handle
Detected: the reply, parsed as colon-delimited `key:value` lines, carries
          a redis_version field

A `-NOAUTH` / `-ERR ... auth` reply is not a detection (no version can be
read) but is reported as not detected with auth_required=true so the
operator can still see it.

Version: redis_version.

Properties (whichever INFO returned):
    redis_mode, os, role, tcp_port, uptime_in_days, connected_clients,
    used_memory_human

Findings:
    redis-unauthenticated-info:  INFO answered without AUTH
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from layerscan.scanner.base import (
    ApplicationPlugin,
    Finding,
    FindingStatus,
    LayerResult,
    Transport,
)
from layerscan.scanner.session import SessionHandle

logger = logging.getLogger(__name__)

INFO_COMMAND = b"*1\r\n$4\r\nINFO\r\n"

REPORTED_FIELDS = (
    "redis_mode",
    "os",
    "role",
    "tcp_port",
    "uptime_in_days",
    "connected_clients",
    "used_memory_human",
)


def info_reply_complete(buf: bytes) -> bool:
    """True once a whole RESP reply to INFO is buffered."""
    if buf[:1] in (b"-", b"+"):
        return b"\r\n" in buf
    if buf[:1] == b"$":
        header_end = buf.find(b"\r\n")
        if header_end < 0:
            return False
        try:
            size = int(buf[1:header_end])
        except ValueError:
            return True
        if size < 0:
            return True
        return len(buf) >= header_end + 2 + size + 2
    # Not RESP framed; read until the peer closes or goes quiet
    return False


def parse_info(data: bytes) -> Dict[str, str]:
    """Parse INFO output into a flat mapping, skipping section headers."""
    if data.startswith(b"$"):
        _, _, data = data.partition(b"\r\n")
    info: Dict[str, str] = {}
    for line in data.decode("utf-8", errors="replace").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition(":")
        if sep and key.strip():
            info[key.strip()] = value.strip()
    return info


class RedisDiscovery(ApplicationPlugin):

    protocol = "redis"
    transport = Transport.TCP

    def discover(self, session: SessionHandle,
                 presentation: Optional[LayerResult]) -> LayerResult:
        session.connect()
        session.write(INFO_COMMAND)
        raw = session.read_response(self.config.max_response_bytes, complete=info_reply_complete)

        if raw.startswith(b"-"):
            message = raw[1:].split(b"\r\n", 1)[0].decode("utf-8", errors="replace")
            if "auth" in message.lower():
                return LayerResult.miss(self.layer, self.protocol, error=message,
                                        auth_required="true")
            return LayerResult.miss(self.layer, self.protocol, error=message)

        info = parse_info(raw)
        version = info.get("redis_version")
        if not version:
            return self.result(False)

        properties = {k: info[k] for k in REPORTED_FIELDS if info.get(k)}
        finding = Finding(
            "redis-unauthenticated-info",
            FindingStatus.VULNERABLE,
            f"Redis (v{version}) on {session.host}:{session.port} answered INFO "
            f"without authentication",
        )
        return self.result(True, version=version, properties=properties, findings=[finding])
