# layerscan/targets.py
"""
Target and port-set handling.

Turns the raw CLI target string into concrete IPv4 ScanTargets and the
port arguments into a PortSet. IPv4 only: IPv6 literals are rejected and
hostnames resolve to their first IPv4 address.

Accepted target forms:
    192.168.1.10                 single address
    192.168.1.10-192.168.1.20    inclusive range, numeric increment
    scanme.example.org           hostname, resolved with getaddrinfo

Accepted port forms (any number of args):
    80   80,443   8000-8100   22 80,443 9000-9010
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from layerscan.errors import ResolutionError, UsageError

logger = logging.getLogger(__name__)

MIN_PORT = 1
MAX_PORT = 65535


@dataclass(frozen=True)
class ScanTarget:
    """One resolved IPv4 address, plus the hostname it came from if any."""
    ip: str
    host: Optional[str] = None

    @property
    def label(self) -> str:
        return self.host or self.ip


@dataclass(frozen=True)
class PortSet:
    """Ports to probe, ascending and de-duplicated."""
    ports: Tuple[int, ...]

    @classmethod
    def full(cls) -> "PortSet":
        return cls(tuple(range(MIN_PORT, MAX_PORT + 1)))

    @classmethod
    def of(cls, ports: Iterable[int]) -> "PortSet":
        unique = sorted(set(ports))
        for port in unique:
            if not MIN_PORT <= port <= MAX_PORT:
                raise UsageError(f"Invalid port number: {port}")
        return cls(tuple(unique))

    def __iter__(self):
        return iter(self.ports)

    def __len__(self) -> int:
        return len(self.ports)


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------

def expand_targets(raw: str, max_targets: int = 65536) -> List[ScanTarget]:
    """
    Expand the raw target string into an ordered list of ScanTargets.

    Raises UsageError for malformed input or IPv6, ResolutionError when a
    hostname has no IPv4 address.
    """
    value = (raw or "").strip()
    if not value:
        raise UsageError("Missing target")

    if "-" in value and _looks_like_range(value):
        return _expand_range(value, max_targets)

    address = _parse_ip(value)
    if address is not None:
        if address.version != 4:
            raise UsageError(f"IPv6 address not supported: {value}")
        return [ScanTarget(ip=str(address))]

    return [ScanTarget(ip=resolve_ipv4(value), host=value)]


def resolve_ipv4(hostname: str) -> str:
    """Return the first IPv4 address for hostname."""
    try:
        infos = socket.getaddrinfo(hostname, None, socket.AF_INET, socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as e:
        logger.warning(f"DNS resolution failed for {hostname}: {e}")
        raise ResolutionError(f"Failed to resolve hostname: {hostname}") from e

    for *_rest, sockaddr in infos:
        return sockaddr[0]
    raise ResolutionError(f"No IPv4 address for hostname: {hostname}")


def _looks_like_range(value: str) -> bool:
    start, _, end = value.partition("-")
    return _parse_ip(start.strip()) is not None or _parse_ip(end.strip()) is not None


def _expand_range(value: str, max_targets: int) -> List[ScanTarget]:
    start_raw, _, end_raw = value.partition("-")
    start = _parse_ip(start_raw.strip())
    end = _parse_ip(end_raw.strip())
    if start is None or end is None:
        raise UsageError(f"Invalid IP address range: {value}")
    if start.version != 4 or end.version != 4:
        raise UsageError(f"IPv6 address not supported: {value}")
    if int(start) > int(end):
        raise UsageError(f"Range start is after range end: {value}")

    count = int(end) - int(start) + 1
    if count > max_targets:
        raise UsageError(f"Range {value} expands to {count} targets, limit is {max_targets}")

    return [
        ScanTarget(ip=str(ipaddress.IPv4Address(n)))
        for n in range(int(start), int(end) + 1)
    ]


def _parse_ip(value: str):
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------

def parse_ports(args: Optional[Iterable[str]]) -> PortSet:
    """Parse port arguments. No arguments means the full 1-65535 range."""
    ports: List[int] = []
    for arg in args or []:
        for chunk in str(arg).split(","):
            chunk = chunk.strip()
            if not chunk:
                continue
            if "-" in chunk:
                lo, _, hi = chunk.partition("-")
                first, last = _parse_port(lo, chunk), _parse_port(hi, chunk)
                if first > last:
                    raise UsageError(f"Invalid port range: {chunk}")
                ports.extend(range(first, last + 1))
            else:
                ports.append(_parse_port(chunk, chunk))

    if not ports:
        return PortSet.full()
    return PortSet.of(ports)


def _parse_port(value: str, original: str) -> int:
    try:
        port = int(value.strip())
    except ValueError:
        raise UsageError(f"Invalid port number: {original}")
    if not MIN_PORT <= port <= MAX_PORT:
        raise UsageError(f"Invalid port number: {original}")
    return port
