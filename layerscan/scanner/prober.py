# layerscan/scanner/prober.py
"""
Bounded-concurrency port prober.

For one IPv4 address, a PortSet and a set of transports, attempts exactly
one probe per (port, transport) pair and returns the pairs that are open.

    TCP: connect within the timeout = open. Refused, reset or timeout = closed.

    UDP: there is no handshake, so there is no reliable open/closed signal.
         The prober connects a datagram socket, sends an empty datagram and
         waits up to the timeout. An explicit rejection (ICMP port
         unreachable, surfaced as ConnectionRefusedError) = closed. A reply,
         or no error at all within the timeout = open. Silent filtered ports
         are therefore reported open; this is a known limitation.

Concurrency:
    At most `concurrency` probes are in flight at once. A BoundedSemaphore
    is acquired before each submission and released when the probe
    finishes, so a full 65535-port scan never queues more than K sockets'
    worth of work and cannot exhaust file descriptors or ephemeral ports.
    probe() returns only after every submitted probe has completed.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Sequence

from layerscan.scanner.base import OpenPort, Transport
from layerscan.targets import PortSet

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 0.1
DEFAULT_CONCURRENCY = 100


@dataclass
class ProbeSummary:
    ip: str
    open_ports: List[OpenPort] = field(default_factory=list)
    attempted: int = 0
    duration_seconds: float = 0.0


class PortProber:
    """
    Port prober with an admission gate.

    Args:
        timeout:      per-attempt connect/response timeout, seconds
        concurrency:  maximum number of probes in flight
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, concurrency: int = DEFAULT_CONCURRENCY):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.timeout = timeout
        self.concurrency = concurrency

    def probe(
        self,
        ip: str,
        ports: PortSet,
        transports: Sequence[Transport] = (Transport.TCP, Transport.UDP),
    ) -> ProbeSummary:
        """Probe every (port, transport) pair and return the open ones, sorted."""
        start = time.monotonic()
        gate = threading.BoundedSemaphore(self.concurrency)
        futures: List[Future] = []
        pairs = [(port, Transport(t)) for t in transports for port in ports]

        logger.debug(
            f"Probing {ip}: {len(ports)} port(s) x {len(transports)} transport(s), "
            f"concurrency={self.concurrency}, timeout={self.timeout}s"
        )

        with ThreadPoolExecutor(max_workers=self.concurrency,
                                thread_name_prefix="probe") as executor:
            for port, transport in pairs:
                gate.acquire()
                try:
                    future = executor.submit(self._attempt, ip, port, transport)
                except RuntimeError:
                    gate.release()
                    raise
                future.add_done_callback(lambda _f: gate.release())
                futures.append(future)

        # Leaving the executor block waited for every probe; fan in.
        open_ports = sorted(f.result() for f in futures if f.result() is not None)

        summary = ProbeSummary(
            ip=ip,
            open_ports=open_ports,
            attempted=len(futures),
            duration_seconds=round(time.monotonic() - start, 2),
        )
        logger.info(
            f"Probe of {ip} done: {len(open_ports)} open of {summary.attempted} "
            f"attempted in {summary.duration_seconds}s"
        )
        return summary

    def _attempt(self, ip: str, port: int, transport: Transport):
        try:
            is_open = self.probe_port(ip, port, transport)
        except Exception:
            logger.exception(f"Probe of {ip}:{port}/{transport.value} crashed")
            return None
        if not is_open:
            return None
        logger.info(f"{ip}:{port}/{transport.value} is open")
        return OpenPort(ip=ip, port=port, transport=transport)

    def probe_port(self, ip: str, port: int, transport: Transport) -> bool:
        """One probe attempt. Override in tests to observe or fake probing."""
        if transport == Transport.TCP:
            return self._probe_tcp(ip, port)
        return self._probe_udp(ip, port)

    def _probe_tcp(self, ip: str, port: int) -> bool:
        try:
            conn = socket.create_connection((ip, port), timeout=self.timeout)
        except OSError:
            return False
        conn.close()
        return True

    def _probe_udp(self, ip: str, port: int) -> bool:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.settimeout(self.timeout)
            sock.connect((ip, port))
            sock.send(b"")
            sock.recv(1024)
        except socket.timeout:
            return True
        except OSError:
            # ECONNREFUSED from ICMP unreachable, or connect failed outright
            return False
        finally:
            sock.close()
        return True

