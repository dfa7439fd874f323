# tests/test_prober.py

import socket
import threading
import time
from collections import Counter

import pytest

from layerscan.scanner.base import OpenPort, Transport
from layerscan.scanner.prober import PortProber
from layerscan.targets import PortSet
from stubs import LOOPBACK, unused_port


class RecordingProber(PortProber):
    """Never touches the network; records every attempt."""

    def __init__(self, open_ports=(), delay=0.0, **kwargs):
        super().__init__(**kwargs)
        self.open = set(open_ports)
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def probe_port(self, ip, port, transport):
        with self._lock:
            self.calls.append((ip, port, transport))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            return (port, transport) in self.open
        finally:
            with self._lock:
                self.in_flight -= 1


def test_tcp_listener_is_open_and_unused_port_is_closed(stub_server):
    server = stub_server(b"")
    closed = unused_port()
    prober = PortProber(timeout=1.0, concurrency=4)

    summary = prober.probe(LOOPBACK, PortSet.of([server.port, closed]), [Transport.TCP])

    assert summary.open_ports == [OpenPort(LOOPBACK, server.port, Transport.TCP)]
    assert summary.attempted == 2


def test_exactly_one_probe_per_port_and_transport():
    prober = RecordingProber(concurrency=16)
    ports = PortSet.of(range(1, 301))

    summary = prober.probe("10.0.0.1", ports, [Transport.TCP, Transport.UDP])

    counts = Counter((port, transport) for _, port, transport in prober.calls)
    assert len(counts) == 600
    assert set(counts.values()) == {1}
    assert summary.attempted == 600
    assert summary.open_ports == []


def test_open_ports_are_sorted_and_typed():
    prober = RecordingProber(
        open_ports=[(443, Transport.TCP), (53, Transport.UDP), (22, Transport.TCP)],
        concurrency=8,
    )
    summary = prober.probe("10.0.0.1", PortSet.of([22, 53, 80, 443]),
                           [Transport.TCP, Transport.UDP])
    assert summary.open_ports == [
        OpenPort("10.0.0.1", 22, Transport.TCP),
        OpenPort("10.0.0.1", 53, Transport.UDP),
        OpenPort("10.0.0.1", 443, Transport.TCP),
    ]


def test_in_flight_probes_never_exceed_concurrency():
    prober = RecordingProber(delay=0.01, concurrency=5)
    prober.probe("10.0.0.1", PortSet.of(range(1, 101)), [Transport.TCP])
    assert len(prober.calls) == 100
    assert 1 <= prober.max_in_flight <= 5


def test_crashing_probe_counts_as_closed():
    class Exploding(PortProber):
        def probe_port(self, ip, port, transport):
            if port == 2:
                raise RuntimeError("boom")
            return True

    summary = Exploding(concurrency=2).probe("10.0.0.1", PortSet.of([1, 2, 3]), [Transport.TCP])
    assert [p.port for p in summary.open_ports] == [1, 3]
    assert summary.attempted == 3


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        PortProber(concurrency=0)


# ---------------------------------------------------------------------------
# UDP approximation
# ---------------------------------------------------------------------------

def test_udp_responder_is_reported_open(udp_server):
    prober = PortProber(timeout=0.5, concurrency=2)
    summary = prober.probe(LOOPBACK, PortSet.of([udp_server.port]), [Transport.UDP])
    assert summary.open_ports == [OpenPort(LOOPBACK, udp_server.port, Transport.UDP)]


def test_silent_udp_endpoint_is_also_reported_open():
    # Bound but never reads or answers: no reply and no rejection.
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as silent:
        silent.bind((LOOPBACK, 0))
        port = silent.getsockname()[1]
        prober = PortProber(timeout=0.2, concurrency=1)
        summary = prober.probe(LOOPBACK, PortSet.of([port]), [Transport.UDP])
    assert summary.open_ports == [OpenPort(LOOPBACK, port, Transport.UDP)]


def test_rejected_udp_port_is_closed():
    port = unused_port(socket.SOCK_DGRAM)
    prober = PortProber(timeout=0.5, concurrency=1)
    summary = prober.probe(LOOPBACK, PortSet.of([port]), [Transport.UDP])
    assert summary.open_ports == []
