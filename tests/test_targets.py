# tests/test_targets.py

import socket

import pytest

from layerscan.errors import ResolutionError, UsageError
from layerscan.targets import PortSet, ScanTarget, expand_targets, parse_ports


def test_single_address():
    assert expand_targets("192.168.1.10") == [ScanTarget("192.168.1.10")]


def test_inclusive_range():
    targets = expand_targets("10.0.0.254-10.0.1.1")
    assert [t.ip for t in targets] == ["10.0.0.254", "10.0.0.255", "10.0.1.0", "10.0.1.1"]
    assert all(t.host is None for t in targets)


@pytest.mark.parametrize("raw", [
    "10.0.0.5-10.0.0.1",
    "10.0.0.1-nonsense",
    "::1",
    "fe80::1-fe80::5",
    "",
])
def test_bad_targets_are_usage_errors(raw):
    with pytest.raises(UsageError):
        expand_targets(raw)


def test_range_larger_than_limit_is_rejected():
    with pytest.raises(UsageError):
        expand_targets("10.0.0.0-10.0.3.255", max_targets=256)


def test_hostname_resolves_to_first_ipv4(monkeypatch):
    def fake_getaddrinfo(host, port, family, kind):
        assert family == socket.AF_INET
        return [
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("203.0.113.7", 0)),
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("203.0.113.8", 0)),
        ]

    monkeypatch.setattr(socket, "getaddrinfo", fake_getaddrinfo)
    [target] = expand_targets("scanme.example.org")
    assert target == ScanTarget("203.0.113.7", "scanme.example.org")
    assert target.label == "scanme.example.org"


def test_unresolvable_hostname(monkeypatch):
    def fail(*args):
        raise socket.gaierror(-2, "Name or service not known")

    monkeypatch.setattr(socket, "getaddrinfo", fail)
    with pytest.raises(ResolutionError):
        expand_targets("no-such-host.invalid")


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------

def test_no_port_arguments_means_full_range():
    ports = parse_ports([])
    assert len(ports) == 65535
    assert ports.ports[0] == 1
    assert ports.ports[-1] == 65535
    assert ports == PortSet.full()


def test_mixed_port_forms_sorted_and_deduplicated():
    ports = parse_ports(["443", "80,22", "8000-8002", "80"])
    assert list(ports) == [22, 80, 443, 8000, 8001, 8002]


@pytest.mark.parametrize("arg", ["0", "65536", "http", "90-80", "1-70000"])
def test_invalid_ports(arg):
    with pytest.raises(UsageError):
        parse_ports([arg])
