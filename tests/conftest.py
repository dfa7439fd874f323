# tests/conftest.py

import pytest

from layerscan.config import ScanConfig
from stubs import (
    LOOPBACK,
    StubTCPServer,
    StubTLSServer,
    StubUDPServer,
    serve,
    server_tls_context,
    write_self_signed_cert,
)


@pytest.fixture
def config():
    """Loopback-friendly timeouts, no outbound corroboration."""
    return ScanConfig(connect_timeout=1.0, read_timeout=2.0, corroborate=False)


@pytest.fixture(scope="session")
def tls_context(tmp_path_factory):
    cert_path, key_path = write_self_signed_cert(tmp_path_factory.mktemp("tls"))
    return server_tls_context(cert_path, key_path)


@pytest.fixture
def stub_server(tls_context):
    """
    Factory: stub_server(reply, tls=False) -> StubTCPServer.

    Servers are shut down at teardown.
    """
    servers = []

    def _start(reply, tls=False):
        server = StubTLSServer(reply, tls_context) if tls else StubTCPServer(reply)
        serve(server)
        servers.append(server)
        return server

    yield _start

    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def udp_server():
    server = StubUDPServer()
    serve(server)
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def loopback():
    return LOOPBACK
