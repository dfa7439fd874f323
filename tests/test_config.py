# tests/test_config.py

import pytest

from layerscan.config import ScanConfig
from layerscan.errors import UsageError


def test_defaults():
    config = ScanConfig()
    assert config.connect_timeout == 0.1
    assert config.concurrency == 100
    assert (config.session_policy, config.presentation_policy, config.application_policy) == (
        "first", "first", "all",
    )
    assert config.validate() is config


def test_environment_overrides():
    config = ScanConfig.from_env({
        "LAYERSCAN_TIMEOUT_MS": "250",
        "LAYERSCAN_CONCURRENCY": "20",
        "LAYERSCAN_CORROBORATE": "no",
        "LAYERSCAN_KUBELET_PORTS": "10255",
        "LAYERSCAN_APPLICATION_POLICY": "first",
        "LAYERSCAN_POSTGRES_USER": "scanner",
        "LAYERSCAN_READ_TIMEOUT_MS": "",
    })
    assert config.connect_timeout == 0.25
    assert config.read_timeout == 2.0
    assert config.concurrency == 20
    assert config.corroborate is False
    assert config.kubelet_ports == (10255,)
    assert config.application_policy == "first"
    assert config.postgres_user == "scanner"


def test_bad_environment_value():
    with pytest.raises(UsageError):
        ScanConfig.from_env({"LAYERSCAN_CONCURRENCY": "lots"})


def test_replace_ignores_none():
    config = ScanConfig().replace(concurrency=None, connect_timeout=0.5)
    assert config.concurrency == 100
    assert config.connect_timeout == 0.5


@pytest.mark.parametrize("changes", [
    {"concurrency": 0},
    {"connect_timeout": 0},
    {"connect_timeout": 3.0, "read_timeout": 1.0},
    {"session_policy": "sometimes"},
    {"kubelet_ports": (0,)},
])
def test_validate_rejects(changes):
    with pytest.raises(UsageError):
        ScanConfig(**changes).validate()
