# tests/test_config.py
import pytest
from lighthost.config import ProvisioningConfig, expand_pool, parse_region_pools

def test_defaults():
    config = ProvisioningConfig()
    assert config.port_range == range(25500, 26001)
    assert 25575 in config.reserved_ports
    assert set(config.region_pools) == {"us-east-1", "us-west-1", "eu-central-1", "ap-southeast-1"}
    assert len(config.region_pools["us-east-1"]) == 254

def test_from_env():
    config = ProvisioningConfig.from_env({
        "LIGHTHOST_PORT_RANGE_START": "30000",
        "LIGHTHOST_PORT_RANGE_END": "30010",
        "LIGHTHOST_PORT_STRATEGY": "Sequential",
        "LIGHTHOST_PROBE_ENABLED": "false",
        "LIGHTHOST_RESERVED_PORTS": "30001,30002",
        "LIGHTHOST_REGION_POOLS": "eu-central-1=95.211.3.10,95.211.3.11;us-east-1=154.12.1.0/30",
        "LIGHTHOST_PANEL_URL": "https://panel.example.com/",
    })
    assert config.port_range == range(30000, 30011)
    assert config.port_strategy == "sequential"
    assert config.probe_enabled is False
    assert config.reserved_ports == frozenset({30001, 30002})
    assert config.region_pools == {
        "eu-central-1": ("95.211.3.10", "95.211.3.11"),
        "us-east-1": ("154.12.1.1", "154.12.1.2"),
    }
    assert config.panel_base_url == "https://panel.example.com"

@pytest.mark.parametrize("overrides", [
    {"port_range_start": 26001, "port_range_end": 26000},
    {"max_port_attempts": 0},
    {"port_strategy": "round-robin"},
    {"min_memory_mb": 0},
    {"region_pools": {}},
    {"backoff_base": 1.0, "backoff_max": 0.5},
])
def test_invalid_config_is_rejected(overrides):
    with pytest.raises(ValueError):
        ProvisioningConfig(**overrides)

def test_pool_helpers():
    assert expand_pool("10.0.0.7") == ("10.0.0.7",)
    with pytest.raises(ValueError):
        parse_region_pools("us-east-1")
