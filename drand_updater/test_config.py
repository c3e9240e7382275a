"""
Tests for environment configuration loading.
"""
import pytest

from drand_updater.config import REDACTED, Config
from drand_updater.errors import ConfigError

SIGNER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
SENDER_KEY = "59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"


@pytest.fixture
def environ():
    return {
        "CHAIN_HASH": "52db9ba70e0cc0f6eaf7803dd07447a1f5477735fd3f661792ba94600c84e971",
        "DRAND_URLS": "https://api.drand.sh/, https://drand.cloudflare.com",
        "RPC": "http://localhost:8545",
        "DRAND_ORACLE_ADDRESS": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
        "CHAIN_ID": "31337",
        "SIGNER_PRIVATE_KEY": SIGNER_KEY,
        "SENDER_PRIVATE_KEY": SENDER_KEY,
        "SET_RANDOMNESS_GAS_LIMIT": "500000",
        "GENESIS_ROUND": "100",
        "HTTP_PORT": "8080",
        "METRICS_PORT": "9090",
    }


def test_loads_required_values(environ):
    config = Config.from_env(environ)

    assert config.drand.urls == ("https://api.drand.sh", "https://drand.cloudflare.com")
    assert config.drand.chain_hash == environ["CHAIN_HASH"]
    assert config.chain.chain_id == 31337
    assert config.chain.set_randomness_gas_limit == 500000
    assert config.chain.genesis_round == 100
    assert config.monitoring.http_port == 8080
    assert config.monitoring.metrics_port == 9090
    assert config.keys.signer_private_key == SIGNER_KEY


def test_defaults(environ):
    config = Config.from_env(environ)

    assert config.chain.confirmation_timeout == 60.0
    assert config.retry.backoff_base_delay == 1.0
    assert config.retry.backoff_max_delay == 60.0
    assert config.retry.startup_retries == 5
    assert config.monitoring.host == "0.0.0.0"
    assert config.log_level == "INFO"


def test_optional_overrides(environ):
    environ.update({
        "CONFIRMATION_TIMEOUT": "30",
        "BACKOFF_BASE_DELAY": "0.5",
        "BACKOFF_MAX_DELAY": "10",
        "STARTUP_RETRIES": "2",
        "LOG_LEVEL": "debug",
        "HTTP_HOST": "127.0.0.1",
    })
    config = Config.from_env(environ)

    assert config.chain.confirmation_timeout == 30.0
    assert config.retry.backoff_base_delay == 0.5
    assert config.retry.backoff_max_delay == 10.0
    assert config.retry.startup_retries == 2
    assert config.log_level == "DEBUG"
    assert config.monitoring.host == "127.0.0.1"


@pytest.mark.parametrize("name", [
    "CHAIN_HASH", "DRAND_URLS", "RPC", "DRAND_ORACLE_ADDRESS", "CHAIN_ID",
    "SIGNER_PRIVATE_KEY", "SENDER_PRIVATE_KEY", "SET_RANDOMNESS_GAS_LIMIT",
    "GENESIS_ROUND", "HTTP_PORT", "METRICS_PORT",
])
def test_missing_required_value(environ, name):
    del environ[name]
    with pytest.raises(ConfigError, match=name):
        Config.from_env(environ)


@pytest.mark.parametrize("name, value", [
    ("CHAIN_ID", "mainnet"),
    ("CHAIN_ID", "0"),
    ("SET_RANDOMNESS_GAS_LIMIT", "0"),
    ("GENESIS_ROUND", "-1"),
    ("HTTP_PORT", "70000"),
    ("CHAIN_HASH", "not-hex"),
    ("SIGNER_PRIVATE_KEY", "0xzz"),
    ("BACKOFF_BASE_DELAY", "-1"),
    ("LOG_LEVEL", "LOUD"),
])
def test_malformed_value(environ, name, value):
    environ[name] = value
    with pytest.raises(ConfigError):
        Config.from_env(environ)


def test_rejects_shared_key(environ):
    environ["SENDER_PRIVATE_KEY"] = SIGNER_KEY.upper().replace("0X", "0x")
    with pytest.raises(ConfigError, match="different"):
        Config.from_env(environ)


def test_rejects_inverted_backoff(environ):
    environ["BACKOFF_BASE_DELAY"] = "10"
    environ["BACKOFF_MAX_DELAY"] = "1"
    with pytest.raises(ConfigError):
        Config.from_env(environ)


def test_to_dict_redacts_keys(environ):
    data = Config.from_env(environ).to_dict()

    assert data["keys"] == {"signer_private_key": REDACTED, "sender_private_key": REDACTED}
    assert SIGNER_KEY not in repr(data)
    assert data["drand"]["urls"] == ["https://api.drand.sh", "https://drand.cloudflare.com"]


def test_repr_hides_keys(environ):
    assert SIGNER_KEY not in repr(Config.from_env(environ))
