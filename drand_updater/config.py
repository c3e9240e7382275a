"""
Configuration management for the updater.

All settings come from environment variables. Required variables mirror the
deployment manifests; the rest have defaults.
"""
import os
from dataclasses import dataclass, asdict, field
from typing import Mapping, Optional

from drand_updater.errors import ConfigError

REDACTED = '<redacted>'


@dataclass(frozen=True)
class DrandConfig:
    """Beacon network configuration."""
    chain_hash: str
    urls: tuple
    request_timeout: float = 10.0


@dataclass(frozen=True)
class ChainConfig:
    """Target chain and oracle contract configuration."""
    rpc: str
    oracle_address: str
    chain_id: int
    set_randomness_gas_limit: int
    genesis_round: int
    confirmation_timeout: float = 60.0


@dataclass(frozen=True)
class KeyConfig:
    """The two independent credentials."""
    signer_private_key: str = field(repr=False)
    sender_private_key: str = field(repr=False)


@dataclass(frozen=True)
class RetryConfig:
    """Backoff configuration."""
    backoff_base_delay: float = 1.0
    backoff_max_delay: float = 60.0
    startup_retries: int = 5
    startup_retry_delay: float = 2.0


@dataclass(frozen=True)
class MonitoringConfig:
    """Health and metrics servers."""
    http_port: int
    metrics_port: int
    host: str = "0.0.0.0"
    shutdown_timeout: float = 5.0


@dataclass(frozen=True)
class Config:
    """Main configuration."""
    drand: DrandConfig
    chain: ChainConfig
    keys: KeyConfig
    retry: RetryConfig
    monitoring: MonitoringConfig
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        """Load configuration from environment variables."""
        env = _Env(os.environ if environ is None else environ)

        chain_hash = env.hex_string('CHAIN_HASH')
        urls = tuple(u.strip().rstrip('/') for u in env.required('DRAND_URLS').split(',') if u.strip())
        if not urls:
            raise ConfigError("DRAND_URLS must list at least one URL")

        signer_key = env.hex_string('SIGNER_PRIVATE_KEY')
        sender_key = env.hex_string('SENDER_PRIVATE_KEY')
        if signer_key.lower().removeprefix('0x') == sender_key.lower().removeprefix('0x'):
            raise ConfigError("SIGNER_PRIVATE_KEY and SENDER_PRIVATE_KEY must be different keys")

        retry = RetryConfig(
            backoff_base_delay=env.number('BACKOFF_BASE_DELAY', 1.0),
            backoff_max_delay=env.number('BACKOFF_MAX_DELAY', 60.0),
            startup_retries=env.integer('STARTUP_RETRIES', 5, minimum=1),
            startup_retry_delay=env.number('STARTUP_RETRY_DELAY', 2.0),
        )
        if retry.backoff_max_delay < retry.backoff_base_delay:
            raise ConfigError("BACKOFF_MAX_DELAY must not be smaller than BACKOFF_BASE_DELAY")

        log_level = env.optional('LOG_LEVEL', 'INFO').upper()
        if log_level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ConfigError(f"LOG_LEVEL has unknown level: {log_level}")

        return cls(
            drand=DrandConfig(
                chain_hash=chain_hash.lower().removeprefix('0x'),
                urls=urls,
                request_timeout=env.number('REQUEST_TIMEOUT', 10.0),
            ),
            chain=ChainConfig(
                rpc=env.required('RPC'),
                oracle_address=env.required('DRAND_ORACLE_ADDRESS'),
                chain_id=env.integer('CHAIN_ID', minimum=1),
                set_randomness_gas_limit=env.integer('SET_RANDOMNESS_GAS_LIMIT', minimum=1),
                genesis_round=env.integer('GENESIS_ROUND', minimum=0),
                confirmation_timeout=env.number('CONFIRMATION_TIMEOUT', 60.0),
            ),
            keys=KeyConfig(
                signer_private_key=signer_key,
                sender_private_key=sender_key,
            ),
            retry=retry,
            monitoring=MonitoringConfig(
                http_port=env.port('HTTP_PORT'),
                metrics_port=env.port('METRICS_PORT'),
                host=env.optional('HTTP_HOST', '0.0.0.0'),
                shutdown_timeout=env.number('SHUTDOWN_TIMEOUT', 5.0),
            ),
            log_level=log_level,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary with private keys redacted."""
        data = asdict(self)
        data['keys'] = {name: REDACTED for name in data['keys']}
        data['drand']['urls'] = list(self.drand.urls)
        return data


class _Env:
    """Typed accessors over an environment mapping."""

    def __init__(self, environ: Mapping[str, str]):
        self.environ = environ

    def optional(self, name: str, default: str) -> str:
        value = self.environ.get(name, '').strip()
        return value or default

    def required(self, name: str) -> str:
        value = self.environ.get(name, '').strip()
        if not value:
            raise ConfigError(f"Missing required environment variable {name}")
        return value

    def hex_string(self, name: str) -> str:
        value = self.required(name)
        try:
            bytes.fromhex(value.removeprefix('0x'))
        except ValueError:
            raise ConfigError(f"{name} is not valid hex") from None
        return value

    def integer(self, name: str, default: Optional[int] = None, minimum: Optional[int] = None) -> int:
        raw = self.environ.get(name, '').strip()
        if not raw:
            if default is None:
                raise ConfigError(f"Missing required environment variable {name}")
            return default
        try:
            value = int(raw)
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
        if minimum is not None and value < minimum:
            raise ConfigError(f"{name} must be >= {minimum}, got {value}")
        return value

    def number(self, name: str, default: float) -> float:
        raw = self.environ.get(name, '').strip()
        if not raw:
            return default
        try:
            value = float(raw)
        except ValueError:
            raise ConfigError(f"{name} must be a number, got {raw!r}") from None
        if value < 0:
            raise ConfigError(f"{name} must not be negative")
        return value

    def port(self, name: str) -> int:
        value = self.integer(name, minimum=0)
        if value > 65535:
            raise ConfigError(f"{name} must be a valid port, got {value}")
        return value
