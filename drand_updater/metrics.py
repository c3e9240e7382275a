"""
Prometheus metrics for the updater.
"""
import functools
import logging
from decimal import Decimal
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge

from drand_updater.core import NetworkInfo

logger = logging.getLogger(__name__)

WEI_PER_ETHER = Decimal(10) ** 18

# Label names
LABEL_CHAIN_HASH = 'chain_hash'
LABEL_CHAIN_ID = 'chain_id'
LABEL_ORACLE_ADDRESS = 'oracle_address'
LABEL_UPDATER_ADDRESS = 'updater_address'

# drand info metric labels
LABEL_PUBLIC_KEY = 'public_key'
LABEL_PERIOD = 'period'
LABEL_SCHEME = 'scheme'
LABEL_GENESIS_TIME = 'genesis_time'
LABEL_GENESIS_SEED = 'genesis_seed'


def wei_to_ether(wei) -> float:
    """
    Converts an integer wei amount (int or decimal string) to ether.

    The division is exact in Decimal; the only rounding is the final
    conversion to the nearest float.
    """
    return float(Decimal(str(wei)) / WEI_PER_ETHER)


def _fire_and_forget(method):
    """Metric writes must never raise into the caller."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            method(self, *args, **kwargs)
        except Exception as e:
            logger.warning(f"Failed to update metric in {method.__name__}: {e}")
    return wrapper


class Metrics:
    def __init__(self, chain_id: int, oracle_address: str, updater_address: str,
                 chain_hash: str, registry: Optional[CollectorRegistry] = None):
        self.chain_id = str(chain_id)
        self.oracle_address = oracle_address
        self.updater_address = updater_address
        self.chain_hash = chain_hash

        # Isolated registry so several instances can coexist (tests, embedding)
        self.registry = registry or CollectorRegistry()

        self.drand_round = Gauge(
            'drand_round_number_network', 'Current round number from the Drand network',
            [LABEL_CHAIN_HASH], registry=self.registry)
        self.oracle_round = Gauge(
            'drand_round_number_oracle', 'Current round number processed by the Oracle',
            [LABEL_CHAIN_ID, LABEL_ORACLE_ADDRESS], registry=self.registry)
        self.set_randomness_success = Counter(
            'drand_set_randomness_success', 'Total number of successful SetRandomness transactions',
            [LABEL_CHAIN_ID, LABEL_ORACLE_ADDRESS], registry=self.registry)
        self.set_randomness_failure = Counter(
            'drand_set_randomness_failure', 'Total number of failed SetRandomness transactions',
            [LABEL_CHAIN_ID, LABEL_ORACLE_ADDRESS], registry=self.registry)
        self.updater_balance = Gauge(
            'drand_updater_balance_eth', 'Current balance of the updater address in ether',
            [LABEL_CHAIN_ID, LABEL_ORACLE_ADDRESS, LABEL_UPDATER_ADDRESS], registry=self.registry)
        self.drand_info = Gauge(
            'drand_network_info', 'Static information about the Drand network configuration',
            [LABEL_CHAIN_HASH, LABEL_PUBLIC_KEY, LABEL_PERIOD, LABEL_SCHEME,
             LABEL_GENESIS_TIME, LABEL_GENESIS_SEED], registry=self.registry)

        # Pre-create the counter series so they export 0 before the first update
        self.set_randomness_success.labels(self.chain_id, self.oracle_address)
        self.set_randomness_failure.labels(self.chain_id, self.oracle_address)

    @_fire_and_forget
    def set_network_info(self, info: NetworkInfo):
        self.drand_info.labels(
            info.chain_hash_hex,
            info.public_key.hex(),
            f"{info.period}s",
            info.scheme,
            str(info.genesis_time),
            info.genesis_seed.hex(),
        ).set(1)

    @_fire_and_forget
    def set_drand_round(self, round_number: int):
        self.drand_round.labels(self.chain_hash).set(round_number)

    @_fire_and_forget
    def set_oracle_round(self, round_number: int):
        self.oracle_round.labels(self.chain_id, self.oracle_address).set(round_number)

    @_fire_and_forget
    def inc_set_randomness_success(self):
        self.set_randomness_success.labels(self.chain_id, self.oracle_address).inc()

    @_fire_and_forget
    def inc_set_randomness_failure(self):
        self.set_randomness_failure.labels(self.chain_id, self.oracle_address).inc()

    @_fire_and_forget
    def set_updater_balance(self, wei):
        self.updater_balance.labels(
            self.chain_id, self.oracle_address, self.updater_address,
        ).set(wei_to_ether(wei))
