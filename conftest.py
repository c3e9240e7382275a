"""
Shared fixtures: deterministic stand-ins for the drand network and the
oracle chain, plus a factory wiring a real Signer, Sender and Metrics
around them.
"""
import asyncio
import hashlib

import pytest

from drand_updater.core import Confirmation, NetworkInfo, Receipt, Round
from drand_updater.crypto import Signer
from drand_updater.errors import RoundNotFoundError
from drand_updater.metrics import Metrics
from drand_updater.sender import Sender
from drand_updater.updater import Updater

CHAIN_ID = 31337
ORACLE_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
CHAIN_HASH = "52db9ba70e0cc0f6eaf7803dd07447a1f5477735fd3f661792ba94600c84e971"
SIGNER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
SENDER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
GAS_LIMIT = 500_000

# Broadcast succeeds, receipt never shows up, but the transaction is mined anyway
LANDED_LATE = "landed-late"


def build_round(number: int) -> Round:
    signature = hashlib.sha256(f"round-{number}".encode()).digest() + b'\x00' * 16
    return Round(number=number, randomness=hashlib.sha256(signature).digest(), signature=signature)


NETWORK_INFO = NetworkInfo(
    public_key=bytes.fromhex("83cf0f2896adee7eb8b5f01fcad3912212c437e0073e911fb90022d3e760183c"),
    period=3,
    genesis_time=1692803367,
    genesis_seed=bytes.fromhex("f477d5c89f21a17c863a7f937c6a6d15859414d2be09cd448d4279af331c5d3e"),
    scheme="bls-unchained-g1-rfc9380",
    chain_hash=bytes.fromhex(CHAIN_HASH),
    beacon_id="quicknet",
)


class FakeBeacon:
    def __init__(self, latest: int):
        self.latest = latest
        self.fetched = []
        self.round_errors = {}
        self.info_errors = []
        self.latest_errors = []
        # Each entry is a list of round numbers yielded by one watch() call,
        # or an exception raised by it
        self.watch_sessions = []
        self.watch_calls = 0

    def get_info(self) -> NetworkInfo:
        if self.info_errors:
            raise self.info_errors.pop(0)
        return NETWORK_INFO

    def get_round(self, number: int) -> Round:
        self.fetched.append(number)
        errors = self.round_errors.get(number)
        if errors:
            raise errors.pop(0)
        if number > self.latest:
            raise RoundNotFoundError(number)
        return build_round(number)

    def get_latest(self) -> Round:
        if self.latest_errors:
            raise self.latest_errors.pop(0)
        return build_round(self.latest)

    async def watch(self):
        self.watch_calls += 1
        session = self.watch_sessions.pop(0) if self.watch_sessions else []
        if isinstance(session, Exception):
            raise session
        for number in session:
            self.latest = max(self.latest, number)
            yield build_round(number)
        # Network goes quiet
        await asyncio.Event().wait()


class FakeChain:
    """Oracle chain that only accepts strictly increasing rounds."""

    def __init__(self, latest_round: int, balance: int = 10**18, pending_nonce: int = 0):
        self.latest_round = latest_round
        self.balance = balance
        self.pending_nonce = pending_nonce
        self.outcomes = []
        self.latest_round_errors = []
        self.submitted = []
        self.nonce_reads = 0
        self.latest_reads = 0
        self._building = None
        self._pending = {}

    def get_latest_round(self) -> int:
        self.latest_reads += 1
        if self.latest_round_errors:
            raise self.latest_round_errors.pop(0)
        return self.latest_round

    def get_balance(self, address: str) -> int:
        return self.balance

    def get_transaction_count(self, address: str) -> int:
        self.nonce_reads += 1
        return self.pending_nonce

    def gas_price(self) -> int:
        return 1_000_000_000

    def build_update_transaction(self, update, *, sender, nonce, gas_limit, gas_price, chain_id) -> dict:
        self._building = (update.number, nonce)
        return {
            'to': ORACLE_ADDRESS,
            'data': '0x' + update.round.randomness.hex() + update.auth_signature.hex(),
            'value': 0,
            'gas': gas_limit,
            'gasPrice': gas_price,
            'nonce': nonce,
            'chainId': chain_id,
        }

    def send_raw_transaction(self, raw_transaction: bytes) -> str:
        outcome = self.outcomes.pop(0) if self.outcomes else Confirmation.CONFIRMED
        if isinstance(outcome, Exception):
            raise outcome
        round_number, nonce = self._building
        self.submitted.append((round_number, nonce))
        self.pending_nonce = max(self.pending_nonce, nonce + 1)
        tx_hash = '0x%064x' % len(self.submitted)
        self._pending[tx_hash] = (round_number, outcome)
        return tx_hash

    def await_confirmation(self, tx_hash: str, timeout: float) -> Receipt:
        round_number, outcome = self._pending.pop(tx_hash)
        if outcome == LANDED_LATE:
            self.latest_round = max(self.latest_round, round_number)
            return Receipt(tx_hash=tx_hash, status=Confirmation.TIMED_OUT)
        if outcome is Confirmation.CONFIRMED:
            if round_number <= self.latest_round:
                outcome = Confirmation.REVERTED
            else:
                self.latest_round = round_number
        return Receipt(tx_hash=tx_hash, status=outcome, block_number=len(self.submitted))

    @property
    def submitted_rounds(self):
        return [round_number for round_number, _ in self.submitted]


@pytest.fixture
def make_round():
    return build_round


@pytest.fixture
def network_info():
    return NETWORK_INFO


@pytest.fixture
def signer():
    return Signer(CHAIN_ID, ORACLE_ADDRESS, SIGNER_KEY)


@pytest.fixture
def metrics():
    return Metrics(CHAIN_ID, ORACLE_ADDRESS, "0x70997970C51812dc3A010C7d01b50e0d17dc79C8", CHAIN_HASH)


@pytest.fixture
def make_beacon():
    return FakeBeacon


@pytest.fixture
def make_chain():
    return FakeChain


@pytest.fixture
def make_sender():
    def factory(chain, confirmation_timeout=1.0):
        return Sender(CHAIN_ID, SENDER_KEY, chain, gas_limit=GAS_LIMIT,
                      confirmation_timeout=confirmation_timeout)
    return factory


@pytest.fixture
def make_updater(signer, metrics, make_sender):
    def factory(beacon, chain, genesis_round=0, **kwargs):
        kwargs.setdefault('backoff_base_delay', 0.001)
        kwargs.setdefault('backoff_max_delay', 0.004)
        kwargs.setdefault('startup_retries', 3)
        kwargs.setdefault('startup_retry_delay', 0.001)
        return Updater(
            beacon=beacon,
            chain=chain,
            signer=signer,
            sender=make_sender(chain),
            metrics=metrics,
            genesis_round=genesis_round,
            **kwargs,
        )
    return factory


@pytest.fixture
def sample(metrics):
    """Reads a metric sample with the standard oracle labels."""
    def read(name, **labels):
        if not labels:
            labels = {'chain_id': str(CHAIN_ID), 'oracle_address': ORACLE_ADDRESS}
        return metrics.registry.get_sample_value(name, labels)
    return read


@pytest.fixture
def constants():
    return {
        'chain_id': CHAIN_ID,
        'oracle_address': ORACLE_ADDRESS,
        'chain_hash': CHAIN_HASH,
        'signer_key': SIGNER_KEY,
        'sender_key': SENDER_KEY,
        'gas_limit': GAS_LIMIT,
        'landed_late': LANDED_LATE,
    }
