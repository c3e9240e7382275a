"""
Core data structures shared by the updater components.
"""
import enum
import hashlib
import math
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol

MAX_UINT64 = 2**64 - 1
RANDOMNESS_LENGTH = 32


def _unhex(value: Optional[str]) -> bytes:
    if not value:
        return b''
    if value.startswith('0x'):
        value = value[2:]
    return bytes.fromhex(value)


@dataclass(frozen=True, order=True)
class Round:
    """A single drand beacon round. Ordered by round number."""
    number: int
    randomness: bytes
    signature: bytes
    previous_signature: bytes = b''

    def __post_init__(self):
        if not 0 <= self.number <= MAX_UINT64:
            raise ValueError(f"Round number out of uint64 range: {self.number}")
        if len(self.randomness) != RANDOMNESS_LENGTH:
            raise ValueError(
                f"Randomness must be {RANDOMNESS_LENGTH} bytes, got {len(self.randomness)}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> 'Round':
        """Creates a Round from the drand HTTP API JSON representation."""
        return cls(
            number=int(data['round']),
            randomness=_unhex(data['randomness']),
            signature=_unhex(data['signature']),
            previous_signature=_unhex(data.get('previous_signature')),
        )

    def to_dict(self) -> dict:
        data = {
            'round': self.number,
            'randomness': self.randomness.hex(),
            'signature': self.signature.hex(),
        }
        if self.previous_signature:
            data['previous_signature'] = self.previous_signature.hex()
        return data

    def verify_randomness(self) -> bool:
        """drand defines randomness as sha256(signature)."""
        return hashlib.sha256(self.signature).digest() == self.randomness


@dataclass(frozen=True)
class NetworkInfo:
    """Static parameters of a drand network."""
    public_key: bytes
    period: int
    genesis_time: int
    genesis_seed: bytes
    scheme: str
    chain_hash: bytes
    beacon_id: str = 'default'

    @classmethod
    def from_dict(cls, data: dict) -> 'NetworkInfo':
        """Creates a NetworkInfo from the drand /info JSON."""
        metadata = data.get('metadata') or {}
        return cls(
            public_key=_unhex(data['public_key']),
            period=int(data['period']),
            genesis_time=int(data['genesis_time']),
            genesis_seed=_unhex(data.get('groupHash')),
            scheme=data.get('schemeID', 'pedersen-bls-chained'),
            chain_hash=_unhex(data['hash']),
            beacon_id=metadata.get('beaconID', 'default'),
        )

    @property
    def chain_hash_hex(self) -> str:
        return self.chain_hash.hex()

    def round_at(self, timestamp: float) -> int:
        """Round number current at `timestamp`. Round 1 starts at genesis."""
        if timestamp < self.genesis_time:
            return 0
        return math.floor((timestamp - self.genesis_time) / self.period) + 1

    def time_of_round(self, number: int) -> int:
        """Unix time at which `number` is produced."""
        if number <= 0:
            return self.genesis_time
        return self.genesis_time + (number - 1) * self.period


@dataclass(frozen=True)
class AuthenticatedUpdate:
    """A beacon round plus the signer's authentication signature."""
    round: Round
    auth_signature: bytes

    @property
    def number(self) -> int:
        return self.round.number


@dataclass
class SubmissionAttempt:
    """Bookkeeping for the single round currently in flight."""
    round: int
    nonce: Optional[int] = None
    attempt_count: int = 0
    last_error: Optional[Exception] = None


class Confirmation(enum.Enum):
    CONFIRMED = 'confirmed'
    REVERTED = 'reverted'
    TIMED_OUT = 'timed_out'


@dataclass(frozen=True)
class Receipt:
    """Outcome of waiting on a broadcast transaction."""
    tx_hash: str
    status: Confirmation
    block_number: Optional[int] = None
    gas_used: Optional[int] = None


class BeaconSource(Protocol):
    def get_info(self) -> NetworkInfo: ...

    def get_round(self, number: int) -> Round: ...

    def get_latest(self) -> Round: ...

    def watch(self) -> AsyncIterator[Round]: ...


class ChainGateway(Protocol):
    def get_latest_round(self) -> int: ...

    def get_balance(self, address: str) -> int: ...

    def get_transaction_count(self, address: str) -> int: ...

    def gas_price(self) -> int: ...

    def build_update_transaction(self, update: AuthenticatedUpdate, *, sender: str,
                                 nonce: int, gas_limit: int, gas_price: int,
                                 chain_id: int) -> dict: ...

    def send_raw_transaction(self, raw_transaction: bytes) -> str: ...

    def await_confirmation(self, tx_hash: str, timeout: float) -> Receipt: ...
