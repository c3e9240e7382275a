"""
Cryptographic functions for authenticating beacon rounds.
"""
from eth_abi.packed import encode_packed
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import is_address, to_checksum_address

from drand_updater.core import MAX_UINT64, RANDOMNESS_LENGTH
from drand_updater.errors import ConfigError, SigningError


def generate_hash(data: bytes) -> bytes:
    """Generates a Keccak-256 hash."""
    from Crypto.Hash import keccak
    return keccak.new(digest_bits=256, data=data).digest()


def load_account(private_key: str):
    """Parses a hex private key (with or without 0x) into a local account."""
    try:
        return Account.from_key(private_key)
    except Exception as e:
        # eth_keys raises its own ValidationError for out-of-range keys
        raise ConfigError(f"Invalid private key: {type(e).__name__}") from None


def randomness_digest(round_number: int, randomness: bytes,
                      contract_address: str, chain_id: int) -> bytes:
    """
    keccak256(abi.encodePacked(uint256 chainId, address oracle, uint64 round, bytes32 randomness))

    Binding the chain id and oracle address stops a signature from being
    replayed against another deployment.
    """
    if not 0 <= round_number <= MAX_UINT64:
        raise SigningError(f"Round number out of uint64 range: {round_number}")
    if len(randomness) != RANDOMNESS_LENGTH:
        raise SigningError(f"Randomness must be {RANDOMNESS_LENGTH} bytes")
    if not is_address(contract_address):
        raise SigningError(f"Invalid contract address: {contract_address}")
    try:
        packed = encode_packed(
            ['uint256', 'address', 'uint64', 'bytes32'],
            [chain_id, to_checksum_address(contract_address), round_number, randomness],
        )
    except Exception as e:
        raise SigningError(f"Failed to encode digest: {e}") from e
    return generate_hash(packed)


def recover_signer(digest: bytes, signature: bytes) -> str:
    """Recovers the checksum address that produced `signature` over `digest`."""
    return Account.recover_message(encode_defunct(primitive=digest), signature=signature)


class Signer:
    """
    Holds the randomness-authentication key. It never pays for gas; the
    Sender's key does that.
    """

    def __init__(self, chain_id: int, contract_address: str, private_key: str):
        if not is_address(contract_address):
            raise ConfigError(f"Invalid oracle address: {contract_address}")
        self.chain_id = chain_id
        self.contract_address = to_checksum_address(contract_address)
        self._account = load_account(private_key)
        self._address = self._account.address

    @property
    def address(self) -> str:
        return self._address

    def digest(self, round_number: int, randomness: bytes) -> bytes:
        return randomness_digest(round_number, randomness, self.contract_address, self.chain_id)

    def sign(self, round_number: int, randomness: bytes) -> bytes:
        """Returns a 65-byte EIP-191 signature (r || s || v) over the round digest."""
        if self._account is None:
            raise SigningError("Signer has been closed")
        digest = self.digest(round_number, randomness)
        try:
            signed = self._account.sign_message(encode_defunct(primitive=digest))
        except Exception as e:
            raise SigningError(f"Failed to sign round {round_number}: {e}") from e
        return bytes(signed.signature)

    def close(self):
        """Drops the key reference."""
        self._account = None
