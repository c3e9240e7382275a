"""
Transaction sender: owns the broadcasting key and the account nonce.
"""
import asyncio
import logging
from typing import Optional

from drand_updater.core import AuthenticatedUpdate, ChainGateway, Confirmation, Receipt, SubmissionAttempt
from drand_updater.crypto import generate_hash, load_account
from drand_updater.errors import (
    ChainError,
    ConfirmationTimeoutError,
    InsufficientFundsError,
    InvalidNonceError,
    KnownTransactionError,
    NetworkError,
    RevertedError,
    SigningError,
)

logger = logging.getLogger(__name__)


class Sender:
    """
    Submits setRandomness transactions one at a time.

    The nonce is tracked locally once read, and forgotten whenever the
    outcome of a broadcast is unknown so the next attempt re-reads it.
    """

    def __init__(self, chain_id: int, private_key: str, gateway: ChainGateway,
                 gas_limit: int, confirmation_timeout: float = 60.0):
        self.chain_id = chain_id
        self.gateway = gateway
        self.gas_limit = gas_limit
        self.confirmation_timeout = confirmation_timeout
        self._account = load_account(private_key)
        self._address = self._account.address
        self._nonce: Optional[int] = None

    @property
    def address(self) -> str:
        return self._address

    @property
    def nonce(self) -> Optional[int]:
        """Next nonce to use, or None if it must be read from the chain."""
        return self._nonce

    def resync_nonce(self):
        self._nonce = None

    def balance(self) -> int:
        return self.gateway.get_balance(self._address)

    def _sign(self, tx: dict) -> bytes:
        try:
            signed = self._account.sign_transaction(tx)
        except Exception as e:
            raise SigningError(f"Failed to sign transaction: {e}") from e
        raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        if raw is None:
            raise SigningError("SignedTransaction missing raw tx")
        return bytes(raw)

    async def submit(self, update: AuthenticatedUpdate,
                     attempt: Optional[SubmissionAttempt] = None) -> Receipt:
        """
        Broadcasts setRandomness for `update` and waits for its receipt.

        Raises RevertedError, ConfirmationTimeoutError, InvalidNonceError,
        InsufficientFundsError, ChainError or NetworkError.
        """
        if self._account is None:
            raise SigningError("Sender has been closed")

        if self._nonce is None:
            self._nonce = await asyncio.to_thread(self.gateway.get_transaction_count, self._address)
            logger.debug(f"Synced nonce for {self._address}: {self._nonce}")
        nonce = self._nonce
        if attempt is not None:
            attempt.nonce = nonce

        gas_price = await asyncio.to_thread(self.gateway.gas_price)
        tx = await asyncio.to_thread(
            self.gateway.build_update_transaction,
            update,
            sender=self._address,
            nonce=nonce,
            gas_limit=self.gas_limit,
            gas_price=gas_price,
            chain_id=self.chain_id,
        )
        raw = self._sign(tx)

        try:
            tx_hash = await asyncio.to_thread(self.gateway.send_raw_transaction, raw)
        except KnownTransactionError:
            # Same bytes already pooled; a transaction hash is keccak256 of its raw bytes
            tx_hash = "0x" + generate_hash(raw).hex()
            logger.info(f"setRandomness for round {update.number} already in the pool: tx={tx_hash}")
        except (InvalidNonceError, InsufficientFundsError, NetworkError):
            # Pool state is unknown or our view of it is wrong; re-read next time
            self._nonce = None
            raise
        self._nonce = nonce + 1
        logger.info(f"Sent setRandomness for round {update.number}: tx={tx_hash} nonce={nonce}")

        try:
            receipt = await asyncio.to_thread(
                self.gateway.await_confirmation, tx_hash, self.confirmation_timeout,
            )
        except (ChainError, NetworkError):
            self._nonce = None
            raise

        if receipt.status is Confirmation.CONFIRMED:
            return receipt
        if receipt.status is Confirmation.REVERTED:
            raise RevertedError(f"setRandomness for round {update.number} reverted", tx_hash=tx_hash)
        self._nonce = None
        raise ConfirmationTimeoutError(tx_hash, self.confirmation_timeout)

    def close(self):
        """Drops the key reference."""
        self._account = None
