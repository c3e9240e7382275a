"""
web3.py client for the DrandOracle contract.
"""
import logging
from contextlib import contextmanager

import requests
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from drand_updater.core import AuthenticatedUpdate, Confirmation, Receipt
from drand_updater.errors import ConfigError, NetworkError, classify_rpc_error

logger = logging.getLogger(__name__)

RECEIPT_POLL_INTERVAL = 1.0

DRAND_ORACLE_ABI = [
    {
        "type": "function",
        "name": "latestRound",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint64"}],
    },
    {
        "type": "function",
        "name": "setRandomness",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "round", "type": "uint64"},
            {"name": "randomness", "type": "bytes32"},
            {"name": "signature", "type": "bytes"},
        ],
        "outputs": [],
    },
]


@contextmanager
def _rpc_errors(action: str):
    """Translates transport and JSON-RPC failures into updater errors."""
    try:
        yield
    except requests.RequestException as e:
        raise NetworkError(f"RPC unreachable during {action}: {e}") from e
    except (ValueError, Web3Exception) as e:
        raise classify_rpc_error(e) from e


class Web3ChainGateway:
    def __init__(self, rpc_url: str, oracle_address: str, timeout: float = 10.0,
                 w3: Web3 = None):
        if not Web3.is_address(oracle_address):
            raise ConfigError(f"Invalid oracle address: {oracle_address}")
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.oracle_address = Web3.to_checksum_address(oracle_address)
        self.contract = self.w3.eth.contract(address=self.oracle_address, abi=DRAND_ORACLE_ABI)

    # --- reader ---

    def get_latest_round(self) -> int:
        with _rpc_errors("latestRound"):
            return int(self.contract.functions.latestRound().call())

    def get_balance(self, address: str) -> int:
        with _rpc_errors("get_balance"):
            return int(self.w3.eth.get_balance(address))

    def get_transaction_count(self, address: str) -> int:
        """Pending nonce, so transactions still in the pool are counted."""
        with _rpc_errors("get_transaction_count"):
            return int(self.w3.eth.get_transaction_count(address, 'pending'))

    def gas_price(self) -> int:
        with _rpc_errors("gas_price"):
            return int(self.w3.eth.gas_price)

    # --- writer ---

    def build_update_transaction(self, update: AuthenticatedUpdate, *, sender: str,
                                 nonce: int, gas_limit: int, gas_price: int,
                                 chain_id: int) -> dict:
        """Encodes setRandomness with a fixed gas limit; no estimation call is made."""
        with _rpc_errors("build setRandomness"):
            return self.contract.functions.setRandomness(
                update.round.number,
                update.round.randomness,
                update.auth_signature,
            ).build_transaction({
                "from": sender,
                "nonce": nonce,
                "gas": gas_limit,
                "gasPrice": gas_price,
                "chainId": chain_id,
            })

    def send_raw_transaction(self, raw_transaction: bytes) -> str:
        with _rpc_errors("send_raw_transaction"):
            return Web3.to_hex(self.w3.eth.send_raw_transaction(raw_transaction))

    def await_confirmation(self, tx_hash: str, timeout: float) -> Receipt:
        with _rpc_errors("wait_for_transaction_receipt"):
            try:
                receipt = self.w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=timeout, poll_latency=RECEIPT_POLL_INTERVAL,
                )
            except TimeExhausted:
                return Receipt(tx_hash=tx_hash, status=Confirmation.TIMED_OUT)
        status = Confirmation.CONFIRMED if receipt["status"] == 1 else Confirmation.REVERTED
        return Receipt(
            tx_hash=tx_hash,
            status=status,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )
