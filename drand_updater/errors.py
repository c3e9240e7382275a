"""
Error taxonomy for the updater.

Only ConfigError and SigningError are fatal. Everything else is raised per
round, caught by the updater loop, metered and retried.
"""


class UpdaterError(Exception):
    """Base class for all updater errors."""


class ConfigError(UpdaterError):
    """Missing or malformed configuration, or invalid key material."""


class SigningError(UpdaterError):
    """The signer could not build or sign a digest."""


class NetworkError(UpdaterError):
    """A beacon endpoint or the RPC endpoint is unreachable or misbehaving."""


class RoundNotFoundError(NetworkError):
    """The requested beacon round has not been published yet."""

    def __init__(self, number: int):
        super().__init__(f"round {number} not found on any beacon endpoint")
        self.number = number


class ChainError(UpdaterError):
    """The chain rejected a transaction or call."""


class RevertedError(ChainError):
    """Transaction mined but reverted."""

    def __init__(self, message: str, tx_hash: str = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class InsufficientFundsError(ChainError):
    """Sender balance cannot cover gas for the transaction."""


class InvalidNonceError(ChainError):
    """Tracked nonce is out of sync with the chain."""


class KnownTransactionError(ChainError):
    """The node already holds this exact transaction in its pool."""


class ConfirmationTimeoutError(UpdaterError):
    """No receipt within the confirmation bound; the outcome is unknown."""

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"transaction {tx_hash} not confirmed within {timeout}s")
        self.tx_hash = tx_hash
        self.timeout = timeout


_NONCE_MARKERS = (
    "nonce too low",
    "nonce too high",
    "invalid nonce",
    "replacement transaction underpriced",
)
_KNOWN_MARKERS = (
    "already known",
    "known transaction",
    "already imported",
)
_FUNDS_MARKERS = (
    "insufficient funds",
)
_REVERT_MARKERS = (
    "execution reverted",
    "revert",
)


def _error_message(err) -> str:
    # web3 < 7 raises ValueError({'code': ..., 'message': ...})
    if err.args and isinstance(err.args[0], dict):
        return str(err.args[0].get("message", err.args[0]))
    return str(err)


def classify_rpc_error(err: Exception) -> ChainError:
    """Map a JSON-RPC rejection to the matching ChainError subclass."""
    message = _error_message(err)
    lowered = message.lower()
    if any(marker in lowered for marker in _KNOWN_MARKERS):
        return KnownTransactionError(message)
    if any(marker in lowered for marker in _NONCE_MARKERS):
        return InvalidNonceError(message)
    if any(marker in lowered for marker in _FUNDS_MARKERS):
        return InsufficientFundsError(message)
    if any(marker in lowered for marker in _REVERT_MARKERS):
        return RevertedError(message)
    return ChainError(message)
