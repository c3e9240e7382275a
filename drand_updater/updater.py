"""
The updater loop: mirrors every drand round into the DrandOracle contract,
in order, one transaction at a time.
"""
import asyncio
import enum
import logging
from typing import Optional

from drand_updater.core import (
    AuthenticatedUpdate,
    BeaconSource,
    ChainGateway,
    NetworkInfo,
    Round,
    SubmissionAttempt,
)
from drand_updater.crypto import Signer
from drand_updater.errors import (
    ChainError,
    ConfigError,
    ConfirmationTimeoutError,
    NetworkError,
    SigningError,
    UpdaterError,
)
from drand_updater.metrics import Metrics
from drand_updater.sender import Sender

logger = logging.getLogger(__name__)


class UpdaterState(enum.Enum):
    INITIALIZING = 'initializing'
    CATCHING_UP = 'catching_up'
    WATCHING = 'watching'
    SUBMITTING = 'submitting'
    BACKOFF = 'backoff'
    TERMINATED = 'terminated'


class Backoff:
    """Capped exponential backoff: base, 2*base, 4*base, ... up to maximum."""

    def __init__(self, base_delay: float = 1.0, max_delay: float = 60.0, factor: float = 2.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.factor = factor
        self.failures = 0

    def next_delay(self) -> float:
        delay = min(self.max_delay, self.base_delay * (self.factor ** self.failures))
        # The exponent stops growing once the cap is reached
        if 0 < delay < self.max_delay:
            self.failures += 1
        return delay

    def reset(self):
        self.failures = 0


class Updater:
    """
    Catches up on every round missing on-chain, then follows the beacon.

    Ordering: round r+1 is never submitted before round r is confirmed or
    observed on-chain. Failures are retried forever with backoff; only
    configuration and signing errors escape.
    """

    def __init__(self,
                 beacon: BeaconSource,
                 chain: ChainGateway,
                 signer: Signer,
                 sender: Sender,
                 metrics: Metrics,
                 genesis_round: int,
                 backoff_base_delay: float = 1.0,
                 backoff_max_delay: float = 60.0,
                 startup_retries: int = 5,
                 startup_retry_delay: float = 2.0):
        self.beacon = beacon
        self.chain = chain
        self.signer = signer
        self.sender = sender
        self.metrics = metrics
        self.genesis_round = genesis_round
        self.backoff_base_delay = backoff_base_delay
        self.backoff_max_delay = backoff_max_delay
        self.startup_retries = startup_retries
        self.startup_retry_delay = startup_retry_delay

        self.state = UpdaterState.INITIALIZING
        self.network_info: Optional[NetworkInfo] = None
        self.oracle_round: Optional[int] = None
        self.next_round: Optional[int] = None
        self.attempt: Optional[SubmissionAttempt] = None

    def _set_state(self, state: UpdaterState, round_number: Optional[int] = None):
        if state is not self.state:
            suffix = f" (round {round_number})" if round_number is not None else ""
            logger.debug(f"Updater state {self.state.value} -> {state.value}{suffix}")
        self.state = state

    def _backoff(self) -> Backoff:
        return Backoff(self.backoff_base_delay, self.backoff_max_delay)

    # ------------------------------------------------------------------ #
    # Initializing
    # ------------------------------------------------------------------ #

    async def _startup_read(self, description: str, func):
        """Startup reads are retried a fixed number of times, then fail the process."""
        for attempt in range(1, self.startup_retries + 1):
            try:
                return await asyncio.to_thread(func)
            except ConfigError:
                raise
            except UpdaterError as e:
                if attempt == self.startup_retries:
                    logger.error(f"Failed to {description} after {attempt} attempts: {e}")
                    raise
                logger.warning(
                    f"Failed to {description} (attempt {attempt}/{self.startup_retries}), "
                    f"retrying in {self.startup_retry_delay}s: {e}"
                )
                await asyncio.sleep(self.startup_retry_delay)

    async def initialize(self):
        self._set_state(UpdaterState.INITIALIZING)
        self.network_info = await self._startup_read("fetch drand network info", self.beacon.get_info)
        logger.info(
            f"drand network {self.network_info.chain_hash_hex}: period={self.network_info.period}s "
            f"scheme={self.network_info.scheme} genesis_time={self.network_info.genesis_time}"
        )
        self.metrics.set_network_info(self.network_info)

        latest = await self._startup_read("read latest oracle round", self.chain.get_latest_round)
        self._observe_oracle_round(latest)
        self.next_round = max(latest + 1, self.genesis_round)
        logger.info(f"Oracle latest round is {latest}, starting from round {self.next_round}")
        await self._refresh_balance()

    # ------------------------------------------------------------------ #
    # CatchingUp / Watching
    # ------------------------------------------------------------------ #

    async def _latest_beacon_round(self) -> Round:
        """Reads the beacon head, backing off until it succeeds."""
        backoff = self._backoff()
        while True:
            try:
                latest = await asyncio.to_thread(self.beacon.get_latest)
            except NetworkError as e:
                delay = backoff.next_delay()
                logger.warning(f"Failed to read latest drand round, retrying in {delay:.1f}s: {e}")
                await asyncio.sleep(delay)
                continue
            self.metrics.set_drand_round(latest.number)
            return latest

    async def _process_through(self, target: int, known: Optional[Round] = None):
        """Processes every round from next_round up to and including `target`."""
        while self.next_round <= target:
            beacon_round = known if known is not None and known.number == self.next_round else None
            await self.process_round(self.next_round, beacon_round)

    async def catch_up(self):
        while True:
            self._set_state(UpdaterState.CATCHING_UP)
            latest = await self._latest_beacon_round()
            if self.next_round > latest.number:
                logger.info(f"Caught up with drand round {latest.number}")
                return
            logger.info(
                f"Catching up rounds {self.next_round}..{latest.number} "
                f"({latest.number - self.next_round + 1} missing)"
            )
            await self._process_through(latest.number, latest)

    async def watch(self):
        backoff = self._backoff()
        while True:
            self._set_state(UpdaterState.WATCHING)
            try:
                async for beacon_round in self.beacon.watch():
                    backoff.reset()
                    self.metrics.set_drand_round(beacon_round.number)
                    if beacon_round.number >= self.next_round:
                        await self._process_through(beacon_round.number, beacon_round)
                        self._set_state(UpdaterState.WATCHING)
                reason = "stream ended"
            except NetworkError as e:
                reason = str(e)
            delay = backoff.next_delay()
            logger.warning(f"drand watch interrupted, restarting in {delay:.1f}s: {reason}")
            await asyncio.sleep(delay)
            await self.catch_up()

    async def run(self):
        """Runs until cancelled. Only configuration and signing errors escape."""
        try:
            await self.initialize()
            await self.catch_up()
            await self.watch()
        finally:
            self._set_state(UpdaterState.TERMINATED)

    # ------------------------------------------------------------------ #
    # Submitting / Backoff
    # ------------------------------------------------------------------ #

    def _observe_oracle_round(self, round_number: int):
        if self.oracle_round is None or round_number > self.oracle_round:
            self.oracle_round = round_number
            self.metrics.set_oracle_round(round_number)

    async def _round_already_set(self, round_number: int) -> bool:
        """Re-reads the oracle. Unreadable counts as not set."""
        try:
            latest = await asyncio.to_thread(self.chain.get_latest_round)
        except UpdaterError as e:
            logger.warning(f"Could not re-read oracle round after failure on {round_number}: {e}")
            return False
        self._observe_oracle_round(latest)
        if latest >= round_number:
            logger.info(f"Round {round_number} already set on-chain (oracle at {latest}), skipping")
            self.next_round = max(self.next_round, latest + 1)
            return True
        return False

    async def _refresh_balance(self):
        try:
            balance = await asyncio.to_thread(self.sender.balance)
        except UpdaterError as e:
            logger.warning(f"Failed to read updater balance: {e}")
            return
        self.metrics.set_updater_balance(balance)

    async def process_round(self, round_number: int, beacon_round: Optional[Round] = None):
        """
        Submits one round, retrying until it is confirmed or found on-chain.
        Advances next_round when done.
        """
        if self.oracle_round is not None and round_number <= self.oracle_round:
            logger.debug(f"Round {round_number} already covered by oracle round {self.oracle_round}")
            self.next_round = max(self.next_round, self.oracle_round + 1)
            return

        attempt = SubmissionAttempt(round=round_number)
        self.attempt = attempt
        backoff = self._backoff()
        try:
            while True:
                self._set_state(UpdaterState.SUBMITTING, round_number)
                attempt.attempt_count += 1

                submitted = False
                try:
                    if beacon_round is None:
                        beacon_round = await asyncio.to_thread(self.beacon.get_round, round_number)
                    update = AuthenticatedUpdate(
                        round=beacon_round,
                        auth_signature=self.signer.sign(beacon_round.number, beacon_round.randomness),
                    )
                    submitted = True
                    receipt = await self.sender.submit(update, attempt)
                except SigningError:
                    raise
                except UpdaterError as e:
                    attempt.last_error = e
                    if submitted:
                        await self._refresh_balance()
                        if isinstance(e, (ChainError, ConfirmationTimeoutError)) and \
                                await self._round_already_set(round_number):
                            return
                        self.metrics.inc_set_randomness_failure()
                    delay = backoff.next_delay()
                    self._set_state(UpdaterState.BACKOFF, round_number)
                    logger.warning(
                        f"Round {round_number} attempt {attempt.attempt_count} failed "
                        f"({type(e).__name__}: {e}), retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    if submitted and await self._round_already_set(round_number):
                        return
                    continue

                logger.info(
                    f"Set randomness for round {round_number} in tx {receipt.tx_hash} "
                    f"(block {receipt.block_number}, attempt {attempt.attempt_count})"
                )
                self._observe_oracle_round(round_number)
                self.next_round = round_number + 1
                self.metrics.inc_set_randomness_success()
                await self._refresh_balance()
                return
        finally:
            self.attempt = None
