"""
drand HTTP API client with endpoint failover.
"""
import asyncio
import logging
import time
from typing import AsyncIterator, Optional, Sequence

import requests

from drand_updater.core import NetworkInfo, Round
from drand_updater.errors import ConfigError, NetworkError, RoundNotFoundError

logger = logging.getLogger(__name__)

# Rounds are usually published a moment after their scheduled time
PUBLICATION_DELAY = 0.5
# Cap on the watch sleep so a stalled clock or huge period cannot hang the loop
MAX_WATCH_SLEEP = 60.0


class _NotFound(Exception):
    pass


class DrandHTTPSource:
    """
    Reads rounds from a list of drand HTTP endpoints, all serving the same
    chain. Endpoints are tried in order until one answers correctly.
    """

    def __init__(self, urls: Sequence[str], chain_hash: str, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        if not urls:
            raise ConfigError("At least one drand URL is required")
        self.urls = [u.rstrip('/') for u in urls]
        self.chain_hash = chain_hash.lower().removeprefix('0x')
        self.timeout = timeout
        self.session = session or requests.Session()
        self._info: Optional[NetworkInfo] = None

    def _get_json(self, url: str) -> dict:
        response = self.session.get(url, timeout=self.timeout)
        if response.status_code == 404:
            raise _NotFound(url)
        response.raise_for_status()
        return response.json()

    def _fetch(self, path: str, parse):
        """GET `path` from each endpoint in turn. Returns the first valid parse."""
        errors = []
        not_found = 0
        for base in self.urls:
            url = f"{base}/{self.chain_hash}/{path}"
            try:
                return parse(self._get_json(url))
            except _NotFound:
                not_found += 1
                errors.append(f"{base}: not found")
            except (requests.RequestException, ValueError, KeyError, TypeError,
                    AttributeError) as e:
                # Malformed payloads count as a misbehaving endpoint
                logger.debug(f"drand endpoint {base} failed for {path}: {e}")
                errors.append(f"{base}: {e}")
        if not_found == len(self.urls):
            raise _NotFound(path)
        raise NetworkError(f"All drand endpoints failed for {path}: {'; '.join(errors)}")

    def _parse_round(self, data: dict) -> Round:
        beacon_round = Round.from_dict(data)
        if not beacon_round.verify_randomness():
            raise ValueError(f"randomness of round {beacon_round.number} does not match its signature")
        return beacon_round

    def get_info(self) -> NetworkInfo:
        """Fetches the network parameters and checks they belong to our chain."""
        try:
            info = self._fetch('info', NetworkInfo.from_dict)
        except _NotFound:
            raise ConfigError(f"Chain {self.chain_hash} is not served by any drand endpoint") from None
        if info.chain_hash_hex != self.chain_hash:
            raise ConfigError(
                f"drand endpoints serve chain {info.chain_hash_hex}, expected {self.chain_hash}"
            )
        self._info = info
        return info

    def get_round(self, number: int) -> Round:
        try:
            beacon_round = self._fetch(f"public/{number}", self._parse_round)
        except _NotFound:
            raise RoundNotFoundError(number) from None
        if beacon_round.number != number:
            raise NetworkError(f"Asked for round {number}, got {beacon_round.number}")
        return beacon_round

    def get_latest(self) -> Round:
        try:
            return self._fetch("public/latest", self._parse_round)
        except _NotFound:
            raise NetworkError("No drand endpoint serves the latest round") from None

    def _seconds_until_next_round(self, now: float) -> float:
        info = self._info
        next_time = info.time_of_round(info.round_at(now) + 1) + PUBLICATION_DELAY
        return min(max(0.0, next_time - now), MAX_WATCH_SLEEP)

    async def watch(self) -> AsyncIterator[Round]:
        """
        Yields each new latest round as the network produces it. Raises
        NetworkError if the endpoints become unreachable; callers restart it.
        """
        if self._info is None:
            await asyncio.to_thread(self.get_info)
        last_number = None
        while True:
            await asyncio.sleep(self._seconds_until_next_round(time.time()))
            beacon_round = await asyncio.to_thread(self.get_latest)
            if last_number is None or beacon_round.number > last_number:
                last_number = beacon_round.number
                yield beacon_round

    def close(self):
        self.session.close()
