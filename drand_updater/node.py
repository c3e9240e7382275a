"""
Main entry point for running the drand oracle updater.
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional, Sequence

from drand_updater.beacon import DrandHTTPSource
from drand_updater.config import Config
from drand_updater.crypto import Signer
from drand_updater.errors import ConfigError
from drand_updater.gateway import Web3ChainGateway
from drand_updater.metrics import Metrics
from drand_updater.monitoring import health_server, metrics_server
from drand_updater.sender import Sender
from drand_updater.updater import Updater

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class UpdaterNode:
    """
    Runs the updater and the HTTP servers as one task group. The first task
    to fail cancels the others and its error is re-raised.
    """

    def __init__(self, updater, servers: Sequence = (), shutdown_timeout: float = 5.0,
                 closeables: Sequence = ()):
        self.updater = updater
        self.servers = list(servers)
        self.shutdown_timeout = shutdown_timeout
        self.closeables = list(closeables)
        self.tasks = []

    async def start(self):
        self.tasks = [asyncio.create_task(self.updater.run(), name="updater")]
        for server in self.servers:
            self.tasks.append(asyncio.create_task(server.run(), name=f"{server.name}-server"))

        try:
            done, _ = await asyncio.wait(self.tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            await self.stop()

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"Task {task.get_name()} failed: {task.exception()!r}")
                raise task.exception()

    async def stop(self):
        """Cancels every task and waits a bounded time for them to finish."""
        pending = [task for task in self.tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=self.shutdown_timeout)
            for task in still_running:
                logger.warning(f"Task {task.get_name()} did not stop within {self.shutdown_timeout}s")
        for closeable in self.closeables:
            closeable.close()


def build_node(config: Config) -> UpdaterNode:
    """Wires every component from configuration, logging as it goes."""
    logger.info(f"Initializing drand client: urls={','.join(config.drand.urls)} "
                f"chain_hash={config.drand.chain_hash}")
    beacon = DrandHTTPSource(config.drand.urls, config.drand.chain_hash,
                             timeout=config.drand.request_timeout)

    logger.info(f"Initializing RPC client: {config.chain.rpc}")
    gateway = Web3ChainGateway(config.chain.rpc, config.chain.oracle_address,
                               timeout=config.drand.request_timeout)
    logger.info(f"DrandOracle contract: {gateway.oracle_address}")

    logger.info(f"Initializing signer (chain_id={config.chain.chain_id})...")
    signer = Signer(config.chain.chain_id, gateway.oracle_address, config.keys.signer_private_key)
    logger.info(f"Signer initialized: {signer.address}")

    logger.info(f"Initializing sender (chain_id={config.chain.chain_id})...")
    sender = Sender(config.chain.chain_id, config.keys.sender_private_key, gateway,
                    gas_limit=config.chain.set_randomness_gas_limit,
                    confirmation_timeout=config.chain.confirmation_timeout)
    logger.info(f"Sender initialized: {sender.address}")

    metrics = Metrics(config.chain.chain_id, gateway.oracle_address, sender.address,
                      config.drand.chain_hash)

    updater = Updater(
        beacon=beacon,
        chain=gateway,
        signer=signer,
        sender=sender,
        metrics=metrics,
        genesis_round=config.chain.genesis_round,
        backoff_base_delay=config.retry.backoff_base_delay,
        backoff_max_delay=config.retry.backoff_max_delay,
        startup_retries=config.retry.startup_retries,
        startup_retry_delay=config.retry.startup_retry_delay,
    )

    monitoring = config.monitoring
    servers = [
        health_server(monitoring.host, monitoring.http_port, monitoring.shutdown_timeout),
        metrics_server(metrics, monitoring.host, monitoring.metrics_port, monitoring.shutdown_timeout),
    ]
    return UpdaterNode(updater, servers, monitoring.shutdown_timeout,
                       closeables=[signer, sender, beacon])


async def run(config: Config):
    node = build_node(config)

    main_task = asyncio.current_task()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        main_task.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    logger.info("Starting services...")
    try:
        await node.start()
    except asyncio.CancelledError:
        logger.info("Updater stopped")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Publish drand randomness to the DrandOracle contract')
    parser.add_argument('--print-config', action='store_true',
                        help='Print the resolved configuration (keys redacted) and exit')
    args = parser.parse_args(argv)

    try:
        config = Config.from_env()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error(f"Failed to process environment variables: {e}")
        return 1

    logging.basicConfig(level=getattr(logging, config.log_level), format=LOG_FORMAT)

    if args.print_config:
        print(json.dumps(config.to_dict(), indent=2))
        return 0

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Exiting...")
    except Exception as e:
        logger.error(f"Service error: {e}", exc_info=True)
        return 1
    return 0


def cli():
    sys.exit(main())


if __name__ == '__main__':
    cli()
