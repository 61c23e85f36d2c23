"""Governance oracle daemon: wires components, runs the scheduler, shuts down on signal."""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from .clients.dash_core import DashCoreClient
from .clients.platform_store import DocumentStore, PlatformGatewayStore
from .config.settings import OracleSettings, load_settings
from .health import HealthChecker, HealthCheckServer
from .metrics import OracleMetrics
from .publisher import PlatformPublisher
from .scheduler import Scheduler
from .sync import MasternodeSync, ProposalSync, VoteSync
from .utils.logging import log_with_context, setup_logging
from .utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL_MS = 30000

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class OracleService:
    """Composition root for the oracle daemon."""

    def __init__(self, settings: OracleSettings, store: Optional[DocumentStore] = None):
        self.settings = settings
        retry_policy = RetryPolicy.from_config(settings.sync)

        self.dash_core = DashCoreClient(settings.dash_core, retry_policy)
        self.publisher = PlatformPublisher(
            store or PlatformGatewayStore(settings.platform), settings.platform, retry_policy
        )
        self.proposal_sync = ProposalSync(self.dash_core, self.publisher)
        self.vote_sync = VoteSync(self.dash_core, self.publisher)
        self.masternode_sync = MasternodeSync(self.dash_core, self.publisher)

        self.scheduler = Scheduler()
        self.metrics = OracleMetrics()
        self.health_checker = HealthChecker(self.dash_core, self.publisher, settings.sync)
        self.health_server = HealthCheckServer(
            self.health_checker, self.scheduler, settings.health, self.metrics
        )

        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """
        Connect to the node and the store, then register and start all tasks.

        Raises if either upstream is unreachable or the contract cannot be fetched.
        """
        sync = self.settings.sync
        log_with_context(
            logger, logging.INFO, "Configuration loaded",
            network=self.settings.platform.network,
            contract_id=self.settings.platform.contract_id,
            proposal_interval_ms=sync.proposal_interval_ms,
            vote_interval_ms=sync.vote_interval_ms,
            masternode_interval_ms=sync.masternode_interval_ms,
        )

        logger.info("Testing Dash Core connection...")
        await self.dash_core.start()
        if not await self.dash_core.test_connection():
            raise ConnectionError("Could not connect to Dash Core")

        block_height = await self.dash_core.get_block_count()
        log_with_context(logger, logging.INFO, "Dash Core connected", block_height=block_height)

        await self.publisher.initialize()

        self._register_tasks()
        await self.health_server.start()
        self.scheduler.start()

        logger.info("Oracle daemon started successfully")

    def _register_tasks(self) -> None:
        sync = self.settings.sync

        def reporting(sync_type: str, task):
            async def _run():
                try:
                    result = await task.sync()
                except Exception:
                    self.metrics.record_sync_failure(sync_type)
                    raise
                self.metrics.record_sync(sync_type, result)
                self.health_checker.update_sync_status(
                    sync_type, result.errors == 0, result.created + result.updated
                )
            return _run

        self.scheduler.register(
            'proposal-sync', sync.proposal_interval_ms, reporting('proposals', self.proposal_sync), immediate=True
        )
        self.scheduler.register(
            'vote-sync', sync.vote_interval_ms, reporting('votes', self.vote_sync), immediate=True
        )
        self.scheduler.register(
            'masternode-sync', sync.masternode_interval_ms, reporting('masternodes', self.masternode_sync),
            immediate=True
        )
        self.scheduler.register(
            'health-check', HEALTH_CHECK_INTERVAL_MS, self.health_checker.run_checks, immediate=True
        )

    async def shutdown(self) -> None:
        """Stop timers, the health server and upstream connections, in that order."""
        logger.info("Shutting down...")
        self.scheduler.stop()
        await self.health_server.stop()
        await self.publisher.disconnect()
        await self.dash_core.close()
        logger.info("Shutdown complete")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(signum, self.request_shutdown)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(signum)

    async def run(self) -> int:
        """Run until SIGINT/SIGTERM. Returns the process exit code."""
        try:
            await self.start()
        except Exception as e:
            logger.error(f"Failed to start oracle daemon: {e}", exc_info=True)
            await self.shutdown()
            return 1

        self._setup_signal_handlers()
        await self._shutdown_event.wait()
        self._remove_signal_handlers()
        await self.shutdown()
        return 0


async def main() -> int:
    """Main entry point."""
    logger.info("Starting governance oracle daemon")

    try:
        settings = load_settings(os.getenv("CONFIG_FILE"))
    except Exception as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    setup_logging(settings.logging, settings.service_name)

    try:
        service = OracleService(settings)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    return await service.run()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
