"""Health snapshot and HTTP endpoints for the oracle daemon."""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST

from .clients.dash_core import DashCoreClient
from .config.settings import HealthConfig, SyncConfig
from .metrics import OracleMetrics
from .publisher import PlatformPublisher
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

# Connectivity checks older than this count as failed
STALE_THRESHOLD_MS = 10 * 60 * 1000

SYNC_TYPES = ('proposals', 'votes', 'masternodes')


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ConnectionStatus:
    connected: bool = False
    last_check: int = 0
    block_height: Optional[int] = None


@dataclass
class SyncStatus:
    timestamp: int = 0
    success: bool = False
    count: int = 0


@dataclass
class HealthStatus:
    status: str
    timestamp: int
    dash_core: ConnectionStatus
    platform: ConnectionStatus
    last_sync: Dict[str, SyncStatus] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'timestamp': self.timestamp,
            'checks': {
                'dash_core': asdict(self.dash_core),
                'platform': asdict(self.platform),
                'last_sync': {name: asdict(sync) for name, sync in self.last_sync.items()},
            },
        }


class HealthChecker:
    """Keeps the latest connectivity and per-sync outcomes."""

    def __init__(self, dash_core: DashCoreClient, publisher: PlatformPublisher, sync_config: SyncConfig):
        self.dash_core = dash_core
        self.publisher = publisher
        self.sync_config = sync_config
        self.dash_core_status = ConnectionStatus()
        self.platform_status = ConnectionStatus()
        self.sync_status: Dict[str, SyncStatus] = {name: SyncStatus() for name in SYNC_TYPES}

    async def check_dash_core(self) -> None:
        try:
            block_height = await self.dash_core.get_block_count()
            self.dash_core_status = ConnectionStatus(connected=True, last_check=_now_ms(), block_height=block_height)
        except Exception as e:
            self.dash_core_status = ConnectionStatus(connected=False, last_check=_now_ms())
            logger.warning(f"Dash Core health check failed: {e}")

    async def check_platform(self) -> None:
        try:
            connected = await self.publisher.is_connected()
        except Exception as e:
            connected = False
            logger.warning(f"Platform health check failed: {e}")
        self.update_platform_status(connected)

    def update_platform_status(self, connected: bool) -> None:
        self.platform_status = ConnectionStatus(connected=connected, last_check=_now_ms())

    def update_sync_status(self, sync_type: str, success: bool, count: int) -> None:
        self.sync_status[sync_type] = SyncStatus(timestamp=_now_ms(), success=success, count=count)

    async def run_checks(self) -> None:
        """Scheduled health task body."""
        await self.check_dash_core()
        await self.check_platform()

    def _sync_interval_ms(self, sync_type: str) -> int:
        return {
            'proposals': self.sync_config.proposal_interval_ms,
            'votes': self.sync_config.vote_interval_ms,
            'masternodes': self.sync_config.masternode_interval_ms,
        }[sync_type]

    def get_status(self) -> HealthStatus:
        """
        Composite status.

        unhealthy: node or store unreachable, or not checked for 10 minutes.
        degraded: some sync failed or has not succeeded within two intervals.
        """
        now = _now_ms()

        def fresh(status: ConnectionStatus) -> bool:
            return status.connected and now - status.last_check < STALE_THRESHOLD_MS

        syncs_healthy = all(
            sync.success and now - sync.timestamp < self._sync_interval_ms(name) * 2
            for name, sync in self.sync_status.items()
        )

        if not fresh(self.dash_core_status) or not fresh(self.platform_status):
            status = 'unhealthy'
        elif not syncs_healthy:
            status = 'degraded'
        else:
            status = 'healthy'

        return HealthStatus(
            status=status,
            timestamp=now,
            dash_core=self.dash_core_status,
            platform=self.platform_status,
            last_sync=dict(self.sync_status),
        )


class HealthCheckHandler:
    """Health check HTTP handler."""

    def __init__(self, checker: HealthChecker, scheduler: Scheduler, metrics: OracleMetrics):
        self.checker = checker
        self.scheduler = scheduler
        self.metrics = metrics

    async def health(self, request: web.Request) -> web.Response:
        status = self.checker.get_status()
        http_status = 503 if status.status == 'unhealthy' else 200
        return web.json_response(status.to_dict(), status=http_status)

    async def ready(self, request: web.Request) -> web.Response:
        is_ready = self.checker.get_status().status != 'unhealthy'
        return web.json_response({'ready': is_ready}, status=200 if is_ready else 503)

    async def status(self, request: web.Request) -> web.Response:
        snapshot = self.checker.get_status().to_dict()['checks']
        snapshot['tasks'] = self.scheduler.get_status()
        return web.json_response(snapshot)

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        status = self.checker.get_status()
        self.metrics.update_tasks(self.scheduler.get_status())
        self.metrics.update_connections(status.dash_core.connected, status.platform.connected)
        return web.Response(body=self.metrics.render(), headers={'Content-Type': CONTENT_TYPE_LATEST})


def create_app(checker: HealthChecker, scheduler: Scheduler, metrics: Optional[OracleMetrics] = None) -> web.Application:
    app = web.Application()
    handler = HealthCheckHandler(checker, scheduler, metrics or OracleMetrics())
    app.router.add_get('/health', handler.health)
    app.router.add_get('/ready', handler.ready)
    app.router.add_get('/status', handler.status)
    app.router.add_get('/metrics', handler.metrics_endpoint)
    return app


class HealthCheckServer:
    """HTTP server for health check endpoints."""

    def __init__(self, checker: HealthChecker, scheduler: Scheduler, config: HealthConfig, metrics: OracleMetrics):
        self.checker = checker
        self.scheduler = scheduler
        self.config = config
        self.metrics = metrics
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    async def start(self) -> None:
        if not self.config.enabled:
            logger.info("Health check server disabled")
            return

        self.runner = web.AppRunner(create_app(self.checker, self.scheduler, self.metrics))
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.config.host, self.config.port)
        await self.site.start()

        logger.info(f"Health check server listening on http://{self.config.host}:{self.config.port}")

    async def stop(self) -> None:
        if self.site:
            await self.site.stop()
            self.site = None

        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            logger.info("Health check server stopped")
