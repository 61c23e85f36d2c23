"""Prometheus metrics for sync cycles, scheduled tasks and upstream connections."""

import logging
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .models import SyncResult

logger = logging.getLogger(__name__)


class OracleMetrics:
    """
    Prometheus collectors for the oracle daemon.

    Collectors are bound to a per-instance registry rather than the process
    default, so more than one service can be built in the same process.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.sync_documents = Counter(
            'oracle_sync_documents_total',
            'Documents written by sync cycles',
            ['sync_type', 'action'],
            registry=self.registry
        )

        self.sync_errors = Counter(
            'oracle_sync_errors_total',
            'Items that failed inside a sync cycle',
            ['sync_type'],
            registry=self.registry
        )

        self.sync_failures = Counter(
            'oracle_sync_failures_total',
            'Sync cycles aborted by an error',
            ['sync_type'],
            registry=self.registry
        )

        self.sync_duration = Histogram(
            'oracle_sync_duration_seconds',
            'Time spent in one sync cycle',
            ['sync_type'],
            registry=self.registry
        )

        self.task_running = Gauge(
            'oracle_task_running',
            'Task run in progress (1=running, 0=idle)',
            ['task'],
            registry=self.registry
        )

        self.task_last_run = Gauge(
            'oracle_task_last_run_timestamp_seconds',
            'Unix time of the last successful run',
            ['task'],
            registry=self.registry
        )

        self.connection_status = Gauge(
            'oracle_connection_status',
            'Connection status (1=connected, 0=disconnected)',
            ['component'],
            registry=self.registry
        )

        logger.debug("Prometheus collectors registered")

    def record_sync(self, sync_type: str, result: SyncResult) -> None:
        """Count one completed sync cycle."""
        self.sync_documents.labels(sync_type=sync_type, action='created').inc(result.created)
        self.sync_documents.labels(sync_type=sync_type, action='updated').inc(result.updated)
        self.sync_documents.labels(sync_type=sync_type, action='deleted').inc(result.deleted)
        self.sync_errors.labels(sync_type=sync_type).inc(result.errors)
        self.sync_duration.labels(sync_type=sync_type).observe(result.duration_ms / 1000.0)

    def record_sync_failure(self, sync_type: str) -> None:
        self.sync_failures.labels(sync_type=sync_type).inc()

    def update_tasks(self, task_status: Dict[str, Dict[str, Any]]) -> None:
        """Copy the scheduler's per-task status into gauges."""
        for name, status in task_status.items():
            self.task_running.labels(task=name).set(1 if status['is_running'] else 0)
            if status['last_run'] is not None:
                self.task_last_run.labels(task=name).set(status['last_run'] / 1000.0)

    def update_connections(self, dash_core_connected: bool, platform_connected: bool) -> None:
        self.connection_status.labels(component='dash_core').set(1 if dash_core_connected else 0)
        self.connection_status.labels(component='platform').set(1 if platform_connected else 0)

    def render(self) -> bytes:
        """Current registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)
