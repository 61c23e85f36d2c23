"""Tests for the Prometheus collectors."""

import pytest

from governance_oracle.metrics import OracleMetrics
from governance_oracle.models import SyncResult


@pytest.fixture
def metrics():
    return OracleMetrics()


def sample(metrics: OracleMetrics, name: str, **labels):
    return metrics.registry.get_sample_value(name, labels)


@pytest.mark.unit
class TestOracleMetrics:

    def test_record_sync_accumulates(self, metrics):
        metrics.record_sync('proposals', SyncResult(created=2, updated=1, deleted=1, errors=3, duration_ms=1500))
        metrics.record_sync('proposals', SyncResult(created=1, duration_ms=500))

        assert sample(metrics, 'oracle_sync_documents_total', sync_type='proposals', action='created') == 3
        assert sample(metrics, 'oracle_sync_documents_total', sync_type='proposals', action='updated') == 1
        assert sample(metrics, 'oracle_sync_documents_total', sync_type='proposals', action='deleted') == 1
        assert sample(metrics, 'oracle_sync_errors_total', sync_type='proposals') == 3
        assert sample(metrics, 'oracle_sync_duration_seconds_count', sync_type='proposals') == 2
        assert sample(metrics, 'oracle_sync_duration_seconds_sum', sync_type='proposals') == pytest.approx(2.0)

    def test_record_sync_failure(self, metrics):
        metrics.record_sync_failure('votes')
        metrics.record_sync_failure('votes')

        assert sample(metrics, 'oracle_sync_failures_total', sync_type='votes') == 2

    def test_task_gauges(self, metrics):
        metrics.update_tasks({
            'proposal-sync': {'is_running': True, 'last_run': None, 'last_error': None, 'interval_ms': 1000},
            'vote-sync': {'is_running': False, 'last_run': 1_700_000_000_000, 'last_error': None, 'interval_ms': 1000},
        })

        assert sample(metrics, 'oracle_task_running', task='proposal-sync') == 1
        assert sample(metrics, 'oracle_task_running', task='vote-sync') == 0
        assert sample(metrics, 'oracle_task_last_run_timestamp_seconds', task='proposal-sync') is None
        assert sample(metrics, 'oracle_task_last_run_timestamp_seconds', task='vote-sync') == 1_700_000_000

    def test_connection_gauges(self, metrics):
        metrics.update_connections(dash_core_connected=True, platform_connected=False)

        assert sample(metrics, 'oracle_connection_status', component='dash_core') == 1
        assert sample(metrics, 'oracle_connection_status', component='platform') == 0

    def test_instances_do_not_share_a_registry(self, metrics):
        other = OracleMetrics()
        metrics.record_sync_failure('masternodes')

        assert sample(other, 'oracle_sync_failures_total', sync_type='masternodes') is None

    def test_render_is_exposition_text(self, metrics):
        metrics.record_sync_failure('votes')

        text = metrics.render().decode('utf-8')
        assert '# TYPE oracle_sync_failures_total counter' in text
        assert 'oracle_sync_failures_total{sync_type="votes"} 1.0' in text
