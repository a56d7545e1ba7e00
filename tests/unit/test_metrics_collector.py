"""Unit tests for metrics collector."""

import pytest
from prometheus_client import REGISTRY

from panel_orchestrator.utils.metrics_collector import get_metrics_collector


@pytest.fixture
def metrics_collector():
    """The process-wide metrics collector."""
    return get_metrics_collector()


def _sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_metrics_collector_singleton():
    """Test that get_metrics_collector returns singleton instance."""
    collector1 = get_metrics_collector()
    collector2 = get_metrics_collector()
    assert collector1 is collector2


def test_record_container_operation(metrics_collector):
    """Test counting container operations by outcome."""
    name = "panel_container_operations_total"
    before = _sample(name, operation="create", status="success")

    metrics_collector.record_container_operation("create", "success")
    metrics_collector.record_container_operation("create", "success")
    metrics_collector.record_container_operation("create", "rejected")

    assert _sample(name, operation="create", status="success") == before + 2
    assert _sample(name, operation="create", status="rejected") >= 1


def test_record_console_command(metrics_collector):
    """Test counting console commands."""
    before = _sample("panel_console_commands_total")

    metrics_collector.record_console_command()

    assert _sample("panel_console_commands_total") == before + 1


def test_record_stats_failure(metrics_collector):
    """Test counting failed stats ticks."""
    before = _sample("panel_stats_fetch_failures_total")

    metrics_collector.record_stats_failure()
    metrics_collector.record_stats_failure()

    assert _sample("panel_stats_fetch_failures_total") == before + 2


def test_record_engine_call(metrics_collector):
    """Test engine call duration histogram."""
    name = "panel_engine_call_duration_seconds_count"
    before = _sample(name, operation="inspect_container")

    metrics_collector.record_engine_call("inspect_container", 0.02)
    metrics_collector.record_engine_call("inspect_container", 12.0)

    assert _sample(name, operation="inspect_container") == before + 2
    metrics_data = metrics_collector.get_metrics().decode("utf-8")
    assert 'le="0.05"' in metrics_data
    assert 'le="30.0"' in metrics_data


def test_session_gauges(metrics_collector):
    """Test that gauges hold the latest value."""
    metrics_collector.set_active_console_sessions(5)
    metrics_collector.set_active_console_sessions(3)
    metrics_collector.set_active_stats_subscriptions(2)

    assert _sample("panel_active_console_sessions") == 3
    assert _sample("panel_active_stats_subscriptions") == 2


def test_metrics_format(metrics_collector):
    """Test that metrics are in proper Prometheus format."""
    metrics_collector.record_container_operation("start", "success")

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert "# TYPE panel_container_operations_total counter" in metrics_data
    assert "# HELP" in metrics_data
    assert 'operation="start"' in metrics_data
