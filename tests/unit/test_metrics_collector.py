"""Unit tests for metrics collector."""

from unittest.mock import patch

import pytest
from prometheus_client import REGISTRY

from tapcon_monitor.utils.metrics_collector import MetricsCollector, get_metrics_collector


def _clear_registry() -> None:
    collectors = list(REGISTRY._collector_to_names.keys())
    for collector in collectors:
        try:
            REGISTRY.unregister(collector)
        except KeyError:
            # Already unregistered
            pass


@pytest.fixture
def metrics_collector():
    """Create metrics collector for testing."""
    # Clear the registry before each test to avoid conflicts
    _clear_registry()
    yield MetricsCollector()
    _clear_registry()


def test_metrics_collector_singleton():
    """Test that get_metrics_collector returns singleton instance."""
    collector1 = get_metrics_collector()
    collector2 = get_metrics_collector()
    assert collector1 is collector2


def test_record_metadata_call(metrics_collector):
    """Test recording metadata calls by operation and status."""
    metrics_collector.record_metadata_call("create_principal", "success")
    metrics_collector.record_metadata_call("create_principal", "failure")
    metrics_collector.record_metadata_call("show_principal", "not_found")

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert "tapcon_metadata_calls_total" in metrics_data
    assert 'operation="create_principal"' in metrics_data
    assert 'status="failure"' in metrics_data
    assert 'status="not_found"' in metrics_data


def test_record_rescan(metrics_collector):
    """Test counting rescans."""
    metrics_collector.record_rescan()
    metrics_collector.record_rescan()

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert "tapcon_rescans_total 2.0" in metrics_data


def test_reconcile_duration_buckets(metrics_collector):
    """Test histogram bucket configuration."""
    metrics_collector.record_reconcile_duration(0.02)
    metrics_collector.record_reconcile_duration(3.0)

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert "tapcon_reconcile_duration_seconds_count 2.0" in metrics_data
    assert 'le="0.05"' in metrics_data
    assert 'le="30.0"' in metrics_data


def test_gauges(metrics_collector):
    """Test that gauges show the latest value."""
    metrics_collector.set_tracked_containers(5)
    metrics_collector.set_tracked_containers(3)
    metrics_collector.set_tracked_images(7)
    metrics_collector.set_static_slots_allocated(2)

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert "tapcon_tracked_containers 3.0" in metrics_data
    assert "tapcon_tracked_images 7.0" in metrics_data
    assert "tapcon_static_slots_allocated 2.0" in metrics_data


def test_serve_starts_http_server(metrics_collector):
    """Test exposing metrics over HTTP."""
    with patch("tapcon_monitor.utils.metrics_collector.start_http_server") as mock_start:
        metrics_collector.serve(9105)

    mock_start.assert_called_once_with(9105)


def test_metrics_format(metrics_collector):
    """Test that metrics are in proper Prometheus format."""
    metrics_collector.record_rescan()

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert "# TYPE" in metrics_data
    assert "# HELP" in metrics_data
