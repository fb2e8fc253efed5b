"""Unit tests for the daemon entry point."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tapcon_monitor import daemon
from tapcon_monitor.sandbox import DryRunSandbox
from tapcon_monitor.utils.exceptions import StartupError


def test_build_monitor(test_settings):
    """Test wiring the monitor from settings."""
    api = MagicMock()
    docker_manager = MagicMock()

    with patch("tapcon_monitor.daemon.get_docker_manager", return_value=docker_manager):
        monitor = daemon.build_monitor(test_settings, api)

    assert isinstance(monitor.sandbox, DryRunSandbox)
    assert monitor.allocator.n_slots == 3
    assert monitor.container_root == test_settings.container_root
    assert monitor.network_tracker._list_networks is docker_manager.list_overlay_networks


def test_main_exits_on_startup_error(test_settings):
    """Test that a fatal startup error exits with status 1."""
    with (
        patch("tapcon_monitor.daemon.get_settings", return_value=test_settings),
        patch("tapcon_monitor.daemon.setup_logging"),
        patch(
            "tapcon_monitor.daemon.run_daemon",
            new=AsyncMock(side_effect=StartupError("no host identity")),
        ),
    ):
        with pytest.raises(SystemExit) as exc_info:
            daemon.main()

    assert exc_info.value.code == 1


def test_main_serves_metrics(test_settings):
    """Test that the metrics endpoint starts when a port is configured."""
    settings = test_settings.model_copy(update={"metrics_port": 9105})
    collector = MagicMock()

    with (
        patch("tapcon_monitor.daemon.get_settings", return_value=settings),
        patch("tapcon_monitor.daemon.setup_logging"),
        patch("tapcon_monitor.daemon.get_metrics_collector", return_value=collector),
        patch("tapcon_monitor.daemon.run_daemon", new=AsyncMock()),
    ):
        daemon.main()

    collector.serve.assert_called_once_with(9105)


@pytest.mark.asyncio
async def test_run_daemon_closes_clients_on_startup_error(test_settings):
    """Test that clients are closed when startup fails."""
    monitor = MagicMock()
    monitor.start = AsyncMock(side_effect=StartupError("cannot watch"))
    api = MagicMock()
    api.close = AsyncMock()

    with (
        patch("tapcon_monitor.daemon.HttpMetadataAPI", return_value=api),
        patch("tapcon_monitor.daemon.build_monitor", return_value=monitor),
        patch("tapcon_monitor.daemon.close_docker_client") as mock_close_docker,
    ):
        with pytest.raises(StartupError):
            await daemon.run_daemon(test_settings)

    api.close.assert_awaited_once()
    mock_close_docker.assert_called_once()
