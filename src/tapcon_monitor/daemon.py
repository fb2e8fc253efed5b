"""Host agent entry point."""

import asyncio
import sys

from tapcon_monitor import __version__
from tapcon_monitor.config import Settings, get_settings
from tapcon_monitor.managers.image_manager import ImageTracker
from tapcon_monitor.managers.monitor import Monitor
from tapcon_monitor.managers.network_manager import NetworkTracker
from tapcon_monitor.managers.shutdown_coordinator import get_shutdown_coordinator
from tapcon_monitor.managers.static_ports import StaticPortAllocator
from tapcon_monitor.metadata import HttpMetadataAPI
from tapcon_monitor.sandbox import create_sandbox
from tapcon_monitor.utils import get_logger, setup_logging
from tapcon_monitor.utils.audit_logger import AuditEventType, get_audit_logger
from tapcon_monitor.utils.docker_client import close_docker_client, get_docker_manager
from tapcon_monitor.utils.exceptions import StartupError
from tapcon_monitor.utils.fs_watcher import FsWatcher
from tapcon_monitor.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


def build_monitor(settings: Settings, api: HttpMetadataAPI) -> Monitor:
    """Wire the monitor with its production collaborators."""
    allocator = StaticPortAllocator(
        settings.static_port_base, settings.static_port_max, settings.port_per_container
    )
    return Monitor(
        settings,
        api,
        create_sandbox(settings),
        FsWatcher(),
        NetworkTracker(api, get_docker_manager().list_overlay_networks),
        allocator=allocator,
        image_tracker=ImageTracker(api, settings.image_repo_file, settings.image_content_root),
    )


async def run_daemon(settings: Settings) -> None:
    """
    Run the monitor until a shutdown signal arrives.

    Raises:
        StartupError: If the initial setup cannot complete
    """
    audit_logger = get_audit_logger()
    coordinator = get_shutdown_coordinator()
    api = HttpMetadataAPI(settings)
    monitor = build_monitor(settings, api)

    try:
        await monitor.start()
        audit_logger.log_event(
            AuditEventType.SYSTEM_STARTUP,
            details={"version": __version__, "local_ns": monitor.local_ns},
        )
        coordinator.setup_signal_handlers(dump_handler=monitor.dump)

        run_task = asyncio.create_task(monitor.run(), name="dispatcher")
        stop_task = asyncio.create_task(coordinator.wait_for_shutdown(), name="shutdown-wait")
        await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        monitor.request_stop()
        stop_task.cancel()
        await run_task
        await coordinator.initiate_shutdown(monitor.shutdown)
    finally:
        await api.close()
        close_docker_client()


def main() -> None:
    """Main entry point for the tapcon host agent."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)

    logger.info(
        "Starting tapcon monitor",
        extra={
            "version": __version__,
            "docker_root": settings.docker_root,
            "metadata_address": settings.metadata_address,
            "sandbox_mode": settings.sandbox_mode,
        },
    )

    if settings.metrics_port:
        get_metrics_collector().serve(settings.metrics_port)
        logger.info("Metrics endpoint started", extra={"port": settings.metrics_port})

    try:
        asyncio.run(run_daemon(settings))
    except StartupError as e:
        logger.error("Startup failed", extra={"error": str(e)})
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down")
        sys.exit(0)
    logger.info("Tapcon monitor stopped")


if __name__ == "__main__":
    main()
