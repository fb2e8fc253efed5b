"""Signal handling and graceful shutdown of the monitor."""

import asyncio
import signal
from typing import Awaitable, Callable, Optional

from tapcon_monitor.config import get_settings
from tapcon_monitor.utils import get_logger
from tapcon_monitor.utils.audit_logger import AuditEventType, get_audit_logger

logger = get_logger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)
DUMP_SIGNALS = (signal.SIGUSR1, signal.SIGUSR2)


class ShutdownCoordinator:
    """Coordinator for graceful daemon shutdown."""

    def __init__(self) -> None:
        """Initialize shutdown coordinator."""
        self.settings = get_settings()
        self.audit_logger = get_audit_logger()
        self._shutdown_initiated = False
        self._shutdown_event = asyncio.Event()
        self._dump_tasks: set[asyncio.Task] = set()

    def is_shutting_down(self) -> bool:
        """
        Check if shutdown has been initiated.

        Returns:
            True if shutdown is in progress
        """
        return self._shutdown_initiated

    def request_shutdown(self, sig_name: str = "request") -> None:
        """Mark shutdown as requested; the daemon loop reacts to the event."""
        if self._shutdown_initiated:
            logger.warning("Shutdown already initiated")
            return
        self._shutdown_initiated = True
        logger.info("Shutdown requested", extra={"signal": sig_name})
        self._shutdown_event.set()

    async def wait_for_shutdown(self) -> None:
        """Wait until shutdown is requested."""
        await self._shutdown_event.wait()

    async def initiate_shutdown(self, stop: Callable[[], Awaitable[None]]) -> None:
        """
        Run the shutdown sequence.

        Args:
            stop: Coroutine function stopping the monitor's tasks
        """
        self._shutdown_initiated = True
        grace_period = self.settings.drain_grace_s
        logger.info("Initiating graceful shutdown", extra={"grace_period_s": grace_period})

        try:
            await asyncio.wait_for(stop(), timeout=grace_period + 1)
            logger.info("Graceful shutdown completed")
        except asyncio.TimeoutError:
            logger.warning(
                "Drain timeout reached, forcing shutdown",
                extra={"grace_period_s": grace_period},
            )
        finally:
            for task in self._dump_tasks:
                task.cancel()
            self.audit_logger.log_event(AuditEventType.SYSTEM_SHUTDOWN)
            self._shutdown_event.set()

    def setup_signal_handlers(
        self,
        dump_handler: Optional[Callable[[], Awaitable[None]]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        """
        Register loop signal handlers.

        SIGTERM and SIGINT request shutdown; SIGUSR1 and SIGUSR2 run
        ``dump_handler`` when one is given.

        Args:
            dump_handler: Coroutine function logging a state dump
            loop: Event loop to register on (the running loop if omitted)
        """
        loop = loop or asyncio.get_running_loop()

        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, self.request_shutdown, sig.name)

        if dump_handler is not None:
            for sig in DUMP_SIGNALS:
                loop.add_signal_handler(sig, self._spawn_dump, dump_handler, sig.name)

        logger.info("Signal handlers registered for graceful shutdown")

    def _spawn_dump(self, dump_handler: Callable[[], Awaitable[None]], sig_name: str) -> None:
        logger.info(f"Received {sig_name} signal, dumping state")
        task = asyncio.ensure_future(dump_handler())
        self._dump_tasks.add(task)
        task.add_done_callback(self._dump_done)

    def _dump_done(self, task: asyncio.Task) -> None:
        self._dump_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("State dump failed", extra={"error": str(task.exception())})


# Global instance
_shutdown_coordinator: ShutdownCoordinator | None = None


def get_shutdown_coordinator() -> ShutdownCoordinator:
    """Get or create shutdown coordinator instance."""
    global _shutdown_coordinator
    if _shutdown_coordinator is None:
        _shutdown_coordinator = ShutdownCoordinator()
    return _shutdown_coordinator
