"""Filesystem change notifications delivered to an asyncio loop."""

import asyncio
from pathlib import Path
from typing import Dict, NamedTuple, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from tapcon_monitor.utils.logging import get_logger

logger = get_logger(__name__)

# Access-only notifications, including our own reads of config files
IGNORED_EVENT_TYPES = {"opened", "closed_no_write"}


class FsEvent(NamedTuple):
    """A raw change notification."""

    path: Path
    event_type: str
    is_directory: bool


class _LoopHandler(FileSystemEventHandler):
    """Hands watchdog events from the observer thread to the event loop."""

    def __init__(self, watcher: "FsWatcher") -> None:
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in IGNORED_EVENT_TYPES:
            return
        try:
            # Atomic config writes arrive as a rename onto the final name
            raw_path = event.dest_path if event.event_type == "moved" else event.src_path
            if isinstance(raw_path, bytes):
                raw_path = raw_path.decode()
            fs_event = FsEvent(Path(raw_path), event.event_type, event.is_directory)
        except Exception as e:
            self.watcher.deliver_error(e)
            return
        self.watcher.deliver(fs_event)


class FsWatcher:
    """
    Non-recursive directory watches feeding an events queue and an errors queue.

    Both queues belong to the loop the watcher was started on.
    """

    def __init__(self) -> None:
        self.events: asyncio.Queue[FsEvent] = asyncio.Queue()
        self.errors: asyncio.Queue[Exception] = asyncio.Queue()
        self._observer = Observer()
        self._handler = _LoopHandler(self)
        self._watches: Dict[Path, ObservedWatch] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def start(self) -> None:
        """Start the observer thread, delivering to the running loop."""
        self._loop = asyncio.get_running_loop()
        self._observer.start()
        logger.info("Filesystem watcher started")

    def stop(self) -> None:
        """Stop the observer thread."""
        if self._observer.is_alive():
            self._observer.stop()
            self._observer.join(timeout=5)
        self._watches.clear()
        logger.info("Filesystem watcher stopped")

    def add_watch(self, path: Path) -> None:
        """
        Watch direct children of ``path``.

        Raises:
            OSError: If the directory cannot be watched
        """
        if path in self._watches:
            return
        self._watches[path] = self._observer.schedule(self._handler, str(path), recursive=False)
        logger.debug("Watching directory", extra={"path": str(path)})

    def remove_watch(self, path: Path) -> None:
        """Stop watching ``path``; a watch the OS already dropped is ignored."""
        watch = self._watches.pop(path, None)
        if watch is None:
            return
        try:
            self._observer.unschedule(watch)
        except (KeyError, OSError) as e:
            logger.debug("Watch already gone", extra={"path": str(path), "error": str(e)})

    def watched(self) -> list[Path]:
        return list(self._watches)

    def deliver(self, event: FsEvent) -> None:
        self._call_in_loop(self.events.put_nowait, event)

    def deliver_error(self, error: Exception) -> None:
        self._call_in_loop(self.errors.put_nowait, error)

    def _call_in_loop(self, func, item) -> None:
        if self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(func, item)
        except RuntimeError:
            # Loop already closed during shutdown
            pass
