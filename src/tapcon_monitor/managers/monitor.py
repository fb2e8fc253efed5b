"""Monitor turning runtime state changes into per-container reconciliation."""

import asyncio
import ipaddress
import time
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Coroutine, Dict, List, Optional, Set, Tuple

from tapcon_monitor.config import Settings
from tapcon_monitor.managers.image_manager import ImageTracker
from tapcon_monitor.managers.network_manager import NetworkTracker
from tapcon_monitor.managers.reconcile_cache import ReconcileCache
from tapcon_monitor.managers.snapshot_tracker import (
    DEFAULT_NS,
    ContainerSnapshot,
    InstanceIp,
    ListIps,
)
from tapcon_monitor.managers.static_ports import StaticPortAllocator
from tapcon_monitor.metadata.api import MetadataAPI
from tapcon_monitor.models.runtime import CONFIG_FILES
from tapcon_monitor.sandbox import Sandbox
from tapcon_monitor.utils import get_logger
from tapcon_monitor.utils.audit_logger import AuditEventType, get_audit_logger
from tapcon_monitor.utils.exceptions import (
    MetadataAPIError,
    NoStaticPortSlotError,
    PrincipalNotFoundError,
    SandboxError,
    StartupError,
)
from tapcon_monitor.utils.fs_watcher import FsEvent, FsWatcher
from tapcon_monitor.utils.ids import truncate_id
from tapcon_monitor.utils.metrics_collector import get_metrics_collector
from tapcon_monitor.utils.netns import list_namespace_ips

logger = get_logger(__name__)


class ContainerEvent(Enum):
    """Messages delivered to a container keeper."""

    NEED_UPDATE = 1
    DEAD = 2


class FsEventKind(Enum):
    """Lifecycle meaning of a filesystem notification."""

    DIRECTORY_CREATED = "directory_created"
    DIRECTORY_REMOVED = "directory_removed"
    CONTENT_CHANGED = "content_changed"
    REPO_CHANGED = "repo_changed"


class TrackedContainer:
    """Table entry for one container: its state, principal cache and keeper."""

    def __init__(self, snapshot: ContainerSnapshot, cache: ReconcileCache) -> None:
        self.snapshot = snapshot
        self.cache = cache
        self.queue: asyncio.Queue[ContainerEvent] = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None
        self.last_refresh: Optional[float] = None
        self.mapped_ips: List[str] = []

    @property
    def container_id(self) -> str:
        return self.snapshot.tapcon_id

    def send(self, event: ContainerEvent) -> None:
        self.queue.put_nowait(event)


class Monitor:
    """
    Owner of the container table, image table and overlay network set.

    The dispatcher only touches tables and queues. Every remote call for a
    container runs in that container's keeper task.
    """

    def __init__(
        self,
        settings: Settings,
        api: MetadataAPI,
        sandbox: Sandbox,
        watcher: FsWatcher,
        network_tracker: NetworkTracker,
        allocator: Optional[StaticPortAllocator] = None,
        image_tracker: Optional[ImageTracker] = None,
        list_ips: Optional[ListIps] = None,
    ) -> None:
        """
        Initialize the monitor.

        Args:
            settings: Application settings
            api: Metadata service capability
            sandbox: Packet filter capability
            watcher: Filesystem watcher
            network_tracker: Overlay network tracker
            allocator: Static port allocator (built from settings if omitted)
            image_tracker: Image tracker (built from settings if omitted)
            list_ips: Namespace IP lister (ipshow helper if omitted)
        """
        self.settings = settings
        self.api = api
        self.sandbox = sandbox
        self.watcher = watcher
        self.network_tracker = network_tracker
        self.allocator = allocator or StaticPortAllocator(
            settings.static_port_base, settings.static_port_max, settings.port_per_container
        )
        self.image_tracker = image_tracker or ImageTracker(
            api, settings.image_repo_file, settings.image_content_root
        )
        self.list_ips = list_ips or partial(list_namespace_ips, command=settings.ipshow_command)

        self.container_root: Path = settings.container_root
        self.image_root: Path = settings.image_root
        self.image_repo_file: Path = settings.image_repo_file

        self.containers: Dict[str, TrackedContainer] = {}
        self._container_lock = asyncio.Lock()

        self.public_ip = ""
        self.local_ip = ""
        self.local_ns = ""
        self.instance_ips: List[InstanceIp] = []

        self._stop = asyncio.Event()
        self._scan_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

        self.audit_logger = get_audit_logger()
        self.metrics = get_metrics_collector()

    # Startup

    async def setup_instance_ips(self) -> None:
        """
        Resolve this host's public IP, local IP and local namespace.

        Raises:
            StartupError: If any of them is unavailable or not an IP address
        """
        try:
            public_ip = await self.api.my_public_ip()
            local_ip = await self.api.my_local_ip()
            local_ns = await self.api.my_ns()
        except MetadataAPIError as e:
            raise StartupError(f"cannot obtain host identity: {e}") from e

        for name, value in (("public", public_ip), ("local", local_ip)):
            try:
                ipaddress.ip_address(value)
            except ValueError as e:
                raise StartupError(f"invalid {name} IP {value!r}") from e
        if not local_ns:
            raise StartupError("empty local namespace")

        self.public_ip = public_ip
        self.local_ip = local_ip
        self.local_ns = local_ns
        self.instance_ips = [
            InstanceIp(local_ns, local_ip),
            InstanceIp(DEFAULT_NS, public_ip),
        ]
        logger.info(
            "Resolved host identity",
            extra={"public_ip": public_ip, "local_ip": local_ip, "local_ns": local_ns},
        )

    async def start(self) -> None:
        """
        Prepare watches and run the initial scan.

        Raises:
            StartupError: If the host identity, the watches or the container
                root listing are unavailable
        """
        self.allocator.reset_all()
        await self.setup_instance_ips()

        self.watcher.start()
        for path in (self.image_root, self.container_root):
            try:
                self.watcher.add_watch(path)
            except OSError as e:
                raise StartupError(f"cannot watch {path}: {e}") from e

        await self.scan(initial=True)

    # Event translation

    def translate(self, event: FsEvent) -> Optional[Tuple[FsEventKind, str]]:
        """
        Map a raw notification to a lifecycle event.

        Returns:
            (kind, container directory name), with an empty name for image
            repository changes, or None for irrelevant notifications
        """
        path = event.path
        if path == self.image_repo_file:
            return FsEventKind.REPO_CHANGED, ""

        if path.parent == self.container_root:
            if event.event_type in ("created", "moved"):
                return FsEventKind.DIRECTORY_CREATED, path.name
            if event.event_type == "deleted":
                return FsEventKind.DIRECTORY_REMOVED, path.name
            return None

        if path.name in CONFIG_FILES and path.parent.parent == self.container_root:
            return FsEventKind.CONTENT_CHANGED, path.parent.name
        return None

    async def handle_fs_event(self, event: FsEvent) -> None:
        """Apply one filesystem notification to the tables."""
        translated = self.translate(event)
        if translated is None:
            return
        kind, name = translated
        logger.debug("Filesystem event", extra={"kind": kind.value, "path": str(event.path)})

        if kind is FsEventKind.REPO_CHANGED:
            self._spawn_background(self.image_tracker.scan(), "image scan")
            return

        cid = truncate_id(name)
        async with self._container_lock:
            tracked = self.containers.get(cid)
            if kind is FsEventKind.DIRECTORY_REMOVED:
                if tracked is not None:
                    self._retire_entry(cid)
                return

            if tracked is None:
                if kind is FsEventKind.CONTENT_CHANGED:
                    logger.info("Config changed for untracked container", extra={"container_id": cid})
                self._allocate_container(name)
            else:
                tracked.send(ContainerEvent.NEED_UPDATE)

    # Container table, called with the container lock held

    def _allocate_container(self, name: str) -> TrackedContainer:
        root = self.container_root / name
        snapshot = ContainerSnapshot(name, root, self.list_ips, self.instance_ips)
        cache = ReconcileCache(self.api, snapshot)
        tracked = TrackedContainer(snapshot, cache)

        try:
            self.watcher.add_watch(root)
        except OSError as e:
            logger.warning(
                "Cannot watch container directory",
                extra={"container_id": tracked.container_id, "error": str(e)},
            )

        tracked.task = asyncio.create_task(
            self._keeper(tracked), name=f"keeper-{tracked.container_id}"
        )
        self.containers[tracked.container_id] = tracked
        tracked.send(ContainerEvent.NEED_UPDATE)
        self.metrics.set_tracked_containers(len(self.containers))
        logger.info("Tracking container", extra={"container_id": tracked.container_id})
        return tracked

    def _retire_entry(self, cid: str) -> None:
        tracked = self.containers.pop(cid)
        tracked.send(ContainerEvent.DEAD)
        self.watcher.remove_watch(tracked.snapshot.root)
        self.metrics.set_tracked_containers(len(self.containers))
        logger.info("Container gone", extra={"container_id": cid})

    # Keeper

    async def _keeper(self, tracked: TrackedContainer) -> None:
        """Drive one container through its lifecycle until it is dead."""
        cid = tracked.container_id
        try:
            await self.sandbox.setup_container_chain(cid)
        except SandboxError as e:
            logger.error("Failed to set up container chain", extra={"container_id": cid, "error": str(e)})
        await self._refresh(tracked, force=True)

        while True:
            event = await tracked.queue.get()
            if event is ContainerEvent.DEAD:
                break

            try:
                await self._update(tracked)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Container update failed", extra={"container_id": cid, "error": str(e)}
                )

        await self._retire(tracked)

    async def _update(self, tracked: TrackedContainer) -> None:
        cid = tracked.container_id
        await self._refresh(tracked)
        await tracked.snapshot.reload()

        if not tracked.snapshot.is_running():
            await self._withdraw(tracked)
            return

        self._ensure_static_range(tracked)
        await self._sync_static_mapping(tracked)
        started = time.monotonic()
        try:
            await tracked.cache.create()
        except MetadataAPIError as e:
            logger.error("Failed to create principal", extra={"container_id": cid, "error": str(e)})
        finally:
            self.metrics.record_reconcile_duration(time.monotonic() - started)

    async def _refresh(self, tracked: TrackedContainer, force: bool = False) -> None:
        now = time.monotonic()
        if (
            not force
            and tracked.last_refresh is not None
            and now - tracked.last_refresh < self.settings.refresh_interval_s
        ):
            return
        try:
            await tracked.cache.refresh()
            tracked.last_refresh = now
        except PrincipalNotFoundError:
            tracked.last_refresh = now
            logger.debug("No principal for container yet", extra={"container_id": tracked.container_id})
        except MetadataAPIError as e:
            logger.warning(
                "Failed to refresh principal",
                extra={"container_id": tracked.container_id, "error": str(e)},
            )

    def _ensure_static_range(self, tracked: TrackedContainer) -> None:
        snapshot = tracked.snapshot
        if snapshot.static_range is not None:
            return
        try:
            snapshot.static_range = self.allocator.acquire()
        except NoStaticPortSlotError as e:
            logger.warning(
                "Unable to allocate static ports, retry later",
                extra={"container_id": tracked.container_id, "error": str(e)},
            )
            return
        self.audit_logger.log_event(
            AuditEventType.STATIC_PORTS_ASSIGN,
            principal=tracked.container_id,
            details={"range": str(snapshot.static_range)},
        )
        self.metrics.set_static_slots_allocated(self.allocator.allocated_count())

    def _release_static_range(self, tracked: TrackedContainer) -> None:
        snapshot = tracked.snapshot
        if snapshot.static_range is None:
            return
        released = snapshot.static_range
        self.allocator.release(released)
        snapshot.static_range = None
        self.audit_logger.log_event(
            AuditEventType.STATIC_PORTS_RELEASE,
            principal=tracked.container_id,
            details={"range": str(released)},
        )
        self.metrics.set_static_slots_allocated(self.allocator.allocated_count())

    async def _sync_static_mapping(self, tracked: TrackedContainer) -> None:
        """Reinstall static mapping rules when the container's owned IPs change."""
        cid = tracked.container_id
        port_range = tracked.snapshot.static_range
        if port_range is None:
            return
        owned = tracked.snapshot.owned_ips()
        if owned == tracked.mapped_ips:
            return

        if tracked.mapped_ips:
            try:
                await self.sandbox.clear_static_port_mapping(cid)
            except SandboxError as e:
                logger.error("Failed to clear static mapping", extra={"container_id": cid, "error": str(e)})
                return
            tracked.mapped_ips = []

        for ip in owned:
            try:
                await self.sandbox.setup_static_port_mapping(cid, ip, port_range.min, port_range.max)
            except SandboxError as e:
                logger.error(
                    "Failed to set up static mapping",
                    extra={"container_id": cid, "ip": ip, "error": str(e)},
                )
                return
        tracked.mapped_ips = owned

    async def _clear_static_mapping(self, tracked: TrackedContainer) -> None:
        if not tracked.mapped_ips:
            return
        try:
            await self.sandbox.clear_static_port_mapping(tracked.container_id)
        except SandboxError as e:
            logger.error(
                "Failed to clear static mapping",
                extra={"container_id": tracked.container_id, "error": str(e)},
            )
            return
        tracked.mapped_ips = []

    async def _remove_principal(self, tracked: TrackedContainer) -> None:
        try:
            await tracked.cache.remove()
        except MetadataAPIError as e:
            logger.error(
                "Failed to remove principal",
                extra={"container_id": tracked.container_id, "error": str(e)},
            )

    async def _withdraw(self, tracked: TrackedContainer) -> None:
        """Undo everything held for a container that is not running."""
        await self._remove_principal(tracked)
        await self._clear_static_mapping(tracked)
        self._release_static_range(tracked)

    async def _retire(self, tracked: TrackedContainer) -> None:
        cid = tracked.container_id
        await self._remove_principal(tracked)
        self._release_static_range(tracked)
        try:
            await self.sandbox.remove_container_chain(cid)
        except SandboxError as e:
            logger.error("Failed to remove container chain", extra={"container_id": cid, "error": str(e)})
        tracked.mapped_ips = []
        logger.info("Keeper finished", extra={"container_id": cid})

    # Rescan

    async def scan(self, initial: bool = False) -> dict:
        """
        Rescan images, overlay networks and container directories.

        Args:
            initial: Whether this is the startup scan; an unreadable
                container root is then fatal

        Returns:
            Dictionary with container table statistics
        """
        self.metrics.record_rescan()
        self.audit_logger.log_event(AuditEventType.SYSTEM_RESCAN, details={"initial": initial})
        await self.image_tracker.scan()
        await self.network_tracker.scan()
        return await self.reload_container_entries(initial)

    async def reload_container_entries(self, initial: bool = False) -> dict:
        """
        Reconcile the container table with the container root listing.

        Remote principals that are neither tracked containers nor known
        images are deleted.

        Raises:
            StartupError: If the container root cannot be listed at startup
        """
        stats = {"tracked": 0, "added": 0, "removed": 0, "collected": 0}

        try:
            entries = list(self.container_root.iterdir())
        except OSError as e:
            if initial:
                raise StartupError(f"cannot read container root {self.container_root}: {e}") from e
            logger.error("Failed to read container root", extra={"error": str(e)})
            return stats

        directories: Dict[str, str] = {}
        for entry in entries:
            if not entry.is_dir():
                logger.warning("Non-directory in container root", extra={"path": str(entry)})
                continue
            directories[truncate_id(entry.name)] = entry.name

        try:
            remote: Optional[Set[str]] = await self.api.list_principals()
        except MetadataAPIError as e:
            logger.error("Cannot fetch principal list, skipping collection", extra={"error": str(e)})
            remote = None

        async with self._container_lock:
            for cid, name in directories.items():
                tracked = self.containers.get(cid)
                if tracked is not None:
                    tracked.send(ContainerEvent.NEED_UPDATE)
                else:
                    self._allocate_container(name)
                    stats["added"] += 1

            for cid in [cid for cid in self.containers if cid not in directories]:
                self._retire_entry(cid)
                stats["removed"] += 1

            tracked_ids = set(self.containers)
            stats["tracked"] = len(tracked_ids)

        if remote is not None:
            image_ids = await self.image_tracker.known_principals()
            for principal in sorted(remote - tracked_ids - image_ids):
                try:
                    await self.api.delete_principal(principal)
                except MetadataAPIError as e:
                    logger.error(
                        "Failed to delete stale principal",
                        extra={"principal": principal, "error": str(e)},
                    )
                    continue
                stats["collected"] += 1
                self.audit_logger.log_event(AuditEventType.PRINCIPAL_GC, principal=principal)

        logger.info("Container entries reloaded", extra=stats)
        return stats

    # Dispatcher

    def _spawn_background(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(self._guarded(coro, name), name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _guarded(self, coro: Coroutine, name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Background task failed", extra={"task": name, "error": str(e)})

    def _schedule_rescan(self) -> None:
        if self._scan_task is not None and not self._scan_task.done():
            logger.info("Previous rescan still running, skipping")
            return
        self._scan_task = self._spawn_background(self.scan(), "rescan")

    async def run(self) -> None:
        """Dispatch filesystem events and periodic rescans until stopped."""
        loop = asyncio.get_running_loop()
        interval = self.settings.rescan_interval_s
        next_scan = loop.time() + interval

        event_getter = asyncio.create_task(self.watcher.events.get())
        error_getter = asyncio.create_task(self.watcher.errors.get())
        stop_waiter = asyncio.create_task(self._stop.wait())
        try:
            while True:
                timeout = max(0.0, next_scan - loop.time())
                done, _ = await asyncio.wait(
                    {event_getter, error_getter, stop_waiter},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if stop_waiter in done:
                    break

                if event_getter in done:
                    await self.handle_fs_event(event_getter.result())
                    event_getter = asyncio.create_task(self.watcher.events.get())

                if error_getter in done:
                    logger.error("Filesystem watcher error", extra={"error": str(error_getter.result())})
                    error_getter = asyncio.create_task(self.watcher.errors.get())

                if loop.time() >= next_scan:
                    logger.debug("Rescan timer fired", extra={"interval_s": interval})
                    self._schedule_rescan()
                    next_scan = loop.time() + interval
        finally:
            for task in (event_getter, error_getter, stop_waiter):
                task.cancel()

    def request_stop(self) -> None:
        """Ask the dispatcher to return."""
        self._stop.set()

    async def shutdown(self) -> None:
        """
        Stop keepers and background work without retiring containers.

        Remote principals are left in place for the next start.
        """
        self.request_stop()
        async with self._container_lock:
            tasks = [t.task for t in self.containers.values() if t.task is not None]
        tasks.extend(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.settings.drain_grace_s)
            if pending:
                logger.warning("Tasks still running after grace period", extra={"count": len(pending)})
        self.watcher.stop()
        logger.info("Monitor stopped", extra={"containers": len(self.containers)})

    # Diagnostics

    async def dump(self) -> None:
        """Log networks, configuration, static ranges and table summaries."""
        logger.info(
            "Monitor state",
            extra={
                "networks": await self.network_tracker.snapshot(),
                "container_root": str(self.container_root),
                "image_root": str(self.image_root),
                "rescan_interval_s": self.settings.rescan_interval_s,
                "refresh_interval_s": self.settings.refresh_interval_s,
                "static_ports": {
                    "base": self.allocator.base,
                    "max": self.allocator.max_port,
                    "per_container": self.allocator.per_container,
                },
                "allocated_ports": [str(r) for r in self.allocator.allocated_ranges()],
                "public_ip": self.public_ip,
                "local_ip": self.local_ip,
                "local_ns": self.local_ns,
            },
        )
        async with self._container_lock:
            containers = [tracked.snapshot.summary() for tracked in self.containers.values()]
        for summary in containers:
            logger.info("Container", extra=summary)
        for summary in await self.image_tracker.summaries():
            logger.info("Image", extra=summary)
