"""Manager modules for container, image and network tracking."""

from .alias_diff import PortAlias, diff_ip_aliases, diff_port_aliases
from .image_manager import ImageTracker, TrackedImage
from .monitor import ContainerEvent, FsEventKind, Monitor, TrackedContainer
from .network_manager import NetworkTracker
from .reconcile_cache import ReconcileCache
from .shutdown_coordinator import ShutdownCoordinator, get_shutdown_coordinator
from .snapshot_tracker import ContainerSnapshot, InstanceIp
from .static_ports import PortRange, StaticPortAllocator

__all__ = [
    "ContainerEvent",
    "ContainerSnapshot",
    "FsEventKind",
    "ImageTracker",
    "InstanceIp",
    "Monitor",
    "NetworkTracker",
    "PortAlias",
    "PortRange",
    "ReconcileCache",
    "ShutdownCoordinator",
    "StaticPortAllocator",
    "TrackedContainer",
    "TrackedImage",
    "diff_ip_aliases",
    "diff_port_aliases",
    "get_shutdown_coordinator",
]
