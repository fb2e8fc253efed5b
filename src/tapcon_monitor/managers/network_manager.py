"""Overlay network membership of this host."""

import asyncio
from typing import Callable, List, Optional, Tuple

from docker.errors import DockerException

from tapcon_monitor.metadata.api import MetadataAPI
from tapcon_monitor.utils import get_logger
from tapcon_monitor.utils.audit_logger import AuditEventType, get_audit_logger
from tapcon_monitor.utils.exceptions import MetadataAPIError

logger = get_logger(__name__)


class NetworkTracker:
    """Tracks visible overlay networks and joins or leaves their namespaces."""

    def __init__(self, api: MetadataAPI, list_networks: Callable[[], List[str]]) -> None:
        """
        Initialize the tracker.

        Args:
            api: Metadata service capability
            list_networks: Blocking callable returning overlay network IDs
        """
        self.api = api
        self._list_networks = list_networks
        self.networks: List[str] = []
        self._lock = asyncio.Lock()
        self.audit_logger = get_audit_logger()

    async def changes(self) -> Optional[Tuple[List[str], List[str]]]:
        """
        Refresh the network set.

        Returns:
            (added, removed), or None when the listing failed and the known
            set was kept
        """
        async with self._lock:
            try:
                current = await asyncio.to_thread(self._list_networks)
            except (DockerException, OSError) as e:
                logger.error("Failed to list overlay networks", extra={"error": str(e)})
                return None

            current = [network for network in current if network]
            added = [network for network in current if network not in self.networks]
            removed = [network for network in self.networks if network not in current]
            self.networks = current
            return added, removed

    async def scan(self) -> None:
        """Join namespaces of new networks and leave those of vanished ones."""
        result = await self.changes()
        if result is None:
            return
        added, removed = result
        if not added and not removed:
            return

        logger.info("Overlay networks changed", extra={"added": added, "removed": removed})

        for ns_name in added:
            try:
                await self.api.create_ns(ns_name)
            except MetadataAPIError as e:
                logger.info(
                    "Failed to create namespace, it may exist already",
                    extra={"ns_name": ns_name, "error": str(e)},
                )
            try:
                await self.api.join_ns(ns_name)
                self.audit_logger.log_event(AuditEventType.NS_JOIN, ns_name=ns_name)
            except MetadataAPIError as e:
                logger.error("Failed to join namespace", extra={"ns_name": ns_name, "error": str(e)})

        for ns_name in removed:
            try:
                await self.api.leave_ns(ns_name)
                self.audit_logger.log_event(AuditEventType.NS_LEAVE, ns_name=ns_name)
            except MetadataAPIError as e:
                logger.error(
                    "Failed to leave namespace", extra={"ns_name": ns_name, "error": str(e)}
                )
            try:
                await self.api.delete_ns(ns_name)
            except MetadataAPIError as e:
                logger.error(
                    "Failed to delete namespace", extra={"ns_name": ns_name, "error": str(e)}
                )

    async def snapshot(self) -> List[str]:
        async with self._lock:
            return list(self.networks)
