"""Per-container snapshot of on-disk runtime state."""

import os
from pathlib import Path
from typing import Awaitable, Callable, List, NamedTuple, Optional

from tapcon_monitor.managers.alias_diff import PortAlias
from tapcon_monitor.managers.static_ports import PortRange
from tapcon_monitor.models.runtime import CONFIG_FILES, RuntimeConfig, load_runtime_config
from tapcon_monitor.utils import get_logger
from tapcon_monitor.utils.exceptions import NamespaceNotFoundError, RuntimeConfigError
from tapcon_monitor.utils.ids import strip_digest_prefix, truncate_id

logger = get_logger(__name__)

DEFAULT_NS = "default"
HOST_CONNECTED_NETWORKS = {"bridge"}
PORT_PROTOCOLS = ("tcp", "udp")

ListIps = Callable[[str], Awaitable[List[str]]]


class InstanceIp(NamedTuple):
    """A network identity of the host instance."""

    ns_name: str
    ip: str


class ContainerSnapshot:
    """
    Locally observed state of one container.

    A snapshot with no parsed config is unloaded. Only the owning keeper
    mutates a snapshot.
    """

    def __init__(
        self,
        container_id: str,
        root: Path,
        list_ips: ListIps,
        instance_ips: Optional[List[InstanceIp]] = None,
    ) -> None:
        """
        Initialize a snapshot.

        Args:
            container_id: Container directory name
            root: Container directory
            list_ips: Coroutine listing IPv4 addresses of a namespace handle
            instance_ips: Host identities exposed ports are published on
        """
        self.container_id = container_id
        self.root = root
        self.config: Optional[RuntimeConfig] = None
        self.ips: List[str] = []
        self.static_range: Optional[PortRange] = None
        self.instance_ips: List[InstanceIp] = list(instance_ips or [])
        self.last_update = 0
        self._list_ips = list_ips

    @property
    def tapcon_id(self) -> str:
        """Principal identifier of this container."""
        return truncate_id(self.container_id)

    @property
    def image_id(self) -> str:
        """Principal identifier of this container's image, empty when unloaded."""
        if self.config is None:
            return ""
        return strip_digest_prefix(self.config.image)

    def _drop_config(self) -> None:
        self.config = None
        self.ips = []

    def _config_paths(self) -> List[Path]:
        return [self.root / name for name in CONFIG_FILES]

    def _artifact_mtimes(self) -> Optional[List[int]]:
        mtimes = []
        for path in self._config_paths():
            try:
                mtimes.append(os.stat(path).st_mtime_ns)
            except OSError:
                return None
        return mtimes

    def is_stale(self) -> bool:
        """
        Whether the on-disk config needs loading.

        A missing artifact means there is nothing to load yet and drops the
        cached config.
        """
        if self.config is None:
            return True

        mtimes = self._artifact_mtimes()
        if mtimes is None:
            self._drop_config()
            return False

        if any(self.last_update < mtime for mtime in mtimes):
            logger.debug("Container config is newer", extra={"container_id": self.tapcon_id})
            return True
        return False

    def _record_timestamp(self) -> None:
        mtimes = self._artifact_mtimes()
        if mtimes is None:
            logger.warning(
                "Container config gone during loading",
                extra={"container_id": self.tapcon_id, "root": str(self.root)},
            )
            self._drop_config()
            return
        self.last_update = max(mtimes)

    async def reload(self) -> bool:
        """
        Reload the on-disk config when stale.

        The artifact timestamps are recorded before parsing; a parse failure
        restores the previous timestamp so the next check retries.

        Returns:
            True if a new config was loaded
        """
        if not self.is_stale():
            return False

        old_timestamp = self.last_update
        self._record_timestamp()
        try:
            config = load_runtime_config(self.root, self.container_id)
        except RuntimeConfigError as e:
            logger.warning(
                "Error loading container config",
                extra={"container_id": self.tapcon_id, "error": str(e)},
            )
            self.last_update = old_timestamp
            return False

        self.config = config

        if not config.running:
            self.ips = []
            return True

        if not config.sandbox_key:
            self.ips = []
            return True

        ips = await self._list_ips(config.sandbox_key)
        if not ips and not config.network_disabled:
            logger.info(
                "Running container has no IP yet",
                extra={"container_id": self.tapcon_id, "sandbox_key": config.sandbox_key},
            )
            self.ips = []
            return True

        self.ips = ips
        return True

    def is_running(self) -> bool:
        """Whether the cached config reports a running container."""
        if self.config is None:
            return False
        return self.config.running

    def resolve_namespace(self, ip: str) -> str:
        """
        Find the attached network that owns ``ip``.

        Returns:
            Network ID used as the namespace name

        Raises:
            NamespaceNotFoundError: If no attached network holds the IP
        """
        if self.config is not None:
            for network in self.config.networks.values():
                if network.ip_address == ip:
                    return network.network_id
        raise NamespaceNotFoundError(ip)

    def owns_ip(self, ip: str) -> bool:
        """
        Whether ``ip`` is a container address reachable from the host.

        Addresses on user defined networks are not visible by network name,
        so any discovered address counts for those containers.
        """
        if self.config is None:
            return False

        for name, network in self.config.networks.items():
            if network.ip_address == ip and name in HOST_CONNECTED_NETWORKS:
                return True

        if self.config.host_config.is_user_defined_network():
            return ip in self.ips
        return False

    def owned_ips(self) -> List[str]:
        """Discovered addresses that static mappings are installed for."""
        return [ip for ip in self.ips if self.owns_ip(ip)]

    def facts(self) -> List[str]:
        """Statements this container asserts about itself."""
        if self.config is None:
            return []
        return [f'containerFact("{self.tapcon_id}", "{self.image_id}")']

    def ports(self) -> List[PortAlias]:
        """
        Port aliases this container requires.

        One single-port range per published host port and one static range,
        each repeated per protocol and per host instance identity.
        """
        if self.config is None:
            return []

        result: List[PortAlias] = []
        for host_port in self.config.host_ports():
            try:
                port = int(host_port)
            except ValueError:
                logger.warning(
                    "Cannot parse host port",
                    extra={"container_id": self.tapcon_id, "host_port": host_port},
                )
                continue
            for protocol in PORT_PROTOCOLS:
                for instance in self.instance_ips:
                    result.append(PortAlias(instance.ns_name, instance.ip, protocol, port, port))

        if self.static_range is not None and self.static_range.min != 0:
            for protocol in PORT_PROTOCOLS:
                for instance in self.instance_ips:
                    result.append(
                        PortAlias(
                            instance.ns_name,
                            instance.ip,
                            protocol,
                            self.static_range.min,
                            self.static_range.max,
                        )
                    )
        return result

    def summary(self) -> dict:
        """Diagnostic view of this snapshot."""
        if self.config is None:
            return {"id": self.tapcon_id, "root": str(self.root), "loaded": False}
        return {
            "id": self.tapcon_id,
            "root": str(self.root),
            "loaded": True,
            "running": self.config.running,
            "ips": list(self.ips),
            "static_ports": str(self.static_range) if self.static_range else None,
        }
