"""Test configuration and fixtures."""

import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

from tapcon_monitor.config import Settings
from tapcon_monitor.models.principal import (
    EndorsedStatement,
    IpAlias,
    Principal,
)
from tapcon_monitor.utils.exceptions import (
    MetadataAPIError,
    PortAliasError,
    PrincipalNotFoundError,
    SandboxError,
)
from tapcon_monitor.utils.fs_watcher import FsEvent

REGULAR_PORTS = [(1000, 2000), (7077, 7077), (8088, 8088)]


def make_principal(
    ips: Optional[List[tuple]] = None,
    ports: Optional[List[tuple]] = None,
    links: Optional[List[str]] = None,
    statements: Optional[List[str]] = None,
) -> Principal:
    """Build a principal from plain tuples."""
    principal = Principal()
    for ns_name, ip in ips or []:
        principal.aliases.ips.append(IpAlias(ns_name=ns_name, ip=ip))
    for alias in ports or []:
        principal.add_port_alias(*alias)
    principal.links.extend(links or [])
    for fact in statements or []:
        principal.statements.append(EndorsedStatement(endorser="self", fact=fact))
    return principal


def seeded_principals() -> Dict[str, Principal]:
    """Principals present on the fake metadata service at the start of each test."""
    regular_ports = [
        (ns_name, ip, protocol, low, high)
        for ns_name, ip in (("default", "192.168.0.1"), ("localns", "172.16.0.1"))
        for protocol in ("tcp", "udp")
        for low, high in REGULAR_PORTS
    ]
    return {
        "regular": make_principal(
            ips=[("overlay", "10.0.0.1")],
            ports=regular_ports,
            links=["image-1"],
            statements=['containerFact("regular", "image-1")'],
        ),
        "iponly": make_principal(ips=[("overlay", "10.0.0.2")]),
        "portonly": make_principal(ports=[("default", "192.168.0.1", "tcp", 8080, 8080)]),
        "stmtonly": make_principal(statements=['containerFact("stmtonly", "image-2")']),
        "linkonly": make_principal(links=["image-2"]),
        "empty": Principal(),
    }


def principal_view(principal: Principal) -> dict:
    """Order insensitive view of a principal for comparisons."""
    ports = set()
    for bucket in principal.aliases.ports:
        for protocol in ("tcp", "udp"):
            for low, high in bucket.ports.for_protocol(protocol):
                ports.add((bucket.ns_name, bucket.ip, protocol, low, high))
    return {
        "ips": {(alias.ns_name, alias.ip) for alias in principal.aliases.ips},
        "ports": ports,
        "links": set(principal.links),
        "facts": {statement.fact for statement in principal.statements},
    }


class FakeMetadataAPI:
    """In-memory metadata service recording every call."""

    def __init__(self) -> None:
        self.principals: Dict[str, Principal] = seeded_principals()
        self.image_proofs: Dict[str, List[str]] = {}
        self.namespaces: Set[str] = set()
        self.joined: Set[str] = set()
        self.calls: List[tuple] = []
        self.failing: Set[str] = set()
        self.public_ip = "192.168.0.1"
        self.local_ip = "172.16.0.1"
        self.local_ns = "localns"

    def _call(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        if operation in self.failing:
            raise MetadataAPIError(operation, "injected failure")

    def _get(self, operation: str, principal: str) -> Principal:
        if principal not in self.principals:
            raise MetadataAPIError(operation, f"unknown principal {principal}")
        return self.principals[principal]

    def operations(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]

    async def create_principal(self, principal: str) -> None:
        self._call("create_principal", principal)
        if principal in self.principals:
            raise MetadataAPIError("create_principal", "principal exists")
        self.principals[principal] = Principal()

    async def delete_principal(self, principal: str) -> None:
        self._call("delete_principal", principal)
        if self.principals.pop(principal, None) is None:
            raise MetadataAPIError("delete_principal", "principal not found")

    async def list_principals(self) -> Set[str]:
        self._call("list_principals")
        return set(self.principals)

    async def show_principal(self, principal: str) -> Principal:
        self._call("show_principal", principal)
        if principal not in self.principals:
            raise PrincipalNotFoundError(principal)
        return self.principals[principal].model_copy(deep=True)

    async def create_ip_alias(self, principal: str, ns_name: str, ip: str) -> None:
        self._call("create_ip_alias", principal, ns_name, ip)
        self._get("create_ip_alias", principal).aliases.ips.append(IpAlias(ns_name=ns_name, ip=ip))

    async def delete_ip_alias(self, principal: str, ns_name: str, ip: str) -> None:
        self._call("delete_ip_alias", principal, ns_name, ip)
        aliases = self._get("delete_ip_alias", principal).aliases
        alias = IpAlias(ns_name=ns_name, ip=ip)
        if alias not in aliases.ips:
            raise MetadataAPIError("delete_ip_alias", "alias not found")
        aliases.ips.remove(alias)

    async def create_port_alias(self, principal, ns_name, ip, protocol, port_min, port_max) -> None:
        self._call("create_port_alias", principal, ns_name, ip, protocol, port_min, port_max)
        try:
            self._get("create_port_alias", principal).add_port_alias(
                ns_name, ip, protocol, port_min, port_max
            )
        except PortAliasError as e:
            raise MetadataAPIError("create_port_alias", str(e)) from e

    async def delete_port_alias(self, principal, ns_name, ip, protocol, port_min, port_max) -> None:
        self._call("delete_port_alias", principal, ns_name, ip, protocol, port_min, port_max)
        try:
            self._get("delete_port_alias", principal).del_port_alias(
                ns_name, ip, protocol, port_min, port_max
            )
        except PortAliasError as e:
            raise MetadataAPIError("delete_port_alias", str(e)) from e

    async def post_proof(self, principal: str, statements: List[str]) -> None:
        self._call("post_proof", principal, list(statements))
        self.image_proofs.setdefault(principal, []).extend(statements)

    async def post_proof_for_child(self, principal: str, statements: List[str]) -> None:
        self._call("post_proof_for_child", principal, list(statements))
        target = self._get("post_proof_for_child", principal)
        for fact in statements:
            target.statements.append(EndorsedStatement(endorser="self", fact=fact))

    async def link_proof(self, principal: str, dependencies: List[str]) -> None:
        self._call("link_proof", principal, list(dependencies))

    async def link_proof_for_child(self, principal: str, dependencies: List[str]) -> None:
        self._call("link_proof_for_child", principal, list(dependencies))
        self._get("link_proof_for_child", principal).links.extend(dependencies)

    async def create_ns(self, ns_name: str) -> None:
        self._call("create_ns", ns_name)
        if ns_name in self.namespaces:
            raise MetadataAPIError("create_ns", "namespace exists")
        self.namespaces.add(ns_name)

    async def delete_ns(self, ns_name: str) -> None:
        self._call("delete_ns", ns_name)
        self.namespaces.discard(ns_name)

    async def join_ns(self, ns_name: str) -> None:
        self._call("join_ns", ns_name)
        self.joined.add(ns_name)

    async def leave_ns(self, ns_name: str) -> None:
        self._call("leave_ns", ns_name)
        self.joined.discard(ns_name)

    async def my_public_ip(self) -> str:
        self._call("my_public_ip")
        return self.public_ip

    async def my_local_ip(self) -> str:
        self._call("my_local_ip")
        return self.local_ip

    async def my_ns(self) -> str:
        self._call("my_ns")
        return self.local_ns


class FakeSandbox:
    """Sandbox recording calls instead of touching the packet filter."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.chains: Set[str] = set()
        self.mappings: Dict[str, List[tuple]] = {}
        self.failing: Set[str] = set()

    def _call(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        if operation in self.failing:
            raise SandboxError([operation, *map(str, args)], "injected failure")

    async def setup_container_chain(self, container_id: str) -> None:
        self._call("setup_container_chain", container_id)
        self.chains.add(container_id)

    async def remove_container_chain(self, container_id: str) -> None:
        self._call("remove_container_chain", container_id)
        self.chains.discard(container_id)
        self.mappings.pop(container_id, None)

    async def setup_static_port_mapping(self, container_id, container_ip, port_min, port_max) -> None:
        self._call("setup_static_port_mapping", container_id, container_ip, port_min, port_max)
        self.mappings.setdefault(container_id, []).append((container_ip, port_min, port_max))

    async def clear_static_port_mapping(self, container_id: str) -> None:
        self._call("clear_static_port_mapping", container_id)
        self.mappings.pop(container_id, None)


class FakeWatcher:
    """Watcher whose notifications are injected by the test."""

    def __init__(self) -> None:
        self.events: asyncio.Queue = asyncio.Queue()
        self.errors: asyncio.Queue = asyncio.Queue()
        self.watches: Set[Path] = set()
        self.started = False
        self.stopped = False
        self.unwatchable: Set[Path] = set()

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def add_watch(self, path: Path) -> None:
        if path in self.unwatchable:
            raise OSError(f"cannot watch {path}")
        self.watches.add(path)

    def remove_watch(self, path: Path) -> None:
        self.watches.discard(path)

    def watched(self) -> List[Path]:
        return list(self.watches)

    def emit(self, path: Path, event_type: str, is_directory: bool = False) -> None:
        self.events.put_nowait(FsEvent(path, event_type, is_directory))


def write_container(
    container_root: Path,
    container_id: str,
    running: bool = True,
    image: str = "sha256:image1234567890abcdef",
    networks: Optional[Dict[str, tuple]] = None,
    ports: Optional[Dict[str, List[str]]] = None,
    sandbox_key: str = "/var/run/docker/netns/abc",
    network_mode: str = "bridge",
    network_disabled: bool = False,
) -> Path:
    """Write the two runtime config artifacts of a container directory."""
    root = container_root / container_id
    root.mkdir(parents=True, exist_ok=True)
    if networks is None:
        networks = {"bridge": ("bridge-net-id", "172.17.0.2")}
    config = {
        "ID": container_id,
        "Image": image,
        "State": {"Running": running},
        "Config": {"NetworkDisabled": network_disabled},
        "NetworkSettings": {
            "SandboxKey": sandbox_key,
            "Networks": {
                name: {"NetworkID": network_id, "IPAddress": ip}
                for name, (network_id, ip) in networks.items()
            },
            "Ports": {
                port: [{"HostIp": "0.0.0.0", "HostPort": host_port} for host_port in host_ports]
                for port, host_ports in (ports or {}).items()
            },
        },
    }
    (root / "config.v2.json").write_text(json.dumps(config))
    (root / "hostconfig.json").write_text(json.dumps({"NetworkMode": network_mode}))
    return root


@pytest.fixture
def fake_api():
    """Fake metadata service with seeded principals."""
    return FakeMetadataAPI()


@pytest.fixture
def fake_sandbox():
    """Recording sandbox."""
    return FakeSandbox()


@pytest.fixture
def docker_root(tmp_path):
    """Temporary runtime state root with empty container and image directories."""
    (tmp_path / "containers").mkdir()
    image_root = tmp_path / "image" / "overlay2"
    (image_root / "imagedb" / "content" / "sha256").mkdir(parents=True)
    (image_root / "repositories.json").write_text(json.dumps({"Repositories": {}}))
    return tmp_path


@pytest.fixture
def test_settings(docker_root):
    """Settings pointed at the temporary runtime state root."""
    return Settings(
        docker_root=str(docker_root),
        rescan_interval_s=3600,
        refresh_interval_s=0,
        static_port_base=15000,
        static_port_max=15300,
        port_per_container=100,
        sandbox_mode="dry-run",
        drain_grace_s=1,
    )


@pytest.fixture
def container_factory(test_settings):
    """Write container directories under the temporary container root."""

    def factory(container_id: str, **kwargs) -> Path:
        return write_container(test_settings.container_root, container_id, **kwargs)

    return factory
