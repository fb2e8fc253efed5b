"""Capability interface of the metadata service."""

from typing import List, Protocol, Set

from tapcon_monitor.models.principal import Principal


class MetadataAPI(Protocol):
    """
    Operations the monitor needs from the metadata service.

    Every call either returns or raises ``MetadataAPIError``. Callers must
    only branch on success or failure, never on the error text.
    ``show_principal`` raises ``PrincipalNotFoundError`` for unknown
    principals.
    """

    async def create_principal(self, principal: str) -> None: ...

    async def delete_principal(self, principal: str) -> None: ...

    async def list_principals(self) -> Set[str]: ...

    async def show_principal(self, principal: str) -> Principal: ...

    async def create_ip_alias(self, principal: str, ns_name: str, ip: str) -> None: ...

    async def delete_ip_alias(self, principal: str, ns_name: str, ip: str) -> None: ...

    async def create_port_alias(
        self, principal: str, ns_name: str, ip: str, protocol: str, port_min: int, port_max: int
    ) -> None: ...

    async def delete_port_alias(
        self, principal: str, ns_name: str, ip: str, protocol: str, port_min: int, port_max: int
    ) -> None: ...

    async def post_proof(self, principal: str, statements: List[str]) -> None: ...

    async def post_proof_for_child(self, principal: str, statements: List[str]) -> None: ...

    async def link_proof(self, principal: str, dependencies: List[str]) -> None: ...

    async def link_proof_for_child(self, principal: str, dependencies: List[str]) -> None: ...

    async def create_ns(self, ns_name: str) -> None: ...

    async def delete_ns(self, ns_name: str) -> None: ...

    async def join_ns(self, ns_name: str) -> None: ...

    async def leave_ns(self, ns_name: str) -> None: ...

    async def my_public_ip(self) -> str: ...

    async def my_local_ip(self) -> str: ...

    async def my_ns(self) -> str: ...
