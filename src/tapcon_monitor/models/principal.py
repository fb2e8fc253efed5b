"""Remote principal records as held by the metadata service."""

from typing import Any, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tapcon_monitor.utils import get_logger
from tapcon_monitor.utils.exceptions import PortAliasExistsError, PortAliasNotFoundError

logger = get_logger(__name__)

PROTOCOLS = ("tcp", "udp")

PortRangePair = Tuple[int, int]


def _none_to_empty(value: Any) -> Any:
    # The service omits or nulls out empty collections
    return [] if value is None else value


class IpAlias(BaseModel):
    """An (ns, ip) identity held by a principal."""

    model_config = ConfigDict(frozen=True)

    ns_name: str = Field(..., description="Namespace the IP belongs to")
    ip: str = Field(..., description="IPv4 address")


class ProtocolPorts(BaseModel):
    """Port ranges of one alias bucket, split by protocol."""

    tcp: List[PortRangePair] = Field(default_factory=list)
    udp: List[PortRangePair] = Field(default_factory=list)

    @field_validator("tcp", "udp", mode="before")
    @classmethod
    def _nullable_ranges(cls, value: Any) -> Any:
        return _none_to_empty(value)

    def for_protocol(self, protocol: str) -> List[PortRangePair]:
        """Return the range list for ``protocol``."""
        if protocol == "tcp":
            return self.tcp
        if protocol == "udp":
            return self.udp
        raise ValueError(f"unsupported protocol {protocol}")


class PortAliasBucket(BaseModel):
    """All port ranges a principal holds on one (ns, ip)."""

    ns_name: str
    ip: str
    ports: ProtocolPorts = Field(default_factory=ProtocolPorts)


class PrincipalAliases(BaseModel):
    """IP and port aliases of a principal."""

    ips: List[IpAlias] = Field(default_factory=list)
    ports: List[PortAliasBucket] = Field(default_factory=list)

    @field_validator("ips", "ports", mode="before")
    @classmethod
    def _nullable_lists(cls, value: Any) -> Any:
        return _none_to_empty(value)


class EndorsedStatement(BaseModel):
    """A fact together with whoever endorsed it."""

    endorser: str = ""
    fact: str = ""


class Principal(BaseModel):
    """
    The metadata service's record for one container or image.

    Within one principal IP aliases are unique by (ns, ip) and port ranges are
    unique by (ns, ip, protocol, exact [min, max]). Overlapping ranges that
    differ in either bound are distinct aliases.
    """

    model_config = ConfigDict(populate_by_name=True)

    aliases: PrincipalAliases = Field(default_factory=PrincipalAliases, alias="alias")
    links: List[str] = Field(default_factory=list)
    statements: List[EndorsedStatement] = Field(default_factory=list)

    @field_validator("links", "statements", mode="before")
    @classmethod
    def _nullable_lists(cls, value: Any) -> Any:
        return _none_to_empty(value)

    @field_validator("aliases", mode="before")
    @classmethod
    def _nullable_aliases(cls, value: Any) -> Any:
        return {} if value is None else value

    def find_port_alias(
        self, ns_name: str, ip: str, protocol: str, port_min: int, port_max: int
    ) -> Tuple[int, int]:
        """
        Locate an exact port range.

        The bucket is found by (ns, ip) first, then the exact [min, max] pair
        is searched in the protocol's list.

        Returns:
            (bucket index, range index); range index is -1 when the bucket
            exists without the range, and both are -1 when there is no bucket
            or the protocol is unknown.
        """
        if protocol not in PROTOCOLS:
            logger.warning("Unsupported protocol", extra={"protocol": protocol})
            return -1, -1

        for i, bucket in enumerate(self.aliases.ports):
            if bucket.ns_name != ns_name or bucket.ip != ip:
                continue
            for j, (low, high) in enumerate(bucket.ports.for_protocol(protocol)):
                if low == port_min and high == port_max:
                    return i, j
            return i, -1
        return -1, -1

    def has_port_alias(
        self, ns_name: str, ip: str, protocol: str, port_min: int, port_max: int
    ) -> bool:
        """Whether the exact range is held."""
        return self.find_port_alias(ns_name, ip, protocol, port_min, port_max)[1] != -1

    def add_port_alias(
        self, ns_name: str, ip: str, protocol: str, port_min: int, port_max: int
    ) -> None:
        """
        Add a port range, merging it into the (ns, ip) bucket if one exists.

        Raises:
            PortAliasExistsError: If the exact range is already present
            ValueError: If the protocol is not tcp or udp
        """
        if protocol not in PROTOCOLS:
            raise ValueError(f"unsupported protocol {protocol}")

        i, j = self.find_port_alias(ns_name, ip, protocol, port_min, port_max)
        if j != -1:
            raise PortAliasExistsError(ns_name, ip, protocol, port_min, port_max)

        if i != -1:
            self.aliases.ports[i].ports.for_protocol(protocol).append((port_min, port_max))
            return

        bucket = PortAliasBucket(ns_name=ns_name, ip=ip)
        bucket.ports.for_protocol(protocol).append((port_min, port_max))
        self.aliases.ports.append(bucket)

    def del_port_alias(
        self, ns_name: str, ip: str, protocol: str, port_min: int, port_max: int
    ) -> None:
        """
        Remove an exact port range.

        Raises:
            PortAliasNotFoundError: If the range is not present
        """
        i, j = self.find_port_alias(ns_name, ip, protocol, port_min, port_max)
        if j == -1:
            raise PortAliasNotFoundError(ns_name, ip, protocol, port_min, port_max)
        del self.aliases.ports[i].ports.for_protocol(protocol)[j]

    def has_ip_alias(self, ns_name: str, ip: str) -> bool:
        """Whether the (ns, ip) alias is held."""
        return IpAlias(ns_name=ns_name, ip=ip) in self.aliases.ips

    def has_statement(self, fact: str) -> bool:
        """Whether a statement with exactly this fact text is held."""
        return any(statement.fact == fact for statement in self.statements)
