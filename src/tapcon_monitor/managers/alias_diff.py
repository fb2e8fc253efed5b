"""Set differences between locally required aliases and a principal's aliases."""

from typing import Iterable, List, NamedTuple, Tuple

from tapcon_monitor.models.principal import IpAlias, Principal


class PortAlias(NamedTuple):
    """One required port range on a (namespace, ip) for one protocol."""

    ns_name: str
    ip: str
    protocol: str
    min: int
    max: int


def diff_ip_aliases(
    local: Iterable[IpAlias], remote: Iterable[IpAlias]
) -> Tuple[List[IpAlias], List[IpAlias]]:
    """
    Compare IP alias sets on (ns, ip) equality.

    Args:
        local: Aliases observed on the container
        remote: Aliases the principal holds

    Returns:
        (to_create, to_delete), each in input order
    """
    local = list(local)
    remote = list(remote)
    remote_set = set(remote)
    local_set = set(local)

    to_create = [alias for alias in local if alias not in remote_set]
    to_delete = [alias for alias in remote if alias not in local_set]
    return to_create, to_delete


def diff_port_aliases(
    local: Iterable[PortAlias], principal: Principal
) -> Tuple[List[PortAlias], List[PortAlias], List[PortAlias]]:
    """
    Partition port aliases into client only, server only and mutual.

    Ranges match only on exact [min, max] equality. A local [1000, 2000] and
    a remote [1000, 1999] are unrelated: one is created and the other deleted.

    Args:
        local: Port aliases the container requires
        principal: Principal holding the remote aliases

    Returns:
        (client_only, server_only, mutual)
    """
    local = list(local)
    local_set = set(local)

    client_only: List[PortAlias] = []
    mutual: List[PortAlias] = []
    for alias in local:
        if principal.has_port_alias(*alias):
            mutual.append(alias)
        else:
            client_only.append(alias)

    server_only: List[PortAlias] = []
    for bucket in principal.aliases.ports:
        for protocol, ranges in (("tcp", bucket.ports.tcp), ("udp", bucket.ports.udp)):
            for low, high in ranges:
                alias = PortAlias(bucket.ns_name, bucket.ip, protocol, low, high)
                if alias not in local_set:
                    server_only.append(alias)

    return client_only, server_only, mutual
