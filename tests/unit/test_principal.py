"""Unit tests for the principal model."""

import pytest

from tapcon_monitor.models.principal import IpAlias, Principal
from tapcon_monitor.utils.exceptions import PortAliasExistsError, PortAliasNotFoundError


@pytest.fixture
def principal():
    """Principal with one bucket holding tcp ranges."""
    p = Principal()
    p.add_port_alias("default", "192.168.0.1", "tcp", 1000, 2000)
    p.add_port_alias("default", "192.168.0.1", "tcp", 7077, 7077)
    return p


def test_parse_wire_format():
    """Test parsing the service's JSON principal."""
    data = {
        "alias": {
            "ips": [{"ns_name": "overlay", "ip": "10.0.0.1"}],
            "ports": [
                {
                    "ns_name": "default",
                    "ip": "192.168.0.1",
                    "ports": {"tcp": [[1000, 2000]], "udp": None},
                }
            ],
        },
        "links": ["image-1"],
        "statements": [{"endorser": "self", "fact": 'containerFact("a", "b")'}],
    }

    principal = Principal.model_validate(data)

    assert principal.aliases.ips == [IpAlias(ns_name="overlay", ip="10.0.0.1")]
    assert principal.aliases.ports[0].ports.tcp == [(1000, 2000)]
    assert principal.aliases.ports[0].ports.udp == []
    assert principal.links == ["image-1"]
    assert principal.has_statement('containerFact("a", "b")')


def test_parse_null_collections():
    """Test that null collections parse as empty."""
    principal = Principal.model_validate(
        {"alias": {"ips": None, "ports": None}, "links": None, "statements": None}
    )

    assert principal.aliases.ips == []
    assert principal.aliases.ports == []
    assert principal.links == []
    assert principal.statements == []


def test_parse_missing_alias():
    """Test that a principal without aliases parses."""
    principal = Principal.model_validate({"alias": None})
    assert principal.aliases.ips == []


def test_find_port_alias_exact(principal):
    """Test finding an exact range."""
    assert principal.find_port_alias("default", "192.168.0.1", "tcp", 7077, 7077) == (0, 1)


def test_find_port_alias_bucket_without_range(principal):
    """Test that a bucket hit without the range returns -1 for the range."""
    assert principal.find_port_alias("default", "192.168.0.1", "tcp", 1000, 1999) == (0, -1)
    assert principal.find_port_alias("default", "192.168.0.1", "udp", 1000, 2000) == (0, -1)


def test_find_port_alias_no_bucket(principal):
    """Test that an unknown (ns, ip) returns -1 for both indexes."""
    assert principal.find_port_alias("other", "192.168.0.1", "tcp", 1000, 2000) == (-1, -1)


def test_find_port_alias_unknown_protocol(principal):
    """Test that an unknown protocol is a miss."""
    assert principal.find_port_alias("default", "192.168.0.1", "sctp", 1000, 2000) == (-1, -1)


def test_add_port_alias_merges_into_bucket(principal):
    """Test that ranges on the same (ns, ip) share a bucket."""
    principal.add_port_alias("default", "192.168.0.1", "udp", 1000, 2000)

    assert len(principal.aliases.ports) == 1
    assert principal.aliases.ports[0].ports.udp == [(1000, 2000)]


def test_add_port_alias_new_bucket(principal):
    """Test that a new (ns, ip) gets its own bucket."""
    principal.add_port_alias("localns", "172.16.0.1", "tcp", 1000, 2000)

    assert len(principal.aliases.ports) == 2
    assert principal.has_port_alias("localns", "172.16.0.1", "tcp", 1000, 2000)


def test_add_port_alias_overlapping_is_distinct(principal):
    """Test that an overlapping range with different bounds is a separate alias."""
    principal.add_port_alias("default", "192.168.0.1", "tcp", 1000, 1999)

    assert principal.aliases.ports[0].ports.tcp == [(1000, 2000), (7077, 7077), (1000, 1999)]


def test_add_port_alias_duplicate(principal):
    """Test that an exact duplicate is rejected."""
    with pytest.raises(PortAliasExistsError):
        principal.add_port_alias("default", "192.168.0.1", "tcp", 1000, 2000)


def test_add_port_alias_bad_protocol(principal):
    """Test that an unknown protocol is rejected."""
    with pytest.raises(ValueError):
        principal.add_port_alias("default", "192.168.0.1", "icmp", 1, 1)


def test_del_port_alias(principal):
    """Test removing an exact range."""
    principal.del_port_alias("default", "192.168.0.1", "tcp", 1000, 2000)

    assert principal.aliases.ports[0].ports.tcp == [(7077, 7077)]


def test_del_port_alias_udp():
    """Test removing a udp range."""
    principal = Principal()
    principal.add_port_alias("default", "192.168.0.1", "udp", 53, 53)

    principal.del_port_alias("default", "192.168.0.1", "udp", 53, 53)

    assert not principal.has_port_alias("default", "192.168.0.1", "udp", 53, 53)


def test_del_port_alias_missing(principal):
    """Test that removing an absent range raises."""
    with pytest.raises(PortAliasNotFoundError):
        principal.del_port_alias("default", "192.168.0.1", "tcp", 1000, 1999)


def test_has_ip_alias():
    """Test IP alias membership on (ns, ip)."""
    principal = Principal()
    principal.aliases.ips.append(IpAlias(ns_name="overlay", ip="10.0.0.1"))

    assert principal.has_ip_alias("overlay", "10.0.0.1")
    assert not principal.has_ip_alias("other", "10.0.0.1")
