import ipaddress
import socket
from unittest.mock import patch

import pytest

from tuicproto.acl import (
    AclAddress,
    AclAddressKind,
    AclPortEntry,
    AclPorts,
    AclPortSpec,
    AclProtocol,
    AclRule,
)

K = AclAddressKind


def rule(addr, ports=None, hijack=None, outbound="default"):
    return AclRule(outbound=outbound, addr=addr, ports=ports, hijack=hijack)


def test_ip_exact_match():
    r = rule(AclAddress(K.IP, "203.0.113.7"))
    assert r.matches("203.0.113.7", 12345, True)
    assert not r.matches("203.0.113.8", 12345, True)
    assert not r.matches("2001:db8::1", 12345, True)


def test_cidr_match():
    r = rule(AclAddress(K.CIDR, "10.0.0.0/8"))
    assert r.matches("10.1.2.3", 0, False)
    assert not r.matches("192.0.2.1", 0, False)
    assert not r.matches("::1", 0, False)


def test_domain_match_localhost():
    r = rule(AclAddress(K.DOMAIN, "localhost"))
    assert r.matches("127.0.0.1", 0, True)
    assert r.matches("::1", 0, True)
    assert not r.matches("8.8.8.8", 0, True)


def test_wildcard_domain_match_suffix_localhost():
    r = rule(AclAddress(K.WILDCARD_DOMAIN, "suffix:localhost"))
    assert r.matches("127.0.0.1", 0, True)
    assert r.matches("::1", 0, True)
    assert not r.matches("8.8.8.8", 0, True)


def test_domain_match_uses_resolution():
    infos = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("192.0.2.5", 0))]
    with patch("socket.getaddrinfo", return_value=infos) as resolver:
        r = rule(AclAddress(K.DOMAIN, "host.example.com"))
        assert r.matches("192.0.2.5", 80, True)
        assert not r.matches("192.0.2.6", 80, True)
    assert resolver.call_args[0][0] == "host.example.com"


def test_wildcard_domain_strips_prefix():
    infos = [(socket.AF_INET6, socket.SOCK_STREAM, 6, "", ("2001:db8::5", 0, 0, 0))]
    with patch("socket.getaddrinfo", return_value=infos) as resolver:
        r = rule(AclAddress(K.WILDCARD_DOMAIN, "*.example.com"))
        assert r.matches("2001:db8::5", 80, True)
    assert resolver.call_args[0][0] == "example.com"


def test_domain_resolution_failure_does_not_match():
    with patch("socket.getaddrinfo", side_effect=socket.gaierror("no such host")):
        r = rule(AclAddress(K.DOMAIN, "missing.example.com"))
        assert not r.matches("192.0.2.1", 80, True)


def test_localhost_match():
    r = rule(AclAddress(K.LOCALHOST))
    assert r.matches("127.0.0.1", 0, True)
    assert r.matches("::1", 0, True)
    assert not r.matches("192.0.2.1", 0, True)


@pytest.mark.parametrize(
    "ip,expected",
    [
        ("10.0.0.0", True),
        ("10.0.0.1", True),
        ("10.255.255.255", True),
        ("172.16.0.0", True),
        ("172.16.0.1", True),
        ("172.31.255.255", True),
        ("172.15.255.255", False),
        ("172.32.0.0", False),
        ("192.168.0.0", True),
        ("192.168.1.1", True),
        ("192.168.255.255", True),
        ("169.254.0.0", True),
        ("169.254.1.1", True),
        ("169.254.255.255", True),
        ("8.8.8.8", False),
        ("1.1.1.1", False),
        ("203.0.113.1", False),
    ],
)
def test_private_match_ipv4(ip, expected):
    assert rule(AclAddress(K.PRIVATE)).matches(ip, 0, True) is expected


@pytest.mark.parametrize(
    "ip,expected",
    [
        ("fc00::1", True),
        ("fd00::1", True),
        ("fdff:ffff:ffff:ffff:ffff:ffff:ffff:ffff", True),
        ("fe80::1", True),
        ("fe80::dead:beef", True),
        ("febf:ffff:ffff:ffff:ffff:ffff:ffff:ffff", True),
        ("2001:db8::1", False),
        ("2606:4700:4700::1111", False),
    ],
)
def test_private_match_ipv6(ip, expected):
    assert rule(AclAddress(K.PRIVATE)).matches(ip, 0, True) is expected


def test_any_match():
    r = rule(AclAddress(K.ANY))
    assert r.matches("203.0.113.1", 0, True)
    assert r.matches("2001:db8::42", 0, True)


def test_default_address_is_any():
    r = AclRule(outbound="proxy")
    assert r.addr.kind is K.ANY
    assert r.matches("198.51.100.9", 1, False)


def test_ipv6_cidr_match():
    r = rule(AclAddress(K.CIDR, "2001:db8::/32"))
    assert r.matches("2001:db8::1", 80, True)
    assert r.matches("2001:db8:1::1", 80, True)
    assert not r.matches("2001:db9::1", 80, True)
    assert not r.matches("2002:db8::1", 80, True)
    assert not r.matches("10.0.0.1", 80, True)


def test_cidr_slash_32():
    r = rule(AclAddress(K.CIDR, "192.168.1.100/32"))
    assert r.matches("192.168.1.100", 80, True)
    assert not r.matches("192.168.1.101", 80, True)
    assert not r.matches("192.168.1.99", 80, True)


def test_cidr_slash_0():
    r = rule(AclAddress(K.CIDR, "0.0.0.0/0"))
    assert r.matches("1.2.3.4", 80, True)
    assert r.matches("192.168.1.1", 80, True)
    assert r.matches("255.255.255.255", 80, True)
    assert not r.matches("::1", 80, True)


def test_invalid_ip_address():
    r = rule(AclAddress(K.IP, "not.an.ip.address"))
    assert not r.matches("1.2.3.4", 80, True)
    assert not r.matches("::1", 80, True)


def test_invalid_cidr():
    r = rule(AclAddress(K.CIDR, "invalid/cidr"))
    assert not r.matches("10.0.0.1", 80, True)
    assert not r.matches("2001:db8::1", 80, True)


def test_loopback_addresses():
    r = rule(AclAddress(K.LOCALHOST))
    assert r.matches("127.0.0.1", 80, True)
    assert r.matches("127.0.0.2", 80, True)
    assert r.matches("127.255.255.255", 80, True)
    assert r.matches("::1", 80, True)
    assert not r.matches("192.168.1.1", 80, True)
    assert not r.matches("2001:db8::1", 80, True)


def test_matches_accepts_ipaddress_objects():
    r = rule(AclAddress(K.IP, "192.0.2.10"))
    assert r.matches(ipaddress.ip_address("192.0.2.10"), 80, True)


@pytest.mark.parametrize("port", [0, 22, 80, 443, 65535])
def test_ports_none_matches_everything(port):
    r = rule(AclAddress(K.ANY))
    assert r.matches("1.2.3.4", port, True)
    assert r.matches("1.2.3.4", port, False)


def test_single_port_without_protocol():
    r = rule(AclAddress(K.ANY), AclPorts([AclPortEntry(AclPortSpec(8080))]))
    assert r.matches("10.0.0.1", 8080, True)
    assert r.matches("10.0.0.1", 8080, False)
    assert not r.matches("10.0.0.1", 80, True)
    assert not r.matches("10.0.0.1", 443, False)


def test_port_range_with_protocol():
    ports = AclPorts(
        [
            AclPortEntry(AclPortSpec(1000, 1005), AclProtocol.TCP),
            AclPortEntry(AclPortSpec(2000, 2002), AclProtocol.UDP),
        ]
    )
    r = rule(AclAddress(K.ANY), ports)
    assert r.matches("8.8.8.8", 1003, True)
    assert not r.matches("8.8.8.8", 999, True)
    assert r.matches("8.8.8.8", 2001, False)
    assert not r.matches("8.8.8.8", 1999, False)


def test_port_range_boundary():
    r = rule(AclAddress(K.ANY), AclPorts([AclPortEntry(AclPortSpec(100, 200))]))
    assert r.matches("1.1.1.1", 100, True)
    assert r.matches("1.1.1.1", 200, True)
    assert not r.matches("1.1.1.1", 99, True)
    assert not r.matches("1.1.1.1", 201, True)
    assert r.matches("1.1.1.1", 150, False)


def test_edge_case_port_zero():
    r = rule(AclAddress(K.ANY), AclPorts([AclPortEntry(AclPortSpec(0))]))
    assert r.matches("1.2.3.4", 0, True)
    assert not r.matches("1.2.3.4", 1, True)


def test_edge_case_port_max():
    r = rule(AclAddress(K.ANY), AclPorts([AclPortEntry(AclPortSpec(65535))]))
    assert r.matches("1.2.3.4", 65535, True)
    assert not r.matches("1.2.3.4", 65534, True)


def test_address_and_port_combination():
    ports = AclPorts([AclPortEntry(AclPortSpec(22), AclProtocol.TCP)])
    r = rule(AclAddress(K.IP, "192.0.2.10"), ports)
    assert r.matches("192.0.2.10", 22, True)
    assert not r.matches("192.0.2.11", 22, True)
    assert not r.matches("192.0.2.10", 23, True)
    assert not r.matches("192.0.2.10", 22, False)


def test_ports_defined_but_protocol_mismatch():
    r = rule(AclAddress(K.ANY), AclPorts([AclPortEntry(AclPortSpec(443), AclProtocol.TCP)]))
    assert not r.matches("1.1.1.1", 443, False)
    assert r.matches("1.1.1.1", 443, True)


def test_empty_allowed_port_set_is_rejected():
    r = rule(AclAddress(K.ANY), AclPorts([AclPortEntry(AclPortSpec(9999), AclProtocol.TCP)]))
    assert not r.matches("8.8.8.8", 9999, False)


def test_multiple_port_entries():
    ports = AclPorts(
        [
            AclPortEntry(AclPortSpec(80), AclProtocol.TCP),
            AclPortEntry(AclPortSpec(443), AclProtocol.TCP),
            AclPortEntry(AclPortSpec(5000, 5100), AclProtocol.UDP),
        ]
    )
    r = rule(AclAddress(K.ANY), ports)
    assert r.matches("1.2.3.4", 80, True)
    assert r.matches("1.2.3.4", 443, True)
    assert not r.matches("1.2.3.4", 8080, True)
    assert r.matches("1.2.3.4", 5050, False)
    assert not r.matches("1.2.3.4", 4999, False)
    assert not r.matches("1.2.3.4", 5101, False)


def test_port_spec_rejects_reversed_range():
    with pytest.raises(ValueError, match="Invalid port range"):
        AclPortSpec(2000, 1000)


def test_port_spec_rejects_out_of_range_port():
    with pytest.raises(ValueError):
        AclPortSpec(65536)


def test_address_kind_requires_value():
    with pytest.raises(ValueError):
        AclAddress(K.IP)
    with pytest.raises(ValueError):
        AclAddress(K.ANY, "*")


def test_display_acl_rule():
    r = AclRule(outbound="allow", addr=AclAddress(K.IP, "192.168.1.1"))
    assert str(r) == "allow 192.168.1.1"


def test_display_acl_rule_with_ports():
    r = AclRule(
        outbound="allow",
        addr=AclAddress(K.ANY),
        ports=AclPorts([AclPortEntry(AclPortSpec(443), AclProtocol.TCP)]),
    )
    assert str(r) == "allow * tcp/443"


def test_display_acl_rule_with_hijack():
    r = AclRule(outbound="redirect", addr=AclAddress(K.IP, "8.8.8.8"), hijack="10.0.0.1")
    assert str(r) == "redirect 8.8.8.8 10.0.0.1"


def test_display_port_entry():
    assert str(AclPortEntry(AclPortSpec(80), AclProtocol.TCP)) == "tcp/80"


def test_display_port_entry_no_protocol():
    assert str(AclPortEntry(AclPortSpec(1000, 2000))) == "1000-2000"


def test_display_ports():
    ports = AclPorts(
        [
            AclPortEntry(AclPortSpec(80), AclProtocol.TCP),
            AclPortEntry(AclPortSpec(53), AclProtocol.UDP),
        ]
    )
    assert str(ports) == "tcp/80,udp/53"


@pytest.mark.parametrize(
    "addr,text",
    [
        (AclAddress(K.LOCALHOST), "localhost"),
        (AclAddress(K.PRIVATE), "private"),
        (AclAddress(K.ANY), "*"),
        (AclAddress(K.WILDCARD_DOMAIN, "*.google.com"), "*.google.com"),
        (AclAddress(K.CIDR, "10.6.0.0/16"), "10.6.0.0/16"),
    ],
)
def test_display_addresses(addr, text):
    assert str(addr) == text


def test_ports_entries_are_stored_as_tuple():
    entry = AclPortEntry(AclPortSpec(53), AclProtocol.UDP)
    ports = AclPorts([entry])
    assert ports.entries == (entry,)
    assert ports == AclPorts((entry,))