"""Parsing of ACL rules from their one-line text form and from config tables."""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Iterable, Mapping

from tuicproto.acl import (
    AclAddress,
    AclAddressKind,
    AclPortEntry,
    AclPorts,
    AclPortSpec,
    AclProtocol,
    AclRule,
)


class AclParseError(ValueError):
    """Raised when an ACL rule, or a part of one, cannot be parsed."""


_LABEL = r"[A-Za-z0-9_](?:[A-Za-z0-9_-]*[A-Za-z0-9_])?"
_DOMAIN_RE = re.compile(rf"^{_LABEL}(?:\.{_LABEL})*\.?$")
_SINGLE_PORT_RE = re.compile(r"^\d+$")
_PORT_RANGE_RE = re.compile(r"^\d+-\d+$")
_WILDCARD_PREFIXES = ("*.", "suffix:")


def _is_domain(text: str) -> bool:
    if not text or len(text) > 253 or not _DOMAIN_RE.match(text):
        return False
    # Purely numeric dotted names are malformed IP addresses, not domains.
    return any(c.isalpha() or c in "_-" for c in text)


def _is_ip(text: str) -> bool:
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


def _is_cidr(text: str) -> bool:
    address, sep, prefix = text.partition("/")
    if not sep or not prefix.isdigit() or not _is_ip(address):
        return False
    try:
        ipaddress.ip_network(text, strict=False)
    except ValueError:
        return False
    return True


def parse_address(text: str) -> AclAddress:
    """Parse an address: a keyword, wildcard domain, CIDR, IP or domain."""
    token = text.strip()
    lowered = token.lower()
    if lowered in ("localhost", "suffix:localhost"):
        return AclAddress(AclAddressKind.LOCALHOST)
    if lowered == "private":
        return AclAddress(AclAddressKind.PRIVATE)
    if token == "*":
        return AclAddress(AclAddressKind.ANY)
    for prefix in _WILDCARD_PREFIXES:
        if token.startswith(prefix):
            if _is_domain(token[len(prefix) :]):
                return AclAddress(AclAddressKind.WILDCARD_DOMAIN, token)
            raise AclParseError(f"Failed to parse address: {token!r}")
    if "/" in token:
        if _is_cidr(token):
            return AclAddress(AclAddressKind.CIDR, token)
        raise AclParseError(f"Failed to parse address: {token!r}")
    if _is_ip(token):
        return AclAddress(AclAddressKind.IP, token)
    if _is_domain(token):
        return AclAddress(AclAddressKind.DOMAIN, token)
    raise AclParseError(f"Failed to parse address: {token!r}")


def _parse_port_number(text: str, what: str) -> int:
    port = int(text)
    if port > 0xFFFF:
        raise AclParseError(f"Invalid {what}: {text}")
    return port


def parse_port_spec(text: str) -> AclPortSpec:
    """Parse a single port (`80`) or an inclusive range (`1000-2000`)."""
    token = text.strip()
    if _SINGLE_PORT_RE.match(token):
        return AclPortSpec(_parse_port_number(token, "port"))
    if _PORT_RANGE_RE.match(token):
        start_text, end_text = token.split("-")
        start = _parse_port_number(start_text, "start port")
        end = _parse_port_number(end_text, "end port")
        if start > end:
            raise AclParseError(f"Invalid port range: {start} > {end}")
        return AclPortSpec(start, end)
    raise AclParseError(f"Failed to parse port spec: {token!r}")


def parse_protocol(text: str) -> AclProtocol:
    """Parse `tcp` or `udp`, ignoring case."""
    lowered = text.strip().lower()
    try:
        return AclProtocol(lowered)
    except ValueError:
        raise AclParseError(f"Invalid protocol: {text}") from None


def parse_port_entry(text: str) -> AclPortEntry:
    """Parse a port entry, optionally prefixed by a protocol (`tcp/443`)."""
    token = text.strip()
    protocol_text, sep, spec_text = token.partition("/")
    if sep:
        return AclPortEntry(parse_port_spec(spec_text), parse_protocol(protocol_text))
    return AclPortEntry(parse_port_spec(token))


def parse_ports(text: str) -> AclPorts | None:
    """Parse a comma-separated port list; `*` means any port and gives None."""
    token = text.strip()
    if token == "*":
        return None
    if not token:
        raise AclParseError("Failed to parse ports: empty")
    return AclPorts(tuple(parse_port_entry(part) for part in token.split(",")))


def parse_acl_rule(rule: str) -> AclRule:
    """Parse one rule: `<outbound> [address] [ports] [hijack-ip]`."""
    if rule.startswith("#") or not rule:
        raise AclParseError("Comment or empty line")
    tokens = rule.split()
    if not tokens:
        raise AclParseError("Comment or empty line")
    outbound, rest = tokens[0], tokens[1:]

    addr = AclAddress(AclAddressKind.ANY)
    ports = None
    hijack = None

    if rest:
        try:
            addr = parse_address(rest[0])
            rest = rest[1:]
        except AclParseError:
            try:
                parse_ports(rest[0])
            except AclParseError:
                raise AclParseError(f"Parse error: invalid address {rest[0]!r}") from None
    if rest:
        ports = parse_ports(rest[0])
        rest = rest[1:]
    if rest:
        if not _is_ip(rest[0]):
            raise AclParseError(f"Parse error: invalid hijack address {rest[0]!r}")
        hijack = rest[0]
        rest = rest[1:]
    if rest:
        raise AclParseError(f"Parse error: unexpected {' '.join(rest)!r}")
    return AclRule(outbound, addr, ports, hijack)


def parse_acl_rules(text: str) -> list[AclRule]:
    """Parse one rule per line, skipping blank lines and `#` comments."""
    rules = []
    for number, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            rules.append(parse_acl_rule(line))
        except AclParseError as exc:
            raise AclParseError(f"Line {number}: {exc}") from exc
    return rules


def _required_str(mapping: Mapping, key: str) -> str:
    if key not in mapping:
        raise AclParseError(f"missing field `{key}`")
    value = mapping[key]
    if not isinstance(value, str):
        raise AclParseError(f"field `{key}` must be a string")
    return value


def _optional_str(mapping: Mapping, key: str) -> str | None:
    value = mapping.get(key)
    if value is not None and not isinstance(value, str):
        raise AclParseError(f"field `{key}` must be a string")
    return value


def rule_from_mapping(mapping: Mapping) -> AclRule:
    """Build a rule from a table with `outbound`, `addr`, and optional `ports`, `hijack`."""
    outbound = _required_str(mapping, "outbound")
    addr = parse_address(_required_str(mapping, "addr"))
    ports_text = _optional_str(mapping, "ports")
    ports = None
    if ports_text is not None:
        ports = parse_ports(ports_text)
        if ports is None:
            raise AclParseError("Failed to parse ports")
    return AclRule(outbound, addr, ports, _optional_str(mapping, "hijack"))


def load_acl(value: str | Iterable[Mapping]) -> list[AclRule]:
    """Load the `acl` setting: a multiline string or a sequence of rule tables."""
    if isinstance(value, str):
        return parse_acl_rules(value)
    if isinstance(value, (bytes, bytearray, Mapping)) or not isinstance(value, Iterable):
        raise AclParseError("expected a sequence of ACL rule tables or a multiline string")
    rules = []
    for item in value:
        if not isinstance(item, Mapping):
            raise AclParseError("expected a sequence of ACL rule tables or a multiline string")
        rules.append(rule_from_mapping(item))
    return rules