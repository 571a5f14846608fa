"""Access-control rules: which outbound handles a destination address and port."""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from enum import Enum, StrEnum

from tuicproto.utils import is_private_ip

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def _to_ip(ip: str | IPAddress) -> IPAddress:
    return ipaddress.ip_address(ip)


def _check_port(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 0xFFFF:
        raise ValueError(f"{name} must be a port number between 0 and 65535, got {value!r}")


class AclProtocol(StrEnum):
    """The transport protocol a port entry is limited to."""

    TCP = "tcp"
    UDP = "udp"


@dataclass(frozen=True)
class AclPortSpec:
    """A single port, or an inclusive range of ports when `end` is given."""

    start: int
    end: int | None = None

    def __post_init__(self) -> None:
        _check_port("start", self.start)
        if self.end is not None:
            _check_port("end", self.end)
            if self.start > self.end:
                raise ValueError(f"Invalid port range: {self.start} > {self.end}")

    @property
    def is_range(self) -> bool:
        return self.end is not None

    def matches(self, port: int) -> bool:
        if self.end is None:
            return port == self.start
        return self.start <= port <= self.end

    def __str__(self) -> str:
        if self.end is None:
            return str(self.start)
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class AclPortEntry:
    """A port specification, optionally limited to one protocol."""

    port_spec: AclPortSpec
    protocol: AclProtocol | None = None

    def _matches_protocol(self, is_tcp: bool) -> bool:
        match self.protocol:
            case AclProtocol.TCP:
                return is_tcp
            case AclProtocol.UDP:
                return not is_tcp
            case _:
                return True

    def matches(self, port: int, is_tcp: bool) -> bool:
        """Whether the port and transport satisfy this entry."""
        return self._matches_protocol(is_tcp) and self.port_spec.matches(port)

    def __str__(self) -> str:
        prefix = f"{self.protocol}/" if self.protocol is not None else ""
        return f"{prefix}{self.port_spec}"


@dataclass(frozen=True)
class AclPorts:
    """A list of port entries; a port matches if any entry does."""

    entries: tuple[AclPortEntry, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", tuple(self.entries))

    def matches(self, port: int, is_tcp: bool) -> bool:
        return any(entry.matches(port, is_tcp) for entry in self.entries)

    def __str__(self) -> str:
        return ",".join(str(entry) for entry in self.entries)


class AclAddressKind(Enum):
    """The kinds of address an ACL rule can target."""

    IP = "ip"
    CIDR = "cidr"
    DOMAIN = "domain"
    WILDCARD_DOMAIN = "wildcard_domain"
    LOCALHOST = "localhost"
    PRIVATE = "private"
    ANY = "any"


_KINDS_WITH_VALUE = frozenset(
    {AclAddressKind.IP, AclAddressKind.CIDR, AclAddressKind.DOMAIN, AclAddressKind.WILDCARD_DOMAIN}
)

_KEYWORDS = {
    AclAddressKind.LOCALHOST: "localhost",
    AclAddressKind.PRIVATE: "private",
    AclAddressKind.ANY: "*",
}


def _resolves_to(host: str, ip: IPAddress) -> bool:
    if host.lower() == "localhost":
        return ip.is_loopback
    try:
        infos = socket.getaddrinfo(host, 0)
    except (OSError, UnicodeError):
        return False
    for info in infos:
        try:
            resolved = ipaddress.ip_address(str(info[4][0]).split("%", 1)[0])
        except ValueError:
            continue
        if resolved == ip:
            return True
    return False


@dataclass(frozen=True)
class AclAddress:
    """The target of a rule: an IP, a CIDR, a domain, a wildcard domain or a keyword."""

    kind: AclAddressKind
    value: str | None = None

    def __post_init__(self) -> None:
        if self.kind in _KINDS_WITH_VALUE:
            if not isinstance(self.value, str):
                raise ValueError(f"address of kind {self.kind.value} needs a string value")
        elif self.value is not None:
            raise ValueError(f"address of kind {self.kind.value} takes no value")

    def matches(self, ip: str | IPAddress) -> bool:
        """Whether `ip` falls under this address."""
        ip = _to_ip(ip)
        match self.kind:
            case AclAddressKind.IP:
                try:
                    return ipaddress.ip_address(self.value) == ip
                except ValueError:
                    return False
            case AclAddressKind.CIDR:
                try:
                    network = ipaddress.ip_network(self.value, strict=True)
                except ValueError:
                    return False
                return network.version == ip.version and ip in network
            case AclAddressKind.DOMAIN:
                return _resolves_to(self.value, ip)
            case AclAddressKind.WILDCARD_DOMAIN:
                pattern = self.value
                for prefix in ("*.", "suffix:"):
                    if pattern.startswith(prefix):
                        pattern = pattern[len(prefix) :]
                        break
                return _resolves_to(pattern, ip)
            case AclAddressKind.LOCALHOST:
                return ip.is_loopback
            case AclAddressKind.PRIVATE:
                return is_private_ip(ip)
            case _:
                return True

    def __str__(self) -> str:
        if self.kind in _KINDS_WITH_VALUE:
            return self.value
        return _KEYWORDS[self.kind]


ANY_ADDRESS = AclAddress(AclAddressKind.ANY)


@dataclass(frozen=True)
class AclRule:
    """One ACL rule: outbound name, target address, optional ports and hijack IP."""

    outbound: str
    addr: AclAddress = ANY_ADDRESS
    ports: AclPorts | None = None
    hijack: str | None = None

    def matches(self, ip: str | IPAddress, port: int, is_tcp: bool) -> bool:
        """Whether the destination IP, port and transport satisfy this rule."""
        if not self.addr.matches(ip):
            return False
        return self.ports is None or self.ports.matches(port, is_tcp)

    def __str__(self) -> str:
        parts = [self.outbound, str(self.addr)]
        if self.ports is not None:
            parts.append(str(self.ports))
        if self.hijack is not None:
            parts.append(self.hijack)
        return " ".join(parts)