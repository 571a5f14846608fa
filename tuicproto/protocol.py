"""TUIC command headers and the variable-length address field."""

from __future__ import annotations

import ipaddress
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar
from uuid import UUID

VERSION = 0x05
"""The TUIC protocol version."""

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def _check_uint(name: str, value: int, bits: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < 1 << bits:
        raise ValueError(f"{name} must be an unsigned {bits}-bit integer, got {value!r}")


class Address(ABC):
    """A network address as carried in `Connect` and `Packet` commands."""

    TYPE_CODE_DOMAIN: ClassVar[int] = 0x00
    TYPE_CODE_IPV4: ClassVar[int] = 0x01
    TYPE_CODE_IPV6: ClassVar[int] = 0x02
    TYPE_CODE_NONE: ClassVar[int] = 0xFF

    @abstractmethod
    def type_code(self) -> int:
        """The address type code on the wire."""

    @abstractmethod
    def encoded_len(self) -> int:
        """The serialized length of the address, type byte included."""

    @abstractmethod
    def port(self) -> int:
        """The port, or 0 for the empty address."""

    def is_none(self) -> bool:
        return isinstance(self, NoneAddress)

    def is_domain(self) -> bool:
        return isinstance(self, DomainAddress)

    def is_ipv4(self) -> bool:
        return isinstance(self, SocketAddress) and self.ip.version == 4

    def is_ipv6(self) -> bool:
        return isinstance(self, SocketAddress) and self.ip.version == 6


@dataclass(frozen=True)
class NoneAddress(Address):
    """The empty address, used by non-first fragments of a UDP packet."""

    def type_code(self) -> int:
        return Address.TYPE_CODE_NONE

    def encoded_len(self) -> int:
        return 1

    def port(self) -> int:
        return 0

    def __str__(self) -> str:
        return "none"


@dataclass(frozen=True)
class DomainAddress(Address):
    """A fully-qualified domain name with a port."""

    domain: str
    port_number: int

    def __post_init__(self) -> None:
        if not isinstance(self.domain, str):
            raise TypeError("domain must be a string")
        if len(self.domain.encode("utf-8")) > 0xFF:
            raise ValueError("domain must be at most 255 bytes long")
        _check_uint("port", self.port_number, 16)

    def type_code(self) -> int:
        return Address.TYPE_CODE_DOMAIN

    def encoded_len(self) -> int:
        return 1 + 1 + len(self.domain.encode("utf-8")) + 2

    def port(self) -> int:
        return self.port_number

    def __str__(self) -> str:
        return f"{self.domain}:{self.port_number}"


@dataclass(frozen=True)
class SocketAddress(Address):
    """An IPv4 or IPv6 address with a port."""

    ip: IPAddress
    port_number: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "ip", ipaddress.ip_address(self.ip))
        _check_uint("port", self.port_number, 16)

    def type_code(self) -> int:
        return Address.TYPE_CODE_IPV4 if self.ip.version == 4 else Address.TYPE_CODE_IPV6

    def encoded_len(self) -> int:
        return 1 + (4 if self.ip.version == 4 else 16) + 2

    def port(self) -> int:
        return self.port_number

    def __str__(self) -> str:
        if self.ip.version == 6:
            return f"[{self.ip}]:{self.port_number}"
        return f"{self.ip}:{self.port_number}"


class Header(ABC):
    """A TUIC command header: version, type code and command-specific body."""

    TYPE_CODE_AUTHENTICATE: ClassVar[int] = 0x00
    TYPE_CODE_CONNECT: ClassVar[int] = 0x01
    TYPE_CODE_PACKET: ClassVar[int] = 0x02
    TYPE_CODE_DISSOCIATE: ClassVar[int] = 0x03
    TYPE_CODE_HEARTBEAT: ClassVar[int] = 0x04

    type_code: ClassVar[int]

    @abstractmethod
    def body_len(self) -> int:
        """The serialized length of the command body."""

    def encoded_len(self) -> int:
        """The serialized length of the whole header, version and type included."""
        return 2 + self.body_len()


@dataclass(frozen=True)
class Authenticate(Header):
    """Command `Authenticate`: client UUID and a 32-byte token."""

    type_code: ClassVar[int] = Header.TYPE_CODE_AUTHENTICATE

    uuid: UUID
    token: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.uuid, UUID):
            object.__setattr__(self, "uuid", UUID(str(self.uuid)))
        token = bytes(self.token)
        if len(token) != 32:
            raise ValueError(f"token must be 32 bytes long, got {len(token)}")
        object.__setattr__(self, "token", token)

    def body_len(self) -> int:
        return 16 + 32


@dataclass(frozen=True)
class Connect(Header):
    """Command `Connect`: establishes a TCP relay to the target address."""

    type_code: ClassVar[int] = Header.TYPE_CODE_CONNECT

    addr: Address

    def body_len(self) -> int:
        return self.addr.encoded_len()


@dataclass(frozen=True)
class Packet(Header):
    """Command `Packet`: a (fragment of a) relayed UDP packet."""

    type_code: ClassVar[int] = Header.TYPE_CODE_PACKET

    assoc_id: int
    pkt_id: int
    frag_total: int
    frag_id: int
    size: int
    addr: Address

    def __post_init__(self) -> None:
        _check_uint("assoc_id", self.assoc_id, 16)
        _check_uint("pkt_id", self.pkt_id, 16)
        _check_uint("frag_total", self.frag_total, 8)
        _check_uint("frag_id", self.frag_id, 8)
        _check_uint("size", self.size, 16)

    def body_len(self) -> int:
        return 2 + 2 + 1 + 1 + 2 + self.addr.encoded_len()


@dataclass(frozen=True)
class Dissociate(Header):
    """Command `Dissociate`: terminates a UDP relay session."""

    type_code: ClassVar[int] = Header.TYPE_CODE_DISSOCIATE

    assoc_id: int

    def __post_init__(self) -> None:
        _check_uint("assoc_id", self.assoc_id, 16)

    def body_len(self) -> int:
        return 2


@dataclass(frozen=True)
class Heartbeat(Header):
    """Command `Heartbeat`: keeps the connection alive."""

    type_code: ClassVar[int] = Header.TYPE_CODE_HEARTBEAT

    def body_len(self) -> int:
        return 0