"""Relay settings enums, private-address checks and TLS SNI sniffing."""

from __future__ import annotations

import ipaddress
import struct
from enum import StrEnum

MAX_SNIFF_SIZE = 8192
"""The most bytes read from a stream when looking for a TLS ClientHello."""


def _ascii_lower(text: str) -> str:
    return "".join(c.lower() if c.isascii() else c for c in text)


class UdpRelayMode(StrEnum):
    """How UDP packets are relayed: as QUIC datagrams or over QUIC streams."""

    NATIVE = "native"
    QUIC = "quic"

    @classmethod
    def parse(cls, text: str) -> UdpRelayMode:
        """Parse a relay mode, ignoring ASCII case."""
        lowered = _ascii_lower(text)
        for mode in cls:
            if lowered == mode.value:
                return mode
        raise ValueError("invalid UDP relay mode")


class CongestionControl(StrEnum):
    """Congestion control algorithm for QUIC."""

    BBR = "bbr"
    CUBIC = "cubic"
    NEW_RENO = "newreno"

    @classmethod
    def parse(cls, text: str) -> CongestionControl:
        """Parse an algorithm name, ignoring ASCII case."""
        lowered = _ascii_lower(text)
        if lowered == "cubic":
            return cls.CUBIC
        if lowered in ("new_reno", "newreno"):
            return cls.NEW_RENO
        if lowered == "bbr":
            return cls.BBR
        raise ValueError("invalid congestion control")


_STACK_PREFER_ALIASES = {
    "v4": "v4only",
    "only_v4": "v4only",
    "v6": "v6only",
    "only_v6": "v6only",
    "v4v6": "v4first",
    "prefer_v4": "v4first",
    "auto": "v4first",
    "v6v4": "v6first",
    "prefer_v6": "v6first",
}


class StackPrefer(StrEnum):
    """IP stack preference when resolving domain names.

    Constructing from a value also accepts the legacy aliases, exactly as spelled.
    """

    V4ONLY = "v4only"
    V6ONLY = "v6only"
    V4FIRST = "v4first"
    V6FIRST = "v6first"

    @classmethod
    def _missing_(cls, value: object) -> StackPrefer | None:
        if isinstance(value, str) and value in _STACK_PREFER_ALIASES:
            return cls(_STACK_PREFER_ALIASES[value])
        return None

    @classmethod
    def parse(cls, text: str) -> StackPrefer:
        """Parse a preference or one of its aliases, ignoring ASCII case."""
        lowered = _ascii_lower(text)
        canonical = _STACK_PREFER_ALIASES.get(lowered, lowered)
        for prefer in cls:
            if canonical == prefer.value:
                return prefer
        raise ValueError("invalid stack preference")


DEFAULT_CONGESTION_CONTROL = CongestionControl.BBR
DEFAULT_STACK_PREFER = StackPrefer.V4ONLY


def is_private_ip(ip: str | ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """Whether `ip` is a LAN address.

    IPv4: 10.0.0.0/8, 172.16.0.0/12, 192.168.0.0/16, 169.254.0.0/16.
    IPv6: fc00::/7 and fe80::/10.
    """
    address = ipaddress.ip_address(ip)
    octets = address.packed
    if address.version == 4:
        return (
            octets[0] == 10
            or (octets[0] == 172 and 16 <= octets[1] <= 31)
            or (octets[0] == 192 and octets[1] == 168)
            or (octets[0] == 169 and octets[1] == 254)
        )
    return octets[0] & 0xFE == 0xFC or (octets[0] == 0xFE and octets[1] & 0xC0 == 0x80)


def _u16(data: bytes, pos: int) -> int:
    return struct.unpack_from(">H", data, pos)[0]


def _parse_sni_extension(data: bytes) -> str | None:
    if len(data) < 2:
        return None
    list_len = _u16(data, 0)
    pos = 2
    if len(data) < pos + list_len:
        return None

    while pos + 3 <= len(data):
        name_type = data[pos]
        name_len = _u16(data, pos + 1)
        pos += 3
        if pos + name_len > len(data):
            break
        if name_type == 0x00:
            try:
                return data[pos : pos + name_len].decode("utf-8")
            except UnicodeDecodeError:
                pass
        pos += name_len
    return None


def extract_sni(data: bytes | bytearray | memoryview) -> str | None:
    """Return the server name of a TLS ClientHello, or None if there is none."""
    data = bytes(data)
    if len(data) < 5:
        return None
    if data[0] != 0x16:
        return None
    if data[1] != 0x03 or data[2] > 0x03:
        return None

    pos = 5
    if len(data) < pos + 4:
        return None
    if data[pos] != 0x01:
        return None
    pos += 1

    handshake_len = int.from_bytes(data[pos : pos + 3], "big")
    pos += 3
    if len(data) < pos + handshake_len:
        return None

    # client version and random
    pos += 34
    if len(data) < pos + 1:
        return None

    pos += 1 + data[pos]
    if len(data) < pos + 2:
        return None

    pos += 2 + _u16(data, pos)
    if len(data) < pos + 1:
        return None

    pos += 1 + data[pos]
    if len(data) < pos + 2:
        return None

    extensions_len = _u16(data, pos)
    pos += 2
    if len(data) < pos + extensions_len:
        return None
    extensions_end = pos + extensions_len

    while pos + 4 <= extensions_end:
        ext_type = _u16(data, pos)
        ext_len = _u16(data, pos + 2)
        pos += 4
        if pos + ext_len > extensions_end:
            break
        if ext_type == 0x0000:
            return _parse_sni_extension(data[pos : pos + ext_len])
        pos += ext_len
    return None


async def sniff_from_stream(stream) -> str | None:
    """Read once (up to 8 KiB) from an async reader and extract the TLS SNI."""
    data = await stream.read(MAX_SNIFF_SIZE)
    if not data:
        return None
    return extract_sni(data)