"""Serialization of TUIC headers to and from bytes and streams."""

from __future__ import annotations

import asyncio
import struct
from collections.abc import Callable, Generator
from typing import BinaryIO
from uuid import UUID

from tuicproto.protocol import (
    VERSION,
    Address,
    Authenticate,
    Connect,
    Dissociate,
    DomainAddress,
    Header,
    Heartbeat,
    NoneAddress,
    Packet,
    SocketAddress,
)


class UnmarshalError(Exception):
    """Raised when a header cannot be decoded."""


class UnexpectedEof(UnmarshalError):
    """The input ended before a complete header was read."""

    def __init__(self, needed: int, got: int) -> None:
        super().__init__(f"unexpected end of input: needed {needed} bytes, got {got}")
        self.needed = needed
        self.got = got


class InvalidVersion(UnmarshalError):
    def __init__(self, version: int) -> None:
        super().__init__(f"invalid version: {version}")
        self.version = version


class InvalidCommand(UnmarshalError):
    def __init__(self, command: int) -> None:
        super().__init__(f"invalid command: {command}")
        self.command = command


class InvalidAddressType(UnmarshalError):
    def __init__(self, type_code: int) -> None:
        super().__init__(f"invalid address type: {type_code}")
        self.type_code = type_code


class AddressParseError(UnmarshalError):
    """A domain name was not valid UTF-8."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"address parsing error: {reason}")


_Parser = Generator[int, bytes, object]


def encode_address(addr: Address) -> bytes:
    """Serialize an address field."""
    match addr:
        case NoneAddress():
            return bytes([Address.TYPE_CODE_NONE])
        case DomainAddress(domain=domain, port_number=port):
            encoded = domain.encode("utf-8")
            return bytes([Address.TYPE_CODE_DOMAIN, len(encoded)]) + encoded + struct.pack(">H", port)
        case SocketAddress(ip=ip, port_number=port):
            return bytes([addr.type_code()]) + ip.packed + struct.pack(">H", port)
        case _:
            raise TypeError(f"not an address: {addr!r}")


def encode_header(header: Header) -> bytes:
    """Serialize a header, version and type code included."""
    match header:
        case Authenticate():
            body = header.uuid.bytes + header.token
        case Connect():
            body = encode_address(header.addr)
        case Packet():
            body = struct.pack(
                ">HHBBH", header.assoc_id, header.pkt_id, header.frag_total, header.frag_id, header.size
            ) + encode_address(header.addr)
        case Dissociate():
            body = struct.pack(">H", header.assoc_id)
        case Heartbeat():
            body = b""
        case _:
            raise TypeError(f"not a header: {header!r}")
    return bytes([VERSION, header.type_code]) + body


def write_header(header: Header, stream: BinaryIO) -> None:
    """Write a serialized header to a binary stream."""
    stream.write(encode_header(header))


def _parse_address() -> _Parser:
    type_code = (yield 1)[0]
    match type_code:
        case Address.TYPE_CODE_NONE:
            return NoneAddress()
        case Address.TYPE_CODE_DOMAIN:
            length = (yield 1)[0]
            buf = yield length + 2
            try:
                domain = buf[:length].decode("utf-8")
            except UnicodeDecodeError as exc:
                raise AddressParseError(str(exc)) from exc
            (port,) = struct.unpack(">H", buf[length:])
            return DomainAddress(domain, port)
        case Address.TYPE_CODE_IPV4:
            buf = yield 6
            (port,) = struct.unpack(">H", buf[4:])
            return SocketAddress(buf[:4], port)
        case Address.TYPE_CODE_IPV6:
            buf = yield 18
            (port,) = struct.unpack(">H", buf[16:])
            return SocketAddress(buf[:16], port)
        case _:
            raise InvalidAddressType(type_code)


def _parse_header() -> _Parser:
    version = (yield 1)[0]
    if version != VERSION:
        raise InvalidVersion(version)
    command = (yield 1)[0]
    match command:
        case Header.TYPE_CODE_AUTHENTICATE:
            buf = yield 48
            return Authenticate(UUID(bytes=buf[:16]), buf[16:])
        case Header.TYPE_CODE_CONNECT:
            return Connect((yield from _parse_address()))
        case Header.TYPE_CODE_PACKET:
            buf = yield 8
            assoc_id, pkt_id, frag_total, frag_id, size = struct.unpack(">HHBBH", buf)
            addr = yield from _parse_address()
            return Packet(assoc_id, pkt_id, frag_total, frag_id, size, addr)
        case Header.TYPE_CODE_DISSOCIATE:
            (assoc_id,) = struct.unpack(">H", (yield 2))
            return Dissociate(assoc_id)
        case Header.TYPE_CODE_HEARTBEAT:
            return Heartbeat()
        case _:
            raise InvalidCommand(command)


def _run(parser: _Parser, read: Callable[[int], bytes]) -> Header:
    try:
        need = next(parser)
        while True:
            need = parser.send(read(need))
    except StopIteration as done:
        return done.value


def read_header(stream: BinaryIO) -> Header:
    """Read exactly one header from a binary stream."""

    def read_exact(n: int) -> bytes:
        data = bytearray()
        while len(data) < n:
            chunk = stream.read(n - len(data))
            if not chunk:
                raise UnexpectedEof(n, len(data))
            data += chunk
        return bytes(data)

    return _run(_parse_header(), read_exact)


def decode_header(data: bytes) -> tuple[Header, int]:
    """Decode a header at the start of `data`; return it and the bytes consumed."""
    view = memoryview(data)
    pos = 0

    def read_exact(n: int) -> bytes:
        nonlocal pos
        chunk = bytes(view[pos : pos + n])
        if len(chunk) < n:
            raise UnexpectedEof(n, len(chunk))
        pos += n
        return chunk

    header = _run(_parse_header(), read_exact)
    return header, pos


async def read_header_async(reader) -> Header:
    """Read exactly one header from a reader with an async `readexactly`."""
    parser = _parse_header()
    try:
        need = next(parser)
        while True:
            try:
                data = await reader.readexactly(need)
            except asyncio.IncompleteReadError as exc:
                raise UnexpectedEof(need, len(exc.partial)) from exc
            need = parser.send(data)
    except StopIteration as done:
        return done.value