"""Per-command task models: sending and receiving sides, fragmentation, counters."""

from __future__ import annotations

import hmac
import threading
import weakref
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from tuicproto.protocol import (
    Address,
    Authenticate,
    Connect,
    Dissociate,
    Heartbeat,
    NoneAddress,
    Packet,
)


def _as_bytes(value: str | bytes | bytearray | memoryview) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


class KeyingMaterialExporter(ABC):
    """Derives 32 bytes of keying material from the current TLS session."""

    @abstractmethod
    def export_keying_material(self, label: bytes, context: bytes) -> bytes:
        """Return 32 bytes of keying material for `label` and `context`."""


class TaskCounter:
    """Counts live task registrations; thread safe."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._count = 0

    def register(self) -> Registration:
        """Register a new task; it counts until released or collected."""
        with self._lock:
            self._count += 1
        return Registration(self)

    def count(self) -> int:
        with self._lock:
            return self._count

    def _decrement(self) -> None:
        with self._lock:
            self._count -= 1

    def __repr__(self) -> str:
        return f"TaskCounter(count={self.count()})"


class Registration:
    """A task's place in a `TaskCounter`; released explicitly or when collected."""

    def __init__(self, counter: TaskCounter) -> None:
        self._finalizer = weakref.finalize(self, counter._decrement)

    @property
    def active(self) -> bool:
        return self._finalizer.alive

    def release(self) -> None:
        """Remove this task from its counter. Releasing twice has no effect."""
        self._finalizer()

    def __enter__(self) -> Registration:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"Registration(active={self.active})"


class AssembleError(Exception):
    """Raised when a packet fragment cannot be reassembled."""


@dataclass
class Assemblable:
    """A packet whose fragments have all arrived."""

    fragments: list[bytes]
    addr: Address
    assoc_id: int

    def assemble(self) -> tuple[bytes, Address, int]:
        """Join the fragments; return the payload, address and session ID."""
        return b"".join(self.fragments), self.addr, self.assoc_id


class AuthenticateTx:
    """An `Authenticate` command about to be sent."""

    def __init__(self, uuid: UUID, password: str | bytes, exporter: KeyingMaterialExporter) -> None:
        token = exporter.export_keying_material(uuid.bytes, _as_bytes(password))
        self.header = Authenticate(uuid, token)

    def __repr__(self) -> str:
        return f"AuthenticateTx(header={self.header!r})"


@dataclass(frozen=True)
class AuthenticateRx:
    """A received `Authenticate` command."""

    uuid: UUID
    token: bytes

    def is_valid(self, password: str | bytes, exporter: KeyingMaterialExporter) -> bool:
        """Whether the token matches the one derived from `password`."""
        expected = exporter.export_keying_material(self.uuid.bytes, _as_bytes(password))
        return hmac.compare_digest(bytes(self.token), bytes(expected))


class _RegisteredTask:
    registration: Registration

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.registration.release()


class ConnectTx(_RegisteredTask):
    """A `Connect` command about to be sent; counts as a connect task."""

    def __init__(self, registration: Registration, addr: Address) -> None:
        self.registration = registration
        self.header = Connect(addr)

    def __repr__(self) -> str:
        return f"ConnectTx(header={self.header!r})"


class ConnectRx(_RegisteredTask):
    """A received `Connect` command; counts as a connect task."""

    def __init__(self, registration: Registration, addr: Address) -> None:
        self.registration = registration
        self.addr = addr

    def __repr__(self) -> str:
        return f"ConnectRx(addr={self.addr!r})"


@dataclass(frozen=True)
class DissociateTx:
    """A `Dissociate` command about to be sent."""

    assoc_id: int
    header: Dissociate = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "header", Dissociate(self.assoc_id))


@dataclass(frozen=True)
class DissociateRx:
    """A received `Dissociate` command."""

    assoc_id: int


@dataclass(frozen=True)
class HeartbeatTx:
    """A `Heartbeat` command about to be sent."""

    header: Heartbeat = field(default_factory=Heartbeat, init=False)


@dataclass(frozen=True)
class HeartbeatRx:
    """A received `Heartbeat` command."""


@dataclass(frozen=True)
class PacketTx:
    """A UDP packet about to be sent, not yet split into fragments."""

    assoc_id: int
    pkt_id: int
    addr: Address
    max_pkt_size: int

    def fragments(self, payload: bytes | bytearray | memoryview) -> Fragments:
        """Split `payload` into header/fragment pairs that fit `max_pkt_size`."""
        return Fragments(self.assoc_id, self.pkt_id, self.addr, self.max_pkt_size, payload)


@dataclass
class PacketRx:
    """A received packet fragment header, waiting for its payload.

    `sessions` is the owner of the reassembly buffers; it must provide
    `insert(assoc_id, pkt_id, frag_total, frag_id, size, addr, data)`.
    """

    sessions: Any = field(repr=False)
    assoc_id: int
    pkt_id: int
    frag_total: int
    frag_id: int
    size: int
    addr: Address

    def assemble(self, data: bytes) -> Assemblable | None:
        """Hand the fragment payload over; return the packet once complete."""
        return self.sessions.insert(
            self.assoc_id, self.pkt_id, self.frag_total, self.frag_id, self.size, self.addr, data
        )


def _packet_header_len(addr: Address) -> int:
    return Packet(0, 0, 0, 0, 0, addr).encoded_len()


class Fragments:
    """Iterator over `(Packet header, payload fragment)` pairs of one packet."""

    def __init__(
        self,
        assoc_id: int,
        pkt_id: int,
        addr: Address,
        max_pkt_size: int,
        payload: bytes | bytearray | memoryview,
    ) -> None:
        self._payload = bytes(payload)
        first_frag_size = max_pkt_size - _packet_header_len(addr)
        frag_size_addr_none = max_pkt_size - _packet_header_len(NoneAddress())
        if first_frag_size < 0:
            raise ValueError(f"max packet size {max_pkt_size} cannot hold a packet header")

        if first_frag_size < len(self._payload):
            if frag_size_addr_none <= 0:
                raise ValueError(f"max packet size {max_pkt_size} leaves no room for payload")
            remaining = len(self._payload) - first_frag_size
            frag_total = (1 + remaining // frag_size_addr_none + 1) & 0xFF
        else:
            frag_total = 1

        self._assoc_id = assoc_id
        self._pkt_id = pkt_id
        self._addr = addr
        self._max_pkt_size = max_pkt_size
        self.frag_total = frag_total
        self._next_frag_id = 0
        self._next_frag_start = 0

    def __iter__(self) -> Fragments:
        return self

    def __next__(self) -> tuple[Packet, bytes]:
        if self._next_frag_id >= self.frag_total:
            raise StopIteration
        addr, self._addr = self._addr, NoneAddress()
        payload_size = self._max_pkt_size - _packet_header_len(addr)
        start = self._next_frag_start
        end = min(start + payload_size, len(self._payload))
        header = Packet(self._assoc_id, self._pkt_id, self.frag_total, self._next_frag_id, end - start, addr)
        self._next_frag_id += 1
        self._next_frag_start = end
        return header, self._payload[start:end]

    def __len__(self) -> int:
        """The total number of fragments of the packet."""
        return self.frag_total

    def __repr__(self) -> str:
        return (
            f"Fragments(assoc_id={self._assoc_id}, pkt_id={self._pkt_id}, "
            f"frag_total={self.frag_total}, next_frag_id={self._next_frag_id})"
        )