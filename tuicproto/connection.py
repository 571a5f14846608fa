"""A TUIC connection model: UDP session bookkeeping, reassembly and task counters.

No I/O happens here; the caller moves the bytes.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
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
from tuicproto.tasks import (
    Assemblable,
    AssembleError,
    AuthenticateRx,
    AuthenticateTx,
    ConnectRx,
    ConnectTx,
    DissociateRx,
    DissociateTx,
    HeartbeatRx,
    HeartbeatTx,
    KeyingMaterialExporter,
    PacketRx,
    PacketTx,
    Registration,
    TaskCounter,
)


@dataclass
class _PacketBuffer:
    """Fragments of one packet collected so far."""

    frag_total: int
    fragments: list[bytes | None] = field(init=False)
    frag_received: int = 0
    addr: Address = field(default_factory=NoneAddress)
    created: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        self.fragments = [None] * self.frag_total

    def insert(
        self, assoc_id: int, frag_total: int, frag_id: int, size: int, addr: Address, data: bytes
    ) -> Assemblable | None:
        if len(data) != size:
            raise ValueError(f"fragment payload is {len(data)} bytes but its header says {size}")
        if frag_id >= frag_total or frag_id >= len(self.fragments):
            raise AssembleError(f"invalid fragment id {frag_id} in total {frag_total} fragments")
        if frag_id == 0 and addr.is_none():
            raise AssembleError("no address in first fragment")
        if frag_id != 0 and not addr.is_none():
            raise AssembleError("address in non-first fragment")
        if self.fragments[frag_id] is not None:
            raise AssembleError(f"duplicated fragment: {frag_id}")

        self.fragments[frag_id] = data
        self.frag_received += 1
        if frag_id == 0:
            self.addr = addr

        if self.frag_received == self.frag_total:
            fragments, self.fragments = self.fragments, []
            addr_out, self.addr = self.addr, NoneAddress()
            return Assemblable([bytes(f) for f in fragments], addr_out, assoc_id)
        return None


class _UdpSession:
    """One UDP relay session: packet ID allocation and reassembly buffers."""

    def __init__(self, registration: Registration) -> None:
        self.registration = registration
        self.next_pkt_id = 0
        self.buffers: dict[int, _PacketBuffer] = {}

    def allocate_pkt_id(self) -> int:
        pkt_id = self.next_pkt_id
        self.next_pkt_id = (pkt_id + 1) & 0xFFFF
        return pkt_id

    def insert(
        self,
        assoc_id: int,
        pkt_id: int,
        frag_total: int,
        frag_id: int,
        size: int,
        addr: Address,
        data: bytes,
    ) -> Assemblable | None:
        buffer = self.buffers.get(pkt_id)
        if buffer is None:
            buffer = self.buffers[pkt_id] = _PacketBuffer(frag_total)
        result = buffer.insert(assoc_id, frag_total, frag_id, size, addr, data)
        if result is not None:
            del self.buffers[pkt_id]
        return result

    def collect_garbage(self, timeout: float) -> None:
        now = time.monotonic()
        self.buffers = {
            pkt_id: buf for pkt_id, buf in self.buffers.items() if now - buf.created < timeout
        }

    def __repr__(self) -> str:
        return f"UdpSession(pending={sorted(self.buffers)}, next_pkt_id={self.next_pkt_id})"


class _UdpSessions:
    """All UDP sessions of a connection, guarded by one lock."""

    def __init__(self, associate_counter: TaskCounter) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[int, _UdpSession] = {}
        self._counter = associate_counter

    def _get_or_create(self, assoc_id: int) -> _UdpSession:
        session = self._sessions.get(assoc_id)
        if session is None:
            session = self._sessions[assoc_id] = _UdpSession(self._counter.register())
        return session

    def allocate_pkt_id(self, assoc_id: int) -> int:
        with self._lock:
            return self._get_or_create(assoc_id).allocate_pkt_id()

    def contains(self, assoc_id: int) -> bool:
        with self._lock:
            return assoc_id in self._sessions

    def ensure(self, assoc_id: int) -> None:
        with self._lock:
            self._get_or_create(assoc_id)

    def remove(self, assoc_id: int) -> None:
        with self._lock:
            session = self._sessions.pop(assoc_id, None)
        if session is not None:
            session.registration.release()

    def insert(
        self,
        assoc_id: int,
        pkt_id: int,
        frag_total: int,
        frag_id: int,
        size: int,
        addr: Address,
        data: bytes,
    ) -> Assemblable | None:
        with self._lock:
            return self._get_or_create(assoc_id).insert(
                assoc_id, pkt_id, frag_total, frag_id, size, addr, bytes(data)
            )

    def collect_garbage(self, timeout: float) -> None:
        with self._lock:
            for session in self._sessions.values():
                session.collect_garbage(timeout)

    def __repr__(self) -> str:
        with self._lock:
            return f"UdpSessions({self._sessions!r})"


class Connection:
    """A TUIC connection with fragment reassembly and task counters."""

    def __init__(self) -> None:
        self._connect_counter = TaskCounter()
        self._associate_counter = TaskCounter()
        self._sessions = _UdpSessions(self._associate_counter)

    def send_authenticate(
        self, uuid: UUID, password: str | bytes, exporter: KeyingMaterialExporter
    ) -> AuthenticateTx:
        """Build an `Authenticate` command whose token comes from `exporter`."""
        return AuthenticateTx(uuid, password, exporter)

    def recv_authenticate(self, header: Authenticate) -> AuthenticateRx:
        return AuthenticateRx(header.uuid, header.token)

    def send_connect(self, addr: Address) -> ConnectTx:
        """Build a `Connect` command; it counts as a task until released."""
        return ConnectTx(self._connect_counter.register(), addr)

    def recv_connect(self, header: Connect) -> ConnectRx:
        """Accept a `Connect` command; it counts as a task until released."""
        return ConnectRx(self._connect_counter.register(), header.addr)

    def send_packet(self, assoc_id: int, addr: Address, max_pkt_size: int) -> PacketTx:
        """Start sending a packet on a session, opening the session if needed."""
        pkt_id = self._sessions.allocate_pkt_id(assoc_id)
        return PacketTx(assoc_id, pkt_id, addr, max_pkt_size)

    def _packet_rx(self, header: Packet) -> PacketRx:
        return PacketRx(
            self._sessions,
            header.assoc_id,
            header.pkt_id,
            header.frag_total,
            header.frag_id,
            header.size,
            header.addr,
        )

    def recv_packet(self, header: Packet) -> PacketRx | None:
        """Accept a packet fragment; `None` if its session is unknown."""
        if not self._sessions.contains(header.assoc_id):
            return None
        return self._packet_rx(header)

    def recv_packet_unrestricted(self, header: Packet) -> PacketRx:
        """Accept a packet fragment, opening its session if needed."""
        self._sessions.ensure(header.assoc_id)
        return self._packet_rx(header)

    def send_dissociate(self, assoc_id: int) -> DissociateTx:
        """Close a session and build the `Dissociate` command for it."""
        self._sessions.remove(assoc_id)
        return DissociateTx(assoc_id)

    def recv_dissociate(self, header: Dissociate) -> DissociateRx:
        """Close the session named by a received `Dissociate`."""
        self._sessions.remove(header.assoc_id)
        return DissociateRx(header.assoc_id)

    def send_heartbeat(self) -> HeartbeatTx:
        return HeartbeatTx()

    def recv_heartbeat(self, header: Heartbeat) -> HeartbeatRx:
        return HeartbeatRx()

    def task_connect_count(self) -> int:
        """The number of live `Connect` tasks."""
        return self._connect_counter.count()

    def task_associate_count(self) -> int:
        """The number of active UDP sessions."""
        return self._associate_counter.count()

    def collect_garbage(self, timeout: float | timedelta) -> None:
        """Drop incomplete packets older than `timeout` (seconds or a timedelta)."""
        if isinstance(timeout, timedelta):
            timeout = timeout.total_seconds()
        self._sessions.collect_garbage(float(timeout))

    def __repr__(self) -> str:
        return (
            f"Connection(udp_sessions={self._sessions!r}, "
            f"task_connect_count={self.task_connect_count()}, "
            f"task_associate_count={self.task_associate_count()})"
        )