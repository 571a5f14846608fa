# tuicproto

Building blocks of the TUIC v5 relay protocol in pure Python, with no
dependencies beyond the standard library and no network transport of their own:

- **Wire format** – `tuicproto.protocol` and `tuicproto.codec`: the command
  headers `Authenticate`, `Connect`, `Packet`, `Dissociate` and `Heartbeat`, the
  variable-length address field (`NoneAddress`, `DomainAddress`,
  `SocketAddress`), and their encoding and decoding from bytes, binary streams
  and asyncio stream readers.
- **Tasks** – `tuicproto.tasks`: the sending (`...Tx`) and receiving (`...Rx`)
  side of each command, UDP packet fragmentation (`PacketTx.fragments`) and
  fragment hand-over for reassembly (`PacketRx.assemble`), plus `TaskCounter`
  and `Registration` for counting live tasks.
- **Connection state** – `tuicproto.connection.Connection`: UDP sessions,
  packet ID allocation, fragment reassembly buffers with garbage collection, and
  counts of `Connect` tasks and UDP sessions.
- **Utilities** – `tuicproto.utils`: the `UdpRelayMode`, `CongestionControl`
  and `StackPrefer` options, `is_private_ip`, and TLS ClientHello SNI extraction
  (`extract_sni`, `sniff_from_stream`).
- **Access control** – `tuicproto.acl` and `tuicproto.aclparse`: ACL rules such
  as `allow 192.168.1.0/24 tcp/443,udp/53`, their parsing and their matching.

## Installation

```
pip install tuicproto
```

## Encoding and decoding headers

```python
import io
from tuicproto.protocol import Connect, DomainAddress
from tuicproto.codec import encode_header, decode_header, read_header

header = Connect(DomainAddress("example.com", 443))
data = encode_header(header)

decoded, consumed = decode_header(data)   # header and number of bytes used
assert decoded == header and consumed == len(data)

assert read_header(io.BytesIO(data)) == header
```

`write_header(header, stream)` writes to a binary stream, and
`await read_header_async(reader)` reads from any object with an async
`readexactly`, such as `asyncio.StreamReader`.

Malformed input raises a subclass of `tuicproto.codec.UnmarshalError`:
`UnexpectedEof`, `InvalidVersion`, `InvalidCommand`, `InvalidAddressType` or
`AddressParseError`. Header and address constructors raise `ValueError` for
out-of-range fields (ports and IDs must fit their wire width, tokens must be
32 bytes, domains at most 255 bytes).

## Fragmenting and reassembling UDP packets

```python
from tuicproto.connection import Connection
from tuicproto.protocol import DomainAddress

sender = Connection()
receiver = Connection()

packet = sender.send_packet(1, DomainAddress("example.com", 53), 1200)
for header, fragment in packet.fragments(b"payload" * 500):
    rx = receiver.recv_packet_unrestricted(header)
    done = rx.assemble(fragment)   # None until the last fragment arrives

payload, addr, assoc_id = done.assemble()
```

`Connection.recv_packet` returns `None` for a session the connection does not
know; `recv_packet_unrestricted` opens the session instead. Misplaced,
out-of-range or duplicated fragments raise `tuicproto.tasks.AssembleError`.
`Connection.collect_garbage(timeout)` drops incomplete packets older than the
timeout, given in seconds or as a `datetime.timedelta`.

`send_connect` and `recv_connect` return tasks that count towards
`task_connect_count()` until their `registration` is released (they also work
as context managers); `task_associate_count()` is the number of open UDP
sessions, which `send_dissociate` and `recv_dissociate` close.

Authentication tokens come from a `KeyingMaterialExporter` you supply, with
`export_keying_material(label, context)` returning 32 bytes; the label is the
UUID bytes and the context the password. `AuthenticateRx.is_valid(password,
exporter)` checks a received token.

## Options and addresses

```python
from tuicproto.utils import CongestionControl, StackPrefer, UdpRelayMode, is_private_ip

UdpRelayMode.parse("QUIC")           # UdpRelayMode.QUIC
CongestionControl.parse("new_reno")  # CongestionControl.NEW_RENO
StackPrefer.parse("prefer_v4")       # StackPrefer.V4FIRST
is_private_ip("192.168.1.1")         # True
```

`parse` ignores ASCII case and raises `ValueError` on unknown names.

## Sniffing SNI

```python
from tuicproto.utils import extract_sni

hostname = extract_sni(client_hello_bytes)  # None when absent or not TLS
```

`await sniff_from_stream(reader)` reads once, up to 8 KiB, from an async reader
and extracts the name from what it got.

## ACL rules

```python
from tuicproto.aclparse import parse_acl_rules

rules = parse_acl_rules("""
allow 192.168.1.0/24 tcp/443
deny *.ads.example.com
allow private
""")
rules[0].matches("192.168.1.7", 443, True)   # True
str(rules[0])                                # 'allow 192.168.1.0/24 tcp/443'
```

A rule is `<outbound> [address] [ports] [hijack-ip]`. The address may be an
IP, a CIDR, a domain, a wildcard domain (`*.name` or `suffix:name`),
`localhost`, `private` or `*`; ports are a comma-separated list of ports or
ranges, each optionally prefixed by `tcp/` or `udp/`, or `*` for any port.
Domain rules match by resolving the name with the system resolver.

`load_acl` accepts either such a multiline string or a list of mappings with
`outbound`, `addr`, optional `ports` and optional `hijack` keys, as read from a
configuration file. Parse failures raise `tuicproto.aclparse.AclParseError`.

## What this package does not do

It has no QUIC or TLS transport, no client or server, and no command-line
program. It does not read configuration files itself: `load_acl` takes values
already loaded by the caller. Keying material for authentication must come from
the caller's own TLS session.

## Running the tests

```
pip install -e ".[test]"
pytest
```