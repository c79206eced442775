# quicnet

Building blocks for a QUIC-style networking layer, written in plain Python
with no third-party dependencies.

## What is inside

- `quicnet.ip` — `IPv4`, `IPv6`, `IPv4Net` and `IPv6Net` value types.
  `IPv4.parse` / `IPv6.parse` read the textual forms, `str()` writes them
  back, and `IPv6.to_bytes()` gives the 16 network-order bytes.
- `quicnet.utils` — `parse_addr` for `host:port` and `[v6]:port` strings,
  `str_tolower` (ASCII-only lower-casing), the monotonic clock helpers
  `get_time` (seconds) and `get_timestamp` (nanoseconds), and
  `logger_config`, which attaches a log handler to the `"quic"` logger once
  per process.
- `quicnet.opt` — option values: `MaxStreams`, `OutboundAlpns`,
  `InboundAlpns`, `Alpns`, `HandshakeTimeout`, `KeepAlive`, `IdleTimeout`,
  `EnableDatagrams` with its `Splitting` mode, `StaticSecret`,
  `ManualRouting` and `Watermark`.
- `quicnet.messages` — `DatagramStorage`, the outgoing `BufferQueue` (which
  builds `PreparedDatagram` values) and the `RotatingBuffer` that pairs the
  two halves of a split datagram and evicts stale halves row by row.
- `quicnet.loop` — a `Loop` running an event loop on its own thread, with
  `call`, `call_soon`, `call_get`, `call_later`, reader/writer watches, and
  `Ticker` timers that fire once or repeatedly.
- `quicnet.stream` — a `Stream` with send buffering, acknowledgement
  accounting (`wrote`, `acknowledge`, `pending`, `size`, `unacked`,
  `unsent`), pausing, closing and low/high watermark hooks.
- `quicnet.network` — a `Network` that owns or shares a `Loop`, keeps a list
  of registered endpoints and closes their connections on shutdown.
- `quicnet.address` — `Address`, `Path` and `Packet`; `Packet.from_recvmsg`
  reads ECN bits and the destination address from `socket.recvmsg` control
  messages.
- `quicnet.udp` — a non-blocking `UDPSocket` that sends with ECN and
  source-address control messages and reports results as `IOResult`.

## Install

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

Parsing addresses:

```python
from quicnet.utils import parse_addr

parse_addr("127.0.0.1:5500", None)   # ("127.0.0.1", 5500)
parse_addr("[::1]", 4400)            # ("::1", 4400)
parse_addr("::1:80", None)           # ValueError: IPv6 needs [...] brackets
```

IP values:

```python
from quicnet.ip import IPv4, IPv6, IPv4Net

str(IPv4.parse("10.0.0.1"))                  # "10.0.0.1"
IPv6.parse("::1").to_bytes()                 # 16 bytes, big-endian
str(IPv4Net(IPv4.parse("10.0.0.0"), 8))      # "10.0.0.0/8"
```

Datagram options and reassembly:

```python
from quicnet.opt import EnableDatagrams, Splitting
from quicnet.messages import RotatingBuffer

opts = EnableDatagrams(Splitting.ACTIVE, 4096)   # bufsize must divide by 4

buf = RotatingBuffer(opts.bufsize)
buf.receive(b"ab", 2)    # None: first half stored
buf.receive(b"cd", 3)    # b"abcd": halves paired
```

Running work on the event loop:

```python
from quicnet.loop import Loop

with Loop() as loop:
    loop.call_get(lambda: 1 + 1)                  # 2, computed on the loop thread
    ticker = loop.call_later(0.5, lambda: print("fired"))
    ticker.stop()                                 # cancel before it fires
```

A `Network` creates its own `Loop` (or uses one passed in) and stops it when
the last linked network closes:

```python
from quicnet.network import Network

with Network() as net:
    net.loop.call_get(lambda: "on the loop")
```

Sending a UDP datagram:

```python
from quicnet.address import Address, Path
from quicnet.udp import UDPSocket

received = []
with UDPSocket(None, Address("127.0.0.1", 0), received.append) as rx, \
     UDPSocket(None, Address("127.0.0.1", 0), lambda pkt: None) as tx:
    result, sent = tx.send(Path(tx.address, rx.address), [b"hello"])
    rx.receive()          # received[0].data == b"hello"
```

Invalid input raises `ValueError`, for example an unparsable IP address, a
buffer size that is not a positive multiple of 4 up to 16384, a static
secret shorter than 16 bytes, or a stream error code out of range.

## What it does not do

The package has no QUIC protocol engine: no TLS handshake, no connection or
endpoint implementation, no packet encryption and no command-line tools.
`Stream` works against any object providing the `StreamConnection` and
`StreamEndpoint` protocols in `quicnet.stream`, and `Network` manages any
object with a `close_conns` method; supplying those is up to the
application.