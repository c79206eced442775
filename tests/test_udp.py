import errno
import queue
import select
import socket
import threading
import time

import pytest

from quicnet.address import Address, Path
from quicnet.loop import Loop
from quicnet.udp import MAX_PMTUD_UDP_PAYLOAD, IOResult, UDPSocket


def _collect(sock, packets, count, timeout=2.0):
    deadline = time.monotonic() + timeout
    while len(packets) < count and time.monotonic() < deadline:
        select.select([sock], [], [], 0.1)
        result = sock.receive()
        assert result.success
    return packets


@pytest.fixture
def pair():
    a_packets, b_packets = [], []
    a = UDPSocket(None, Address("127.0.0.1", 0), a_packets.append)
    b = UDPSocket(None, Address("127.0.0.1", 0), b_packets.append)
    yield a, a_packets, b, b_packets
    a.close()
    b.close()


def test_ioresult_states():
    assert IOResult().success
    assert not IOResult().failure
    assert IOResult(errno.EAGAIN).blocked
    assert IOResult(errno.ECONNREFUSED).failure
    assert not IOResult(errno.ECONNREFUSED).blocked


def test_requires_receive_callback():
    with pytest.raises(ValueError):
        UDPSocket(None, Address("127.0.0.1", 0), None)


def test_bound_address(pair):
    a, _, b, _ = pair
    assert a.address.host == "127.0.0.1"
    assert a.address.port > 0
    assert a.address.port != b.address.port


def test_send_and_receive(pair):
    a, _, b, b_packets = pair
    result, sent = a.send(Path(a.address, b.address), [b"hello", b"world"])
    assert result.success
    assert sent == 2
    _collect(b, b_packets, 2)
    assert [p.data for p in b_packets] == [b"hello", b"world"]
    assert all(p.path.remote.port == a.address.port for p in b_packets)
    assert all(p.path.local.port == b.address.port for p in b_packets)


def test_ecn_bits_are_reported(pair):
    a, _, b, b_packets = pair
    a.send(Path(a.address, b.address), [b"ecn"], ecn=2)
    _collect(b, b_packets, 1)
    assert b_packets[0].ecn == 2


def test_receive_with_nothing_waiting(pair):
    _, _, b, b_packets = pair
    result = b.receive()
    assert result.success
    assert b_packets == []


def test_send_empty_buffer_rejected(pair):
    a, _, b, _ = pair
    with pytest.raises(ValueError):
        a.send(Path(a.address, b.address), [b""])


def test_empty_and_truncated_packets_dropped(pair):
    _, _, b, b_packets = pair
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as raw:
        dest = b.address.to_sockaddr()
        raw.sendto(b"", dest)
        raw.sendto(b"x" * (MAX_PMTUD_UDP_PAYLOAD + 100), dest)
        raw.sendto(b"kept", dest)
    _collect(b, b_packets, 1)
    time.sleep(0.05)
    b.receive()
    assert [p.data for p in b_packets] == [b"kept"]


def test_receive_after_close_fails():
    sock = UDPSocket(None, Address("127.0.0.1", 0), lambda p: None)
    sock.close()
    sock.close()
    assert sock.receive().failure


def test_when_writeable_without_loop():
    with UDPSocket(None, Address("127.0.0.1", 0), lambda p: None) as sock:
        with pytest.raises(RuntimeError):
            sock.when_writeable(lambda: None)


def test_loop_driven_receive_and_writeable():
    loop = Loop()
    try:
        received = queue.Queue()
        writeable = threading.Event()
        sock = UDPSocket(loop, Address("127.0.0.1", 0), received.put)
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as raw:
                raw.sendto(b"ping", sock.address.to_sockaddr())
                packet = received.get(timeout=2)
                assert packet.data == b"ping"
                assert packet.path.remote.port == raw.getsockname()[1]
            sock.when_writeable(writeable.set)
            assert writeable.wait(2)
        finally:
            sock.close()
    finally:
        loop.close()