import pytest

from quicnet.messages import (
    BufferQueue,
    DatagramStorage,
    Dgram,
    OutboundDgram,
    ReceivedDatagram,
    RotatingBuffer,
)

PAYLOAD = bytes(range(40))


def _split_pair():
    q = BufferQueue()
    q.emplace(PAYLOAD, 6, None, Dgram.OVERSIZED, max_size=20)
    first = q.prepare(True, True)
    q.drop_front(True)
    second = q.prepare(True, True)
    return first, second


def test_received_datagram_part():
    assert ReceivedDatagram(6, b"x").part == -1
    assert ReceivedDatagram(7, b"x").part == 1


def test_standard_storage_fetch():
    s = DatagramStorage.make(b"hello", 4, None, Dgram.STANDARD)
    assert s.fetch(True) == OutboundDgram(b"hello", 4, -1, True)
    assert s.fetch(False) == OutboundDgram(b"hello", 4, -1, True)
    assert not s.empty()
    assert s.size() == len(b"hello")


def test_oversized_storage_splits():
    s = DatagramStorage.make(PAYLOAD, 6, None, Dgram.OVERSIZED, max_size=20)
    assert s.payload + s.addendum == PAYLOAD
    assert len(s.payload) == 20 // 2
    assert s.add_id == 7
    assert s.size() == len(PAYLOAD)
    assert s.fetch(True) == OutboundDgram(s.payload, 6, -1, False)
    assert s.fetch(False) == OutboundDgram(s.addendum, 7, 1, False)


def test_oversized_storage_requires_max_size():
    with pytest.raises(ValueError):
        DatagramStorage.make(PAYLOAD, 6, None, Dgram.OVERSIZED, max_size=0)


def test_oversized_storage_requires_split_id():
    with pytest.raises(ValueError):
        DatagramStorage.make(PAYLOAD, 5, None, Dgram.OVERSIZED, max_size=20)


def test_queue_standard_roundtrip():
    q = BufferQueue()
    assert q.empty()
    q.emplace(b"abc", 8, None, Dgram.STANDARD)
    assert len(q) == 1
    d = q.prepare(True, False)
    assert d.bufs == (b"abc",)
    assert d.id == 8
    assert d.is_empty
    assert len(d) == 1
    q.drop_front(True)
    assert q.empty()


def test_queue_splitting_prefixes_id():
    q = BufferQueue()
    q.emplace(PAYLOAD, 6, None, Dgram.OVERSIZED, max_size=20)
    d = q.prepare(True, True)
    assert d.bufs[0] == b"\x00\x06"
    assert d.dgid == d.bufs[0]
    assert d.payload == d.bufs[0] + PAYLOAD[: len(d.bufs[1])]
    assert not d.is_empty

    q.drop_front(True)
    assert len(q) == 1
    d2 = q.prepare(True, True)
    assert d2.id == 7
    assert d2.is_empty
    assert d.bufs[1] + d2.bufs[1] == PAYLOAD

    q.drop_front(True)
    assert q.empty()


def test_queue_drop_addendum_first():
    q = BufferQueue()
    q.emplace(PAYLOAD, 6, None, Dgram.OVERSIZED, max_size=20)
    q.drop_front(False)
    d = q.prepare(False, False)
    assert d.id == 6
    assert d.is_empty
    assert d.bufs == (PAYLOAD[: len(d.bufs[0])],)


def test_queue_empty_errors():
    q = BufferQueue()
    with pytest.raises(IndexError):
        q.drop_front(True)
    with pytest.raises(IndexError):
        q.prepare(True, True)


@pytest.mark.parametrize("first_is_payload", [True, False])
def test_rotating_buffer_reassembles(first_is_payload):
    first, second = _split_pair()
    parts = [first, second] if first_is_payload else [second, first]
    rb = RotatingBuffer(16)
    assert rb.receive(parts[0].bufs[1], parts[0].id) is None
    assert rb.datagrams_stored() == 1
    assert rb.receive(parts[1].bufs[1], parts[1].id) == PAYLOAD
    assert rb.datagrams_stored() == 0


def test_rotating_buffer_debug_drop():
    first, second = _split_pair()
    rb = RotatingBuffer(16)
    rb.debug_drop_enabled = True
    assert rb.receive(first.bufs[1], first.id) is None
    assert rb.receive(second.bufs[1], second.id) is None
    assert rb.debug_drop_counter == 1
    assert rb.datagrams_stored() == 1


def test_rotating_buffer_evicts_rows():
    rb = RotatingBuffer(16)
    assert rb.receive(b"a", 2) is None  # row 0
    assert rb.datagrams_stored() == 1
    assert rb.receive(b"b", 34) is None  # row 2, evicts row 0
    assert rb.last_cleared == 0
    assert rb.datagrams_stored() == 1
    # the partner of the evicted half finds nothing and is stored instead
    assert rb.receive(b"c", 3) is None
    assert rb.datagrams_stored() == 2


def test_clear_row_drops_halves():
    rb = RotatingBuffer(16)
    rb.receive(b"a", 2)
    rb.clear_row(0)
    assert rb.receive(b"b", 3) is None


@pytest.mark.parametrize("bufsize", [0, -4, 10])
def test_rotating_buffer_rejects_bad_size(bufsize):
    with pytest.raises(ValueError):
        RotatingBuffer(bufsize)