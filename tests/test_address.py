import socket
import sys

import pytest

from quicnet.address import (
    ECN_MASK,
    IPV4_DSTADDR_TYPE,
    IPV4_ECN_TYPE,
    IPV6_ECN_TYPE,
    IPV6_PKTINFO_TYPE,
    Address,
    Packet,
    Path,
)
from quicnet.ip import IPv4, IPv6


def test_default_address_is_dual_stack_any():
    addr = Address()
    assert addr.is_ipv6()
    assert addr.is_any_addr()
    assert addr.dual_stack
    assert addr.port == 0


def test_ipv4_string_form():
    addr = Address("127.0.0.1", 5500)
    assert addr.is_ipv4()
    assert not addr.is_ipv6()
    assert str(addr) == "127.0.0.1:5500"
    assert not addr.is_any_addr()


def test_ipv6_string_form_uses_brackets():
    addr = Address("::1", 443)
    assert str(addr) == "[::1]:443"
    assert addr.family == socket.AF_INET6


def test_invalid_host_raises():
    with pytest.raises(ValueError, match="Unable to parse IP address!"):
        Address("not-an-ip", 1)


def test_invalid_port_raises():
    with pytest.raises(ValueError):
        Address("127.0.0.1", 70000)


def test_equality_ignores_dual_stack():
    assert Address("::", 10, dual_stack=True) == Address("::", 10, dual_stack=False)
    assert Address("10.0.0.1", 10) != Address("10.0.0.1", 11)


def test_accepts_ip_values():
    v4 = IPv4.parse("192.168.1.2")
    v6 = IPv6.parse("fe80::1")
    assert Address(v4, 1).host == str(v4)
    assert Address(v6, 1).host == str(v6)


def test_mapped_ipv4_round_trip():
    addr = Address("10.1.2.3", 99)
    mapped = addr.mapped_ipv4_as_ipv6()
    assert mapped.is_ipv6()
    assert mapped.is_ipv4_mapped_ipv6()
    assert str(mapped.ip.ipv4_mapped) == "10.1.2.3"
    assert mapped.port == 99
    assert not addr.is_ipv4_mapped_ipv6()


def test_mapping_ipv6_raises():
    with pytest.raises(ValueError):
        Address("::1", 1).mapped_ipv4_as_ipv6()


def test_sockaddr_round_trip():
    for addr in (Address("127.0.0.1", 1234), Address("::1", 4321)):
        assert Address.from_sockaddr(addr.to_sockaddr()) == addr


def test_bad_sockaddr_raises():
    with pytest.raises(ValueError):
        Address.from_sockaddr("127.0.0.1")


def test_path_string_contains_both_ends():
    path = Path(Address("127.0.0.1", 1), Address("127.0.0.2", 2))
    text = str(path)
    assert str(path.local) in text
    assert str(path.remote) in text


def test_packet_ipv4_ecn_and_dstaddr():
    local = Address("0.0.0.0", 5000)
    dst = socket.inet_aton("10.0.0.7")
    if IPV4_DSTADDR_TYPE == IPV4_ECN_TYPE:
        pytest.fail("control message types must differ")
    pktinfo = (3).to_bytes(4, sys.byteorder) + bytes(4) + dst
    ancdata = [
        (socket.IPPROTO_IP, IPV4_ECN_TYPE, bytes([0x02])),
        (socket.IPPROTO_IP, IPV4_DSTADDR_TYPE, pktinfo),
    ]
    pkt = Packet.from_recvmsg(local, b"hello", ancdata, ("192.168.0.9", 777))
    assert pkt.ecn == 0x02
    assert pkt.data == b"hello"
    assert pkt.path.local == Address("10.0.0.7", 5000)
    assert pkt.path.remote == Address("192.168.0.9", 777)


def test_packet_ecn_is_masked():
    ancdata = [(socket.IPPROTO_IP, IPV4_ECN_TYPE, bytes([0xFE]))]
    pkt = Packet.from_recvmsg(Address("0.0.0.0", 1), b"x", ancdata, ("1.2.3.4", 5))
    assert pkt.ecn == 0xFE & ECN_MASK
    assert 0 <= pkt.ecn <= ECN_MASK


def test_packet_ipv6_tclass_and_pktinfo():
    local = Address("::", 6000)
    dst = socket.inet_pton(socket.AF_INET6, "2001:db8::5")
    ancdata = [
        (socket.IPPROTO_IPV6, IPV6_ECN_TYPE, (1).to_bytes(4, sys.byteorder)),
        (socket.IPPROTO_IPV6, IPV6_PKTINFO_TYPE, dst + (2).to_bytes(4, sys.byteorder)),
    ]
    pkt = Packet.from_recvmsg(local, b"data", ancdata, ("2001:db8::9", 12, 0, 0))
    assert pkt.ecn == 1
    assert pkt.path.local == Address("2001:db8::5", 6000)
    assert pkt.path.remote.port == 12


def test_packet_skips_empty_control_messages():
    local = Address("0.0.0.0", 1)
    ancdata = [(socket.IPPROTO_IP, IPV4_ECN_TYPE, b"")]
    pkt = Packet.from_recvmsg(local, b"z", ancdata, ("1.1.1.1", 2))
    assert pkt.ecn == 0
    assert pkt.path.local == local


def test_packet_from_real_socket():
    receiver = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sender = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        receiver.bind(("127.0.0.1", 0))
        sender.bind(("127.0.0.1", 0))
        receiver.settimeout(5)
        sender.sendto(b"ping", receiver.getsockname())
        data, ancdata, _flags, peer = receiver.recvmsg(2048, 1024)
        local = Address.from_sockaddr(receiver.getsockname())
        pkt = Packet.from_recvmsg(local, data, ancdata, peer)
        assert pkt.data == b"ping"
        assert pkt.path.remote.port == sender.getsockname()[1]
        assert pkt.path.local == local
    finally:
        receiver.close()
        sender.close()