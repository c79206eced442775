"""Socket addresses, network paths and received packets."""

from __future__ import annotations

import ipaddress
import logging
import socket
import sys
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence, Tuple, Union

from .ip import IPv4, IPv6
from .utils import LOG_NAME

log = logging.getLogger(LOG_NAME)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
HostInput = Union[str, bytes, IPAddress, IPv4, IPv6, None]

# The two ECN bits of the IP TOS / IPv6 traffic class byte.
ECN_MASK = 0x03

IPV4_ECN_TYPE: int = (
    getattr(socket, "IP_RECVTOS", socket.IP_TOS) if sys.platform == "darwin" else socket.IP_TOS
)
IPV6_ECN_TYPE: int = getattr(socket, "IPV6_TCLASS", 67)
IPV6_PKTINFO_TYPE: int = getattr(socket, "IPV6_PKTINFO", 50)
IPV4_DSTADDR_TYPE: int = (
    socket.IP_RECVDSTADDR
    if hasattr(socket, "IP_RECVDSTADDR") and sys.platform != "win32"
    else getattr(socket, "IP_PKTINFO", 8)
)

# struct in_pktinfo { int ipi_ifindex; in_addr ipi_spec_dst; in_addr ipi_addr; }
_IN_PKTINFO_ADDR_OFFSET = 8
_IN_PKTINFO_SIZE = 12
_IN6_ADDR_SIZE = 16


def _to_ip(host: HostInput) -> IPAddress:
    if host is None or host == "" or host == b"":
        return ipaddress.IPv6Address("::")
    if isinstance(host, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return host
    if isinstance(host, IPv4):
        return ipaddress.IPv4Address(host.addr)
    if isinstance(host, IPv6):
        return ipaddress.IPv6Address(host.to_bytes())
    if isinstance(host, bytes):
        if len(host) not in (4, 16):
            raise ValueError("Unable to parse IP address!")
        return ipaddress.ip_address(host)
    try:
        return ipaddress.ip_address(host)
    except ValueError as exc:
        raise ValueError("Unable to parse IP address!") from exc


@dataclass(frozen=True, init=False)
class Address:
    """An IP address and port.

    An empty host means the IPv6 any-address.  ``dual_stack`` (which only
    matters for IPv6 sockets) defaults to on for the any-address.
    """

    ip: IPAddress
    port: int = 0
    dual_stack: bool = field(default=False, compare=False)

    def __init__(self, host: HostInput = "", port: int = 0, dual_stack: Optional[bool] = None):
        ip = _to_ip(host)
        if not 0 <= int(port) <= 0xFFFF:
            raise ValueError(f"Invalid port: {port}")
        if dual_stack is None:
            dual_stack = isinstance(ip, ipaddress.IPv6Address) and ip.is_unspecified
        object.__setattr__(self, "ip", ip)
        object.__setattr__(self, "port", int(port))
        object.__setattr__(self, "dual_stack", bool(dual_stack))

    @classmethod
    def from_sockaddr(cls, sockaddr: Sequence[Any]) -> Address:
        """Build an address from a socket-module address tuple."""
        if not isinstance(sockaddr, (tuple, list)) or len(sockaddr) < 2:
            raise ValueError(f"Not an IP socket address: {sockaddr!r}")
        return cls(sockaddr[0], sockaddr[1], dual_stack=False)

    @property
    def host(self) -> str:
        return str(self.ip)

    @property
    def family(self) -> int:
        return socket.AF_INET if self.is_ipv4() else socket.AF_INET6

    def is_ipv4(self) -> bool:
        return isinstance(self.ip, ipaddress.IPv4Address)

    def is_ipv6(self) -> bool:
        return isinstance(self.ip, ipaddress.IPv6Address)

    def is_any_addr(self) -> bool:
        return self.ip.is_unspecified

    def is_ipv4_mapped_ipv6(self) -> bool:
        return self.is_ipv6() and self.ip.ipv4_mapped is not None

    def mapped_ipv4_as_ipv6(self) -> Address:
        """The IPv4-mapped IPv6 form of an IPv4 address."""
        if not self.is_ipv4():
            raise ValueError("Only IPv4 addresses can be mapped into IPv6")
        return Address(ipaddress.IPv6Address(f"::ffff:{self.ip}"), self.port, dual_stack=False)

    def with_ip(self, ip: HostInput) -> Address:
        """The same port and dual-stack setting with a different IP."""
        return Address(ip, self.port, self.dual_stack)

    def to_sockaddr(self) -> Tuple[Any, ...]:
        """The address tuple that the socket module expects."""
        if self.is_ipv4():
            return (str(self.ip), self.port)
        return (str(self.ip), self.port, 0, 0)

    def __str__(self) -> str:
        if self.is_ipv6():
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


@dataclass(frozen=True)
class Path:
    """The local and remote addresses of a network path."""

    local: Address = field(default_factory=Address)
    remote: Address = field(default_factory=Address)

    def __str__(self) -> str:
        return f"{{{self.local} <-> {self.remote}}}"


@dataclass(frozen=True)
class Packet:
    """A received UDP datagram with the path it came in on and its ECN bits."""

    path: Path
    data: bytes
    ecn: int = 0

    @classmethod
    def from_recvmsg(
        cls,
        local: Address,
        data: bytes,
        ancdata: Iterable[Tuple[int, int, bytes]],
        peer: Sequence[Any],
    ) -> Packet:
        """Build a packet from the pieces that ``socket.recvmsg`` returns.

        ECN bits come from the TOS / traffic-class control message, and the
        local address is narrowed to the packet's destination address when
        packet-info control messages are present.
        """
        remote = Address.from_sockaddr(peer)
        ecn = 0
        for level, ctype, cdata in ancdata:
            if not cdata:
                continue
            if level == socket.IPPROTO_IP:
                if ctype == IPV4_ECN_TYPE:
                    ecn = cdata[0] & ECN_MASK
                if ctype == IPV4_DSTADDR_TYPE:
                    if len(cdata) >= _IN_PKTINFO_SIZE:
                        raw = cdata[_IN_PKTINFO_ADDR_OFFSET:_IN_PKTINFO_SIZE]
                        local = local.with_ip(bytes(raw))
                    elif len(cdata) == 4:
                        local = local.with_ip(bytes(cdata))
            elif level == socket.IPPROTO_IPV6:
                if ctype == IPV6_ECN_TYPE:
                    tclass = int.from_bytes(bytes(cdata[:4]), sys.byteorder)
                    ecn = tclass & ECN_MASK
                if ctype == IPV6_PKTINFO_TYPE and len(cdata) >= _IN6_ADDR_SIZE:
                    local = local.with_ip(bytes(cdata[:_IN6_ADDR_SIZE]))
        path = Path(local, remote)
        log.debug("incoming packet path is %s", path)
        return cls(path=path, data=bytes(data), ecn=ecn)