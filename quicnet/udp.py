"""A non-blocking UDP socket that reports ECN bits and destination addresses."""

from __future__ import annotations

import errno
import logging
import os
import socket
import struct
import sys
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .address import (
    IPV4_DSTADDR_TYPE,
    IPV6_ECN_TYPE,
    IPV6_PKTINFO_TYPE,
    Address,
    Packet,
    Path,
)
from .loop import Loop
from .utils import LOG_NAME

log = logging.getLogger(LOG_NAME)

# Largest UDP payload accepted; anything bigger arrives truncated and is dropped.
MAX_PMTUD_UDP_PAYLOAD = 1452
# Upper bound on packets read in one readability callback.
MAX_RECEIVE_PER_LOOP = 64

_LINUX = sys.platform.startswith("linux")


def _const(name: str, linux_value: Optional[int] = None) -> Optional[int]:
    value = getattr(socket, name, None)
    if value is None and _LINUX:
        value = linux_value
    return value


IP_RECVTOS = _const("IP_RECVTOS", 13)
IPV6_RECVTCLASS = _const("IPV6_RECVTCLASS", 66)
IPV6_RECVPKTINFO = _const("IPV6_RECVPKTINFO", 49)
IP_PKTINFO = _const("IP_PKTINFO", 8)
IPV6_TCLASS = IPV6_ECN_TYPE
MSG_TRUNC = getattr(socket, "MSG_TRUNC", 0x20)

_INT_SIZE = struct.calcsize("=i")
_IN_PKTINFO = struct.Struct("=i4s4s")
_IN6_PKTINFO = struct.Struct("=16sI")


def _cmsg_space(length: int) -> int:
    space = getattr(socket, "CMSG_SPACE", None)
    return space(length) if space is not None else length + 32


_ANC_BUFSIZE = _cmsg_space(_INT_SIZE) + _cmsg_space(_IN6_PKTINFO.size)

ReceiveCallback = Callable[[Packet], Any]


@dataclass(frozen=True)
class IOResult:
    """Outcome of a socket operation: 0 for success, otherwise an errno value."""

    error_code: int = 0

    @property
    def success(self) -> bool:
        return self.error_code == 0

    @property
    def failure(self) -> bool:
        return not self.success

    @property
    def blocked(self) -> bool:
        """True when the operation failed only because it would have blocked."""
        return self.error_code in (errno.EAGAIN, errno.EWOULDBLOCK)

    def str_error(self) -> str:
        return os.strerror(self.error_code)


class UDPSocket:
    """A bound, non-blocking UDP socket.

    With a Loop, incoming packets are read on the loop thread whenever the
    socket is readable and handed to ``on_receive``.  Without one, the caller
    drives ``receive()`` itself.
    """

    def __init__(self, loop: Optional[Loop], addr: Address, on_receive: ReceiveCallback):
        if on_receive is None or not callable(on_receive):
            raise ValueError("UDPSocket construction requires a non-empty receive callback")
        self._loop = loop
        self._receive_callback = on_receive
        self._writeable_callbacks: List[Callable[[], Any]] = []
        self._closed = False

        ipv6 = addr.is_ipv6()
        proto = socket.IPPROTO_IPV6 if ipv6 else socket.IPPROTO_IP
        sock = socket.socket(socket.AF_INET6 if ipv6 else socket.AF_INET, socket.SOCK_DGRAM)
        try:
            if ipv6:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0 if addr.dual_stack else 1)

            ecn_opt = IPV6_RECVTCLASS if ipv6 else IP_RECVTOS
            if ecn_opt is not None and sys.platform != "win32":
                sock.setsockopt(proto, ecn_opt, 1)

            # macOS reports garbage packet info on dual-stack sockets.
            broken_os = sys.platform == "darwin" and ipv6
            if not broken_os:
                info_opt = IPV6_RECVPKTINFO if ipv6 else IPV4_DSTADDR_TYPE
                if info_opt is not None:
                    sock.setsockopt(proto, info_opt, 1)

            sock.bind(addr.to_sockaddr())
            self._bound = Address.from_sockaddr(sock.getsockname())
            sock.setblocking(False)
        except OSError as exc:
            log.error("Got error %s (%s) during socket setup", exc.errno, exc.strerror)
            sock.close()
            raise
        self._sock = sock

        if loop is not None:
            loop.add_reader(sock, self._on_readable)

    @property
    def address(self) -> Address:
        """The address the socket is bound to."""
        return self._bound

    def fileno(self) -> int:
        return self._sock.fileno()

    def __enter__(self) -> UDPSocket:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _on_readable(self) -> None:
        result = self.receive()
        if result.failure:
            log.error(
                "Got error %s (%s) during udp receive", result.error_code, result.str_error()
            )

    def _process_packet(self, data: bytes, ancdata: Sequence[Any], flags: int, peer: Any) -> None:
        if not data:
            log.warning("Dropping empty UDP packet")
            return
        if flags & MSG_TRUNC:
            log.warning("Dropping truncated UDP packet")
            return
        self._receive_callback(Packet.from_recvmsg(self._bound, data, ancdata, peer))

    def receive(self) -> IOResult:
        """Read every waiting packet (up to a per-call limit) and dispatch them."""
        for _ in range(MAX_RECEIVE_PER_LOOP):
            try:
                data, ancdata, flags, peer = self._sock.recvmsg(MAX_PMTUD_UDP_PAYLOAD, _ANC_BUFSIZE)
            except InterruptedError:
                continue
            except BlockingIOError:
                return IOResult()
            except OSError as exc:
                return IOResult(exc.errno or errno.EIO)
            self._process_packet(data, ancdata, flags, peer)
        return IOResult()

    def _control_messages(self, path: Path, remote: Address, ecn: int) -> List[Tuple[int, int, bytes]]:
        ecn_ipv4 = remote.is_ipv4() or remote.is_ipv4_mapped_ipv6()
        ecn_bytes = struct.pack("=i", ecn)
        if ecn_ipv4:
            messages = [(socket.IPPROTO_IP, socket.IP_TOS, ecn_bytes)]
        else:
            messages = [(socket.IPPROTO_IPV6, IPV6_TCLASS, ecn_bytes)]

        if self._bound.is_any_addr() and not path.local.is_any_addr():
            if path.local.is_ipv4():
                info = _IN_PKTINFO.pack(0, path.local.ip.packed, bytes(4))
                messages.append((socket.IPPROTO_IP, IP_PKTINFO, info))
            else:
                info = _IN6_PKTINFO.pack(path.local.ip.packed, 0)
                messages.append((socket.IPPROTO_IPV6, IPV6_PKTINFO_TYPE, info))
        return messages

    def send(self, path: Path, bufs: Sequence[bytes], ecn: int = 0) -> Tuple[IOResult, int]:
        """Send each buffer as one datagram along ``path``.

        Returns the result of the last attempt and how many datagrams went out;
        sending stops at the first failure.
        """
        packets = [bytes(buf) for buf in bufs]
        if any(not packet for packet in packets):
            raise ValueError("Cannot send an empty UDP packet")

        remote = path.remote
        # An IPv6 socket can only address IPv4 peers through the mapped form.
        if self._bound.is_ipv6() and remote.is_ipv4():
            remote = remote.mapped_ipv4_as_ipv6()
        dest = remote.to_sockaddr()

        use_msg = hasattr(self._sock, "sendmsg")
        ancdata = self._control_messages(path, remote, ecn) if use_msg else []

        sent = 0
        for packet in packets:
            try:
                if use_msg:
                    self._sock.sendmsg([packet], ancdata, 0, dest)
                else:
                    self._sock.sendto(packet, dest)
            except OSError as exc:
                return IOResult(exc.errno or errno.EIO), sent
            sent += 1
        return IOResult(), sent

    def when_writeable(self, callback: Callable[[], Any]) -> None:
        """Run ``callback`` on the loop thread once the socket becomes writeable."""
        if self._loop is None:
            raise RuntimeError("when_writeable requires the socket to run on a Loop")
        self._writeable_callbacks.append(callback)

        def fire() -> None:
            callbacks, self._writeable_callbacks = self._writeable_callbacks, []
            for func in callbacks:
                func()

        self._loop.add_writer(self._sock, fire)

    def close(self) -> None:
        """Stop watching the socket and close it; idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._loop is not None and self._loop._running:
            try:
                self._loop.remove_reader(self._sock)
            except (RuntimeError, ValueError, OSError):
                log.debug("Could not unregister socket reader")
        self._sock.close()