"""Plain IPv4/IPv6 address values and network prefixes."""

from __future__ import annotations

import socket
from dataclasses import dataclass

_IPV4_MAX = (1 << 32) - 1
_U64_MAX = (1 << 64) - 1


def _pton(family: int, text: str) -> bytes:
    """Parse an address string, raising ValueError when it is not valid."""
    try:
        return socket.inet_pton(family, text)
    except (OSError, ValueError) as exc:
        raise ValueError("Unable to parse IP address!") from exc


@dataclass(frozen=True, order=True)
class IPv4:
    """An IPv4 address held as a host-order 32-bit integer."""

    addr: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.addr <= _IPV4_MAX:
            raise ValueError(f"IPv4 address value out of range: {self.addr}")

    @classmethod
    def parse(cls, text: str) -> IPv4:
        """Build an address from dotted-quad notation."""
        return cls(int.from_bytes(_pton(socket.AF_INET, text), "big"))

    def __str__(self) -> str:
        return socket.inet_ntop(socket.AF_INET, self.addr.to_bytes(4, "big"))


@dataclass(frozen=True, order=True)
class IPv4Net:
    """An IPv4 base address with a prefix length."""

    base: IPv4
    mask: int

    def __str__(self) -> str:
        return f"{self.base}/{self.mask}"


@dataclass(frozen=True, order=True)
class IPv6:
    """An IPv6 address held as two host-order 64-bit halves."""

    hi: int = 0
    lo: int = 0

    def __post_init__(self) -> None:
        if not (0 <= self.hi <= _U64_MAX and 0 <= self.lo <= _U64_MAX):
            raise ValueError("IPv6 address halves must be unsigned 64-bit values")

    @classmethod
    def parse(cls, text: str) -> IPv6:
        """Build an address from its textual form."""
        raw = _pton(socket.AF_INET6, text)
        return cls(int.from_bytes(raw[:8], "big"), int.from_bytes(raw[8:], "big"))

    def to_bytes(self) -> bytes:
        """Return the 16 network-order bytes of the address."""
        return self.hi.to_bytes(8, "big") + self.lo.to_bytes(8, "big")

    def __str__(self) -> str:
        return socket.inet_ntop(socket.AF_INET6, self.to_bytes())


@dataclass(frozen=True, order=True)
class IPv6Net:
    """An IPv6 base address with a prefix length."""

    base: IPv6
    mask: int

    def __str__(self) -> str:
        return f"{self.base}/{self.mask}"