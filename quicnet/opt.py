"""Option values accepted when creating endpoints and connections."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Tuple, Union

DEFAULT_MAX_BIDI_STREAMS = 32
DEFAULT_IDLE_TIMEOUT = timedelta(seconds=30)

AlpnInput = Union[str, bytes, Iterable[Union[str, bytes]], None]
Duration = Union[timedelta, int, float]


class Splitting(Enum):
    """Whether oversized datagrams are split in two."""

    NONE = 0
    ACTIVE = 1


def _alpn_tuple(alpns: AlpnInput) -> Tuple[bytes, ...]:
    if alpns is None:
        return ()
    if isinstance(alpns, (str, bytes)):
        alpns = [alpns]
    return tuple(a.encode() if isinstance(a, str) else bytes(a) for a in alpns)


def _duration(value: Duration) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


@dataclass(frozen=True)
class MaxStreams:
    """Maximum number of bidirectional streams."""

    stream_count: int = DEFAULT_MAX_BIDI_STREAMS


@dataclass(frozen=True)
class OutboundAlpns:
    """ALPNs offered on outbound connections."""

    alpns: Tuple[bytes, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "alpns", _alpn_tuple(self.alpns))


@dataclass(frozen=True)
class InboundAlpns:
    """ALPNs accepted on inbound connections."""

    alpns: Tuple[bytes, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "alpns", _alpn_tuple(self.alpns))


@dataclass(frozen=True)
class Alpns:
    """ALPNs used for both inbound and outbound connections."""

    inout_alpns: Tuple[bytes, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "inout_alpns", _alpn_tuple(self.inout_alpns))


@dataclass(frozen=True)
class HandshakeTimeout:
    """Handshake timeout; zero means the endpoint default."""

    timeout: timedelta = timedelta(0)

    def __post_init__(self) -> None:
        object.__setattr__(self, "timeout", _duration(self.timeout))


@dataclass(frozen=True)
class KeepAlive:
    """Interval for outgoing PINGs; zero disables them."""

    time: timedelta = timedelta(0)

    def __post_init__(self) -> None:
        object.__setattr__(self, "time", _duration(self.time))


@dataclass(frozen=True)
class IdleTimeout:
    """Maximum idle timeout; zero disables it."""

    timeout: timedelta = DEFAULT_IDLE_TIMEOUT

    def __post_init__(self) -> None:
        object.__setattr__(self, "timeout", _duration(self.timeout))


@dataclass(init=False, frozen=True)
class EnableDatagrams:
    """Enables datagrams, optionally with packet splitting and a buffer size.

    The buffer is shared between 4 rows, so its size must divide by 4.
    """

    split_packets: bool = False
    mode: Splitting = Splitting.NONE
    bufsize: int = 4096

    def __init__(self, mode: Optional[Splitting] = None, bufsize: Optional[int] = None):
        if isinstance(mode, bool):
            raise TypeError("EnableDatagrams takes a Splitting mode, not a bool")
        if mode is None:
            if bufsize is not None:
                raise TypeError("A buffer size requires a Splitting mode")
            return
        if not isinstance(mode, Splitting):
            raise TypeError("mode must be a Splitting value")
        object.__setattr__(self, "split_packets", True)
        object.__setattr__(self, "mode", mode)
        if bufsize is None:
            return
        if bufsize <= 0:
            raise ValueError("Bufsize must be positive")
        if bufsize > 1 << 14:
            raise ValueError("Bufsize too large")
        if bufsize % 4 != 0:
            raise ValueError("Bufsize must be evenly divisible between 4 rows")
        object.__setattr__(self, "bufsize", bufsize)


@dataclass(frozen=True)
class StaticSecret:
    """Secret data for validation tokens; at least SECRET_MIN_SIZE bytes."""

    SECRET_MIN_SIZE = 16

    secret: bytes

    def __post_init__(self) -> None:
        secret = bytes(self.secret)
        if len(secret) < self.SECRET_MIN_SIZE:
            raise ValueError(
                f"StaticSecret requires data of at least {self.SECRET_MIN_SIZE} bytes"
            )
        object.__setattr__(self, "secret", secret)


class ManualRouting:
    """Sends packets through an application hook instead of a UDP socket."""

    __slots__ = ("_send_hook",)

    def __init__(self, send_hook: Callable[[Any, bytes], None]):
        if send_hook is None or not callable(send_hook):
            raise ValueError("ManualRouting must be constructed with a send handler hook!")
        self._send_hook: Optional[Callable[[Any, bytes], None]] = send_hook

    @classmethod
    def _disabled(cls) -> ManualRouting:
        inst = cls.__new__(cls)
        inst._send_hook = None
        return inst

    def __call__(self, path: Any, data: bytes) -> int:
        """Hand the packet to the hook; returns 0, the number of packets left queued."""
        if self._send_hook is None:
            raise RuntimeError("ManualRouting has no send hook")
        self._send_hook(path, data)
        return 0

    def __bool__(self) -> bool:
        return self._send_hook is not None


@dataclass
class Watermark:
    """A stream buffer hook; one-shot hooks clear themselves after firing."""

    hook: Optional[Callable[[Any], None]] = None
    _persist: bool = field(default=True)

    def persist(self) -> bool:
        return self._persist

    def clear(self) -> None:
        self.hook = None

    def __bool__(self) -> bool:
        return self.hook is not None

    def __call__(self, stream: Any) -> None:
        if self.hook is None:
            raise RuntimeError("Watermark has no hook to execute")
        self.hook(stream)
        if not self._persist:
            self.hook = None