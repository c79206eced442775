"""Datagram buffering: outbound queues, packet splitting and reassembly."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, List, Optional, Tuple

from .utils import LOG_NAME

log = logging.getLogger(LOG_NAME)

ROWS = 4


class Dgram(Enum):
    """Whether a queued datagram is sent whole or split in two."""

    STANDARD = 0
    OVERSIZED = 1


@dataclass(frozen=True)
class OutboundDgram:
    """One piece of a queued datagram that is ready to go out."""

    data: bytes
    id: int
    # -1: payload, 1: addendum
    type: int = 0
    # whether the storage holding this piece is empty once it is sent
    is_empty: bool = False


@dataclass(frozen=True)
class PreparedDatagram:
    """The buffers to hand to the transport for one outgoing datagram."""

    id: int
    dgid: bytes
    bufs: Tuple[bytes, ...]
    is_empty: bool = False

    def __len__(self) -> int:
        return len(self.bufs)

    @property
    def payload(self) -> bytes:
        """All buffers joined, as they appear on the wire."""
        return b"".join(self.bufs)


@dataclass
class ReceivedDatagram:
    """Half of a split datagram waiting for its partner."""

    id: int
    data: bytes
    part: int = field(init=False)

    def __post_init__(self) -> None:
        self.data = bytes(self.data)
        # -1 = payload (first half), 1 = addendum (second half)
        self.part = -1 if self.id % 4 == 2 else 1


@dataclass
class DatagramStorage:
    """A queued datagram, possibly split into payload and addendum."""

    pload_id: int
    payload: Optional[bytes]
    add_id: Optional[int] = None
    addendum: Optional[bytes] = None
    keep_alive: Any = None
    kind: Dgram = Dgram.STANDARD

    @classmethod
    def make(
        cls,
        payload: bytes,
        dgram_id: int,
        keep_alive: Any = None,
        kind: Dgram = Dgram.STANDARD,
        max_size: int = 0,
    ) -> DatagramStorage:
        """Store a datagram, splitting it at half of ``max_size`` when oversized."""
        payload = bytes(payload)
        if kind is Dgram.STANDARD:
            return cls(pload_id=dgram_id, payload=payload, keep_alive=keep_alive)

        if max_size == 0:
            raise ValueError("An oversized datagram requires a non-zero max_size")
        if dgram_id % 4 != 2:
            raise ValueError("A split datagram id must be congruent to 2 modulo 4")

        half = max_size // 2
        return cls(
            pload_id=dgram_id,
            payload=payload[:half],
            add_id=dgram_id + 1,
            addendum=payload[half:],
            keep_alive=keep_alive,
            kind=Dgram.OVERSIZED,
        )

    def empty(self) -> bool:
        return self.payload is None and self.addendum is None

    def fetch(self, b: bool) -> OutboundDgram:
        """Return the next piece to send; ``b`` picks the payload when both remain."""
        if self.kind is Dgram.STANDARD:
            return OutboundDgram(self.payload, self.pload_id, -1, True)

        has_payload = self.payload is not None
        has_addendum = self.addendum is not None
        if has_payload and not has_addendum:
            return OutboundDgram(self.payload, self.pload_id, -1, True)
        if has_addendum and not has_payload:
            return OutboundDgram(self.addendum, self.add_id, 1, True)
        if b:
            return OutboundDgram(self.payload, self.pload_id, -1, False)
        return OutboundDgram(self.addendum, self.add_id, 1, False)

    def size(self) -> int:
        return sum(len(part) for part in (self.payload, self.addendum) if part is not None)


class RotatingBuffer:
    """Pairs up halves of split datagrams, evicting stale halves row by row.

    The buffer is divided into 4 rows; storing into a row clears the row two
    ahead of it, in rotation, so abandoned halves do not live forever.
    """

    def __init__(self, bufsize: int = 4096):
        if bufsize < ROWS or bufsize % ROWS != 0:
            raise ValueError("Bufsize must be positive and evenly divisible between 4 rows")
        self.bufsize = bufsize
        self.rowsize = bufsize // ROWS
        self.row = 0
        self.col = 0
        self.last_cleared = -1
        self.currently_held: List[int] = [0] * ROWS
        self.buf: List[List[Optional[ReceivedDatagram]]] = [
            [None] * self.rowsize for _ in range(ROWS)
        ]
        self.debug_drop_enabled = False
        self.debug_drop_counter = 0

    def receive(self, data: bytes, dgid: int) -> Optional[bytes]:
        """Take one half; return the whole datagram once both halves are in."""
        idx = dgid >> 2
        self.row = (idx % self.bufsize) // self.rowsize
        self.col = idx % self.rowsize
        row, col = self.row, self.col

        held = self.buf[row][col]
        if held is not None:
            if self.debug_drop_enabled:
                log.debug("datagram drop test enabled, inducing packet loss")
                self.debug_drop_counter += 1
                return None

            log.debug(
                "Pairing datagram (ID: %s) with %s half at buffer pos [%s,%s]",
                dgid,
                "first" if held.part < 0 else "second",
                row,
                col,
            )
            data = bytes(data)
            out = held.data + data if held.part < 0 else data + held.data
            self.buf[row][col] = None
            self.currently_held[row] -= 1
            return out

        log.debug("Storing datagram (ID: %s) at buffer pos [%s,%s]", dgid, row, col)
        self.buf[row][col] = ReceivedDatagram(dgid, data)
        self.currently_held[row] += 1

        to_clear = (row + 2) % ROWS
        if to_clear == (self.last_cleared + 1) % ROWS:
            self.clear_row(to_clear)
            self.currently_held[to_clear] = 0
            self.last_cleared = to_clear

        return None

    def clear_row(self, index: int) -> None:
        log.debug("Clearing buffer row %s (i = %s, j = %s)", index, self.row, self.col)
        self.buf[index] = [None] * self.rowsize

    def datagrams_stored(self) -> int:
        return sum(self.currently_held)


class BufferQueue:
    """FIFO of outgoing datagrams awaiting transmission."""

    def __init__(self) -> None:
        self._buf: Deque[DatagramStorage] = deque()

    def empty(self) -> bool:
        return not self._buf

    def __len__(self) -> int:
        return len(self._buf)

    def _front(self) -> DatagramStorage:
        if not self._buf:
            raise IndexError("datagram queue is empty")
        return self._buf[0]

    def drop_front(self, b: bool) -> None:
        """Discard the piece last fetched from the front entry."""
        front = self._front()

        if front.kind is Dgram.STANDARD:
            front.payload = None
            self._buf.popleft()
            return

        has_payload = front.payload is not None
        has_addendum = front.addendum is not None
        if has_payload and not has_addendum:
            front.payload = None
        elif has_addendum and not has_payload:
            front.addendum = None
        else:
            if b:
                front.payload = None
            else:
                front.addendum = None
            return

        self._buf.popleft()

    def prepare(self, b: bool, is_splitting: bool) -> PreparedDatagram:
        """Build the transport buffers for the front entry's next piece."""
        out = self._front().fetch(b)
        dgid = out.id.to_bytes(2, "big")
        bufs = (dgid, out.data) if is_splitting else (out.data,)
        log.debug("Preparing datagram (id: %s) payload (size: %s)", out.id, len(out.data))
        return PreparedDatagram(id=out.id, dgid=dgid, bufs=bufs, is_empty=out.is_empty)

    def emplace(
        self,
        payload: bytes,
        dgram_id: int,
        keep_alive: Any = None,
        kind: Dgram = Dgram.STANDARD,
        max_size: int = 0,
    ) -> None:
        self._buf.append(DatagramStorage.make(payload, dgram_id, keep_alive, kind, max_size))