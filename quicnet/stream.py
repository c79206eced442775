"""A QUIC stream: the send buffer, acknowledgement accounting and watermarks."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Deque, List, Optional, Protocol, TypeVar, Union

from .opt import Watermark
from .utils import LOG_NAME

log = logging.getLogger(LOG_NAME)

T = TypeVar("T")

# Largest value a QUIC variable-length integer can carry.
APP_ERRCODE_MAX = (1 << 62) - 1

DataCallback = Callable[["Stream", bytes], Any]
CloseCallback = Callable[["Stream", int], Any]


class StreamConnection(Protocol):
    """What a Stream needs from the connection that owns it."""

    reference_id: Any

    def get_default_data_callback(self) -> Optional[DataCallback]: ...

    def packet_io_ready(self) -> None: ...

    def is_closing(self) -> bool: ...

    def is_draining(self) -> bool: ...

    def shutdown_stream(self, stream_id: Optional[int], app_err_code: int) -> None: ...

    def extend_max_stream_offset(self, stream_id: Optional[int], offset: int) -> None: ...


class StreamEndpoint(Protocol):
    """What a Stream needs from its endpoint: access to the event loop thread."""

    def call(self, func: Callable[[], Any]) -> None: ...

    def call_soon(self, func: Callable[[], Any]) -> None: ...

    def call_get(self, func: Callable[[], T]) -> T: ...


def _default_close_callback(stream: Stream, error_code: int) -> None:
    log.info("Default stream close callback called (error code %s)", error_code)


class Stream:
    """One bidirectional stream on a connection.

    Outgoing data is buffered until the remote side acknowledges it.  Methods
    that touch the buffer (``acknowledge``, ``wrote``, ``pending``,
    ``append_buffer``) are meant to run on the event loop thread.
    """

    def __init__(
        self,
        conn: StreamConnection,
        endpoint: StreamEndpoint,
        data_callback: Optional[DataCallback] = None,
        close_callback: Optional[CloseCallback] = None,
    ):
        log.debug("Creating Stream object...")
        self._conn: Optional[StreamConnection] = conn
        self.endpoint = endpoint
        self.reference_id = conn.reference_id
        self.stream_id: Optional[int] = None

        self.data_callback: Optional[DataCallback] = (
            data_callback if data_callback is not None else conn.get_default_data_callback()
        )
        self.close_callback: CloseCallback = (
            close_callback if close_callback is not None else _default_close_callback
        )

        self._user_buffers: Deque[memoryview] = deque()
        self._unacked_size = 0

        self._ready = False
        self._paused = False
        self._paused_offset = 0
        self._is_closing = False
        self._is_shutdown = False
        self._sent_fin = False

        self._is_watermarked = False
        self._low_mark = 0
        self._high_mark = 0
        self._low_water = Watermark()
        self._high_water = Watermark()
        self._low_primed = False
        self._high_primed = False
        log.debug("Stream object created")

    # -- watermarks ---------------------------------------------------------

    def set_watermark(
        self,
        low: int,
        high: int,
        low_cb: Optional[Watermark] = None,
        high_cb: Optional[Watermark] = None,
    ) -> None:
        """Install hooks fired when unsent data falls below ``low`` or rises above ``high``."""
        if not low_cb and not high_cb:
            raise ValueError("Must pass at least one callback in call to set_watermark()!")

        def job() -> None:
            if self._is_closing or self._is_shutdown or self._sent_fin:
                log.warning("Failed to set watermarks; stream is not active!")
                return
            self._low_mark = low
            self._high_mark = high
            self._low_water = low_cb if low_cb is not None else Watermark()
            self._high_water = high_cb if high_cb is not None else Watermark()
            self._is_watermarked = True
            log.info("Stream set watermarks!")

        self.endpoint.call_soon(job)

    def clear_watermarks(self) -> None:
        def job() -> None:
            if not self._is_watermarked and not self._low_water and not self._high_water:
                log.warning("Failed to clear watermarks; stream has none set!")
                return
            self._low_mark = 0
            self._high_mark = 0
            self._low_water.clear()
            self._high_water.clear()
            self._is_watermarked = False
            log.info("Stream cleared currently set watermarks!")

        self.endpoint.call_soon(job)

    def has_watermarks(self) -> bool:
        return self.endpoint.call_get(
            lambda: self._is_watermarked and bool(self._low_water) and bool(self._high_water)
        )

    # -- flow control -------------------------------------------------------

    def pause(self) -> None:
        def job() -> None:
            if not self._paused:
                log.debug("Pausing stream ID:%s", self.stream_id)
                self._paused = True
            else:
                log.debug("Stream ID:%s already paused!", self.stream_id)

        self.endpoint.call(job)

    def resume(self) -> None:
        def job() -> None:
            if not self._paused:
                log.debug("Stream ID:%s is not paused!", self.stream_id)
                return
            log.debug("Resuming stream ID:%s", self.stream_id)
            if self._paused_offset and self._conn is not None:
                self._conn.extend_max_stream_offset(self.stream_id, self._paused_offset)
            self._paused_offset = 0
            self._paused = False

        self.endpoint.call(job)

    def is_paused(self) -> bool:
        return self.endpoint.call_get(lambda: self._paused)

    def available(self) -> bool:
        return self.endpoint.call_get(
            lambda: not (self._is_closing or self._is_shutdown or self._sent_fin)
        )

    def is_ready(self) -> bool:
        return self.endpoint.call_get(lambda: self._ready)

    def set_ready(self) -> None:
        log.debug("Setting stream ready")
        self._ready = True

    # -- closing ------------------------------------------------------------

    def close(self, app_err_code: int = 0) -> None:
        """Shut the stream down with an application error code."""
        if app_err_code < 0 or app_err_code > APP_ERRCODE_MAX:
            raise ValueError("Invalid application error code (too large)")

        def job() -> None:
            if self._is_shutdown:
                log.info("Stream is already shutting down")
            elif self._is_closing:
                log.debug("Stream is already closing")
            else:
                self._is_closing = self._is_shutdown = True
                if self._conn is not None:
                    log.info("Closing stream (ID: %s) with code %s", self.stream_id, app_err_code)
                    self._conn.shutdown_stream(self.stream_id, app_err_code)
            if self._is_shutdown:
                self.data_callback = None

            if self._conn is None:
                log.warning("Stream close ignored: the stream's connection is gone")
                return
            self._conn.packet_io_ready()

        self.endpoint.call(job)

    def closed(self, app_code: int) -> None:
        """Record that the stream has closed and run the close callback."""
        if self.close_callback is not None:
            try:
                self.close_callback(self, app_code)
            except Exception as exc:
                log.error("Uncaught exception in stream close callback: %s", exc)
        self._conn = None
        self._is_closing = self._is_shutdown = True

    # -- sending ------------------------------------------------------------

    def send(self, data: Union[bytes, bytearray, memoryview, str]) -> None:
        """Queue data for sending; empty data is ignored."""
        if isinstance(data, str):
            data = data.encode()
        data = bytes(data)
        if not data:
            return

        def job() -> None:
            conn = self._conn
            if conn is None or conn.is_closing() or conn.is_draining():
                log.warning("Stream %s unable to send: connection is closed", self.stream_id)
                return
            log.debug("Stream (ID: %s) sending %d bytes", self.stream_id, len(data))
            self.append_buffer(data)

        self.endpoint.call(job)

    def append_buffer(self, data: Union[bytes, bytearray, memoryview]) -> None:
        if self._conn is None:
            raise RuntimeError("Stream has no connection to send on")
        self._user_buffers.append(memoryview(bytes(data)))
        if self._ready:
            self._conn.packet_io_ready()
        else:
            log.info("Stream not ready for broadcast yet, data appended to buffer and on deck")

    def size(self) -> int:
        """Bytes held in the buffer: sent-but-unacked plus unsent."""
        return sum(len(buf) for buf in self._user_buffers)

    def unacked(self) -> int:
        return self._unacked_size

    def unsent(self) -> int:
        return self.size() - self._unacked_size

    def wrote(self, nbytes: int) -> None:
        """Record that ``nbytes`` more bytes went out on the wire."""
        log.debug("Increasing unacked size by %sB", nbytes)
        self._unacked_size += nbytes

    def acknowledge(self, nbytes: int) -> None:
        """Drop ``nbytes`` acknowledged bytes and fire any primed watermark hook."""
        if nbytes < 0 or nbytes > self._unacked_size:
            raise ValueError(
                f"Cannot acknowledge {nbytes} bytes with {self._unacked_size} unacked"
            )
        self._unacked_size -= nbytes

        remaining = nbytes
        while remaining and self._user_buffers and remaining >= len(self._user_buffers[0]):
            remaining -= len(self._user_buffers.popleft())
        if remaining:
            self._user_buffers[0] = self._user_buffers[0][remaining:]

        size = self.size()

        if self._is_watermarked:
            unsent = size - self._unacked_size
            if unsent >= self._high_mark:
                self._low_primed = True
                log.info("Low water hook primed!")
                if self._high_water and self._high_primed:
                    log.info("Executing high watermark hook!")
                    self._high_primed = False
                    self._high_water(self)
                    return
            elif unsent <= self._low_mark:
                self._high_primed = True
                log.info("High water hook primed!")
                if self._low_water and self._low_primed:
                    log.info("Executing low watermark hook!")
                    self._low_primed = False
                    self._low_water(self)
                    return

            if not self._high_water and not self._low_water:
                self.clear_watermarks()
                return

        log.debug("%s bytes acked, %s unacked remaining", nbytes, self._unacked_size)

    def pending(self) -> List[bytes]:
        """The unsent data, as the buffer pieces that hold it."""
        if not self._user_buffers or self.unsent() == 0:
            return []

        offset = self._unacked_size
        bufs = iter(self._user_buffers)
        first = next(bufs)
        while offset and offset >= len(first):
            offset -= len(first)
            first = next(bufs)
        return [bytes(first[offset:])] + [bytes(buf) for buf in bufs]

    def pending_datagram(self, b: bool) -> Any:
        log.warning("pending_datagram called, but this is a stream object!")
        raise RuntimeError("Stream objects should not be queried for pending datagrams!")