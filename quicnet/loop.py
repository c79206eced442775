"""An event loop running on its own thread, with timers and job dispatch."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
import weakref
from collections import defaultdict
from datetime import timedelta
from typing import Any, Callable, Dict, Hashable, List, Optional, TypeVar, Union

from .utils import LOG_NAME

log = logging.getLogger(LOG_NAME)

T = TypeVar("T")
Delay = Union[timedelta, int, float]


def _seconds(value: Delay) -> float:
    seconds = value.total_seconds() if isinstance(value, timedelta) else float(value)
    if seconds < 0:
        raise ValueError("Timer interval must not be negative")
    return seconds


class Ticker:
    """A timer on a Loop that runs a task once or repeatedly.

    Without ``fixed_interval`` the task repeats on a regular schedule; with it,
    each wait starts when the previous run finishes, and ``one_off`` then makes
    it fire just once.
    """

    def __init__(self) -> None:
        self._loop: Optional[Loop] = None
        self._task: Optional[Callable[[], Any]] = None
        self._interval = 0.0
        self._persist = False
        self._rearm = False
        self._handle: Optional[asyncio.TimerHandle] = None
        self._deadline = 0.0
        self._running = False

    def init_event(
        self,
        loop: Loop,
        interval: Delay,
        task: Callable[[], Any],
        one_off: bool = False,
        start_immediately: bool = True,
        fixed_interval: bool = False,
    ) -> None:
        self._loop = loop
        self._interval = _seconds(interval)
        self._task = task
        self._persist = not fixed_interval
        self._rearm = fixed_interval and not one_off
        if (one_off or start_immediately) and not self.start():
            log.critical("Failed to immediately start one-off event!")

    def start(self) -> bool:
        """Arm the timer; False if it was already running or cannot be armed."""
        if self._loop is None:
            log.critical("Ticker has no event loop to run on!")
            return False
        return self._loop._sync(self._start_now)

    def stop(self) -> bool:
        """Disarm the timer; False if it was not running."""
        if self._loop is None:
            return False
        return self._loop._sync(self._stop_now)

    def is_running(self) -> bool:
        return self._running

    def _start_now(self) -> bool:
        if self._running:
            return False
        try:
            self._arm(self._interval)
        except RuntimeError:
            log.critical("EventHandler failed to start repeating event!")
            return False
        self._running = True
        return True

    def _stop_now(self) -> bool:
        if not self._running:
            return False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._running = False
        return True

    def _arm(self, delay: float) -> None:
        aio = self._loop._aio
        self._deadline = aio.time() + delay
        self._handle = aio.call_at(self._deadline, self._fire)

    def _fire(self) -> None:
        self._handle = None
        aio = self._loop._aio
        if self._persist:
            self._deadline = max(self._deadline + self._interval, aio.time())
            self._handle = aio.call_at(self._deadline, self._fire)

        task = self._task
        if task is None:
            log.critical("Ticker does not have a callback to execute!")
            return
        try:
            task()
        except Exception as exc:
            log.critical("Ticker caught exception: %s", exc)

        if self._rearm and self._running and self._handle is None:
            self._arm(self._interval)


class Loop:
    """Owns an event loop thread and runs jobs and timers on it."""

    def __init__(self) -> None:
        log.debug("Beginning loop context creation with new ev loop thread")
        self._aio = asyncio.SelectorEventLoop()
        self._tickers: Dict[Hashable, List[weakref.ReferenceType]] = defaultdict(list)
        self._thread_id: Optional[int] = None
        self._closed = False

        started = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(started,), name="quic-loop", daemon=True
        )
        self._thread.start()
        started.wait()
        self._running = True
        log.info("loop is started")

    def _run(self, started: threading.Event) -> None:
        asyncio.set_event_loop(self._aio)
        self._thread_id = threading.get_ident()
        log.debug("Starting event loop run")
        started.set()
        self._aio.run_forever()
        log.debug("Event loop run returned, thread finished")

    def __enter__(self) -> Loop:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def in_event_loop(self) -> bool:
        return threading.get_ident() == self._thread_id

    def _run_job(self, func: Callable[..., Any], *args: Any) -> None:
        try:
            func(*args)
        except Exception:
            log.exception("Uncaught exception in event loop job")

    def _sync(self, func: Callable[[], T]) -> T:
        if self.in_event_loop() or not self._running:
            return func()
        return self.call_get(func)

    def call(self, func: Callable[[], Any]) -> None:
        """Run ``func`` now if on the loop thread, otherwise queue it."""
        if self.in_event_loop():
            func()
        else:
            self.call_soon(func)

    def call_soon(self, func: Callable[[], Any]) -> None:
        """Queue ``func`` to run on the loop thread."""
        self._aio.call_soon_threadsafe(self._run_job, func)

    def call_get(self, func: Callable[[], T]) -> T:
        """Run ``func`` on the loop thread and return its result, or raise its error."""
        if self.in_event_loop():
            return func()
        if not self._running:
            raise RuntimeError("Event loop is not running")

        fut: concurrent.futures.Future = concurrent.futures.Future()

        def job() -> None:
            if not fut.set_running_or_notify_cancel():
                return
            try:
                fut.set_result(func())
            except BaseException as exc:
                fut.set_exception(exc)

        self.call_soon(job)
        while True:
            done, _ = concurrent.futures.wait([fut], timeout=0.1)
            if done:
                return fut.result()
            if not self._thread.is_alive():
                fut.cancel()
                raise RuntimeError("Event loop stopped before the call completed")

    def call_later(self, delay: Delay, func: Callable[[], Any]) -> Ticker:
        """Run ``func`` once after ``delay``; the returned Ticker can cancel it."""
        ticker = Ticker()
        ticker.init_event(self, delay, func, one_off=True, start_immediately=True, fixed_interval=True)
        return ticker

    def add_reader(self, fileobj: Any, callback: Callable[[], Any]) -> None:
        """Call ``callback`` on the loop thread whenever ``fileobj`` is readable."""
        self._sync(lambda: self._aio.add_reader(fileobj, self._run_job, callback))

    def remove_reader(self, fileobj: Any) -> bool:
        return self._sync(lambda: self._aio.remove_reader(fileobj))

    def add_writer(self, fileobj: Any, callback: Callable[[], Any]) -> None:
        """Call ``callback`` once, the next time ``fileobj`` is writeable."""

        def fire() -> None:
            self._aio.remove_writer(fileobj)
            self._run_job(callback)

        self._sync(lambda: self._aio.add_writer(fileobj, fire))

    def _clear_old_tickers(self) -> None:
        for caller_id, refs in self._tickers.items():
            self._tickers[caller_id] = [ref for ref in refs if ref() is not None]

    def make_handler(self, caller_id: Hashable) -> Ticker:
        """Create a Ticker tracked under ``caller_id``."""
        self._clear_old_tickers()
        ticker = Ticker()
        self._tickers[caller_id].append(weakref.ref(ticker))
        return ticker

    def _halt(self, refs: List[weakref.ReferenceType]) -> None:
        for ref in refs:
            ticker = ref()
            if ticker is not None:
                ticker._task = None
                ticker.stop()

    def stop_tickers(self, caller_id: Hashable) -> None:
        """Stop and clear every live Ticker made for ``caller_id``."""
        refs = self._tickers.get(caller_id)
        if refs:
            self._halt(refs)

    def stop_thread(self, immediate: bool = False) -> None:
        """Stop the loop thread and wait for it to finish.

        Both modes end after the current loop iteration; ``immediate`` only
        changes what is logged.
        """
        if not self._thread.is_alive() or self._aio.is_closed():
            self._running = False
            return
        log.debug("Stopping event loop (%s)", "break" if immediate else "exit")
        if self.in_event_loop():
            self._aio.stop()
            return
        self._aio.call_soon_threadsafe(self._aio.stop)
        self._thread.join()
        self._running = False

    def close(self) -> None:
        """Stop the thread, halt every Ticker and release the loop."""
        if self._closed:
            return
        if self.in_event_loop():
            raise RuntimeError("Loop cannot be closed from its own thread")
        self._closed = True
        log.info("Shutting down loop...")
        self.stop_thread()
        for refs in self._tickers.values():
            self._halt(refs)
        self._aio.close()
        log.info("Loop shutdown complete")