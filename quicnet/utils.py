"""Small helpers: host:port parsing, clocks, text and logging setup."""

from __future__ import annotations

import logging
import sys
import threading
import time
from typing import Optional, Tuple

LOG_NAME = "quic"

_ASCII_LOWER = str.maketrans(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ", "abcdefghijklmnopqrstuvwxyz"
)
_DIGITS = frozenset("0123456789")
_IPV4_CHARS = frozenset("0123456789.")
_IP_CHARS = frozenset("0123456789abcdef:.")

_logger_lock = threading.Lock()
_logger_configured = False


def parse_addr(addr: str, default_port: Optional[int] = None) -> Tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into an address string and port.

    When no port is present ``default_port`` is used; without one, ValueError
    is raised.  An empty host becomes ``"::"``.
    """
    last_non_digit = next(
        (i for i in range(len(addr) - 1, -1, -1) if addr[i] not in _DIGITS), None
    )
    if (
        last_non_digit is not None
        and last_non_digit + 2 <= len(addr)
        and addr[last_non_digit] == ":"
    ):
        port = int(addr[last_non_digit + 1 :])
        if port > 0xFFFF:
            raise ValueError("Invalid address: could not parse port")
        addr = addr[:last_non_digit]
    elif default_port is not None:
        port = default_port
    else:
        raise ValueError("Invalid address: no port was specified and there is no default")

    had_brackets = False
    if addr and addr[0] == "[" and addr[-1] == "]":
        addr = addr[1:-1]
        had_brackets = True

    if any(c not in _IPV4_CHARS for c in addr):
        if any(c not in _IP_CHARS for c in addr):
            raise ValueError("Invalid address: does not look like IPv4 or IPv6!")
        if not had_brackets:
            raise ValueError("Invalid address: IPv6 addresses require [...] square brackets")

    return (addr or "::"), port


def str_tolower(s: str) -> str:
    """Lower-case ASCII letters only, leaving every other character alone."""
    return s.translate(_ASCII_LOWER)


def get_time() -> float:
    """Current reading of the monotonic clock, in seconds."""
    return time.monotonic()


def get_timestamp() -> int:
    """Current reading of the monotonic clock, in nanoseconds."""
    return time.monotonic_ns()


def logger_config(out: str = "stderr", level: int = logging.DEBUG) -> bool:
    """Attach a log sink to the library logger, once per process.

    ``out`` is ``"stderr"``, ``"stdout"`` or a file path.  Returns True when
    this call did the configuring, False when it was already done.
    """
    global _logger_configured
    with _logger_lock:
        if _logger_configured:
            return False
        _logger_configured = True

    if out == "stderr":
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
    elif out == "stdout":
        handler = logging.StreamHandler(sys.stdout)
    else:
        handler = logging.FileHandler(out)
    handler.setFormatter(
        logging.Formatter("[%(asctime)s] [%(name)s:%(levelname)s] %(message)s")
    )
    logger = logging.getLogger(LOG_NAME)
    logger.addHandler(handler)
    logger.setLevel(level)
    return True