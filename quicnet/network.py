"""A network context: owns (or shares) an event loop and its endpoints."""

from __future__ import annotations

import itertools
import logging
from typing import Any, List, Optional, Protocol

from .loop import Loop
from .utils import LOG_NAME

log = logging.getLogger(LOG_NAME)

_net_ids = itertools.count(1)


class NetworkEndpoint(Protocol):
    """What a Network needs from an endpoint it manages."""

    def close_conns(self, error_code: Optional[int]) -> None: ...


class _LoopShare:
    """A loop together with the number of Networks using it."""

    def __init__(self, loop: Loop, owned: bool):
        self.loop = loop
        self.owned = owned
        self.users = 0


class Network:
    """Holds the endpoints that run on one event loop.

    Without a loop argument the Network creates its own; linked Networks share
    it, and the last of them to close stops the loop.  A loop passed in stays
    the caller's to stop.
    """

    def __init__(self, loop: Optional[Loop] = None):
        if loop is None:
            share = _LoopShare(Loop(), owned=True)
        else:
            log.debug("Creating network context with pre-existing event loop!")
            share = _LoopShare(loop, owned=False)
        self._attach(share)

    def _attach(self, share: _LoopShare) -> None:
        self._share = share
        share.users += 1
        self.net_id = next(_net_ids)
        self.endpoints: List[NetworkEndpoint] = []
        self.shutdown_immediate = False
        self._closed = False

    @property
    def loop(self) -> Loop:
        return self._share.loop

    def register_endpoint(self, endpoint: NetworkEndpoint) -> None:
        """Add an endpoint whose connections are closed when the network shuts down."""
        self.endpoints.append(endpoint)

    def create_linked_network(self) -> Network:
        """A new Network sharing this one's event loop."""
        net = Network.__new__(Network)
        net._attach(self._share)
        return net

    def close_gracefully(self) -> None:
        """Close every endpoint's connections on the loop thread and wait."""
        log.info("Closing network connections gracefully")

        def job() -> None:
            for endpoint in list(self.endpoints):
                endpoint.close_conns(None)

        self.loop.call_get(job)

    def close(self) -> None:
        """Shut the network down; idempotent."""
        if self._closed:
            return
        self._closed = True
        log.info("Shutting down network...")

        if not self.shutdown_immediate:
            self.close_gracefully()

        share = self._share
        share.users -= 1
        last = share.owned and share.users == 0
        if last:
            share.loop.stop_thread(self.shutdown_immediate)
        share.loop.stop_tickers(self.net_id)
        if last:
            share.loop.close()

        log.info("Network shutdown complete")

    def __enter__(self) -> Network:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()