"""Building blocks for a QUIC networking layer: IP and socket addresses, options, datagram buffering, streams, UDP sockets and a threaded event loop."""

__version__ = "0.1.0"