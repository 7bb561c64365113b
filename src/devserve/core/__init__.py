"""
=============================================================================
CORE NETWORKING LAYER
=============================================================================

TCP-level building blocks, independent of HTTP semantics:

    socket_server.py  → listening socket, accept loop, TLS wrapping
    connection.py     → buffered per-client reads, keep-alive, clean close
    thread_pool.py    → worker threads that run connection handlers

    ┌────────────────┐  Connection   ┌────────────┐  request bytes  ┌──────────┐
    │  SocketServer  │ ────────────► │ ThreadPool │ ──────────────► │ pipeline │
    └────────────────┘               └────────────┘                 └──────────┘

=============================================================================
"""

from .socket_server import SocketServer, AddressInUseError, create_ssl_context
from .connection import Connection, ConnectionState, RequestTooLarge
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",
    "AddressInUseError",
    "create_ssl_context",
    "Connection",
    "ConnectionState",
    "RequestTooLarge",
    "ThreadPool",
]
