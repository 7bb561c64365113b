"""
=============================================================================
SOCKET SERVER
=============================================================================

The TCP layer: one listening socket, one accept loop, Connection objects
handed to a callback.

=============================================================================
LISTENING SOCKET LIFECYCLE
=============================================================================

    bind()                     serve_forever(handler)          close()
      │                              │                            │
      ├─ getaddrinfo(host)           │ while running:             ├─ running = False
      ├─ socket(family)              │   accept() (1s timeout)    ├─ shutdown(SHUT_RDWR)
      ├─ SO_REUSEADDR                │   wrap TLS (no handshake)  ├─ join accept thread
      ├─ bind((host, port)) ──┐      │   Connection(...)          └─ socket.close()
      └─ listen(backlog)      │      │   handler(conn)                 → port is free
                              │      │
            EADDRINUSE ───────┘      └─ timeout? loop again and re-check running
            → AddressInUseError

Two things make restarts reliable:

1. SO_REUSEADDR lets a new socket bind a port whose previous owner's
   connections are still in TIME_WAIT. SO_REUSEPORT is NOT set: a second
   live server on the same port must fail with "address in use" instead
   of silently load-balancing with the first.

2. close() does not return until the listening socket is closed, so the
   next bind() in the same process never races the old one.

=============================================================================
TLS
=============================================================================

With TLS configured, the listening socket itself is plain; each accepted
socket is wrapped with `server_side=True, do_handshake_on_connect=False`.
The handshake happens later in a worker thread (Connection.handshake()),
so a client that never finishes its handshake cannot block accept().

=============================================================================
"""

import errno
import socket
import ssl
import logging
import threading
from typing import Callable, Optional, Set, Tuple

from .connection import Connection


logger = logging.getLogger(__name__)


class AddressInUseError(OSError):
    """The configured host:port is already bound by another socket."""

    def __init__(self, host: str, port: int):
        super().__init__(errno.EADDRINUSE, f"Address already in use: {host}:{port}")
        self.host = host
        self.port = port


def create_ssl_context(cert_path, key_path) -> ssl.SSLContext:
    """
    Server-side SSLContext loaded with a certificate chain.

    Raises:
        ssl.SSLError / OSError: If the files cannot be loaded.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(certfile=str(cert_path), keyfile=str(key_path))
    return context


def _resolve_bind_address(host: str, port: int) -> Tuple[int, tuple]:
    """
    (family, sockaddr) to bind for `host`.

    IPv4 results are preferred so "localhost" binds 127.0.0.1, the address
    browsers and tools try first.
    """
    infos = socket.getaddrinfo(
        host or None, port, socket.AF_UNSPEC, socket.SOCK_STREAM, 0, socket.AI_PASSIVE
    )
    infos.sort(key=lambda info: 0 if info[0] == socket.AF_INET else 1)
    family, _, _, _, sockaddr = infos[0]
    return family, sockaddr


class SocketServer:
    """
    Low-level TCP socket server.

    Usage:
        server = SocketServer(config, ssl_context=None)
        server.bind()                      # raises AddressInUseError
        thread = server.serve_in_thread(handle_connection)
        ...
        server.close()                     # port released on return
    """

    def __init__(self, config, ssl_context: Optional[ssl.SSLContext] = None):
        """
        Args:
            config: ServeConfig (host, port, backlog, buffer/timeout tuning).
            ssl_context: Server-side context when serving HTTPS.
        """
        self.config = config
        self.ssl_context = ssl_context
        self._socket: Optional[socket.socket] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._connections: Set[Connection] = set()
        self._connections_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (ip, port). The port is the real one when 0 was requested."""
        if self._socket is not None:
            sockname = self._socket.getsockname()
            return (sockname[0], sockname[1])
        return (self.config.host, self.config.port)

    @property
    def scheme(self) -> str:
        return "https" if self.ssl_context is not None else "http"

    def _create_socket(self, family: int) -> socket.socket:
        sock = socket.socket(family, socket.SOCK_STREAM)
        if not hasattr(socket, "SO_EXCLUSIVEADDRUSE"):
            # POSIX only; on Windows SO_REUSEADDR lets two servers share a port
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        # accept() wakes up every second to re-check _running
        sock.settimeout(1.0)
        return sock

    def bind(self):
        """
        Create, bind and listen.

        Raises:
            AddressInUseError: Port already taken.
            OSError: Any other bind failure (bad host, permissions).
        """
        host, port = self.config.host, self.config.port
        family, sockaddr = _resolve_bind_address(host, port)
        sock = self._create_socket(family)
        try:
            sock.bind(sockaddr)
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            if e.errno == errno.EADDRINUSE:
                raise AddressInUseError(host, port) from e
            logger.error(f"Failed to bind to {host}:{port}: {e}")
            raise

        self._socket = sock
        self._running = True
        bound = self.address
        logger.debug(f"Listening socket bound to {bound[0]}:{bound[1]}")

    def serve_forever(self, connection_handler: Callable[[Connection], None]):
        """
        Accept loop. Blocks until close() is called.

        Args:
            connection_handler: Receives each accepted Connection. It must
                                not block; the HTTP layer submits to a pool.
        """
        if self._socket is None:
            raise RuntimeError("bind() must be called before serve_forever()")
        self._accept_loop(connection_handler)

    def serve_in_thread(self, connection_handler: Callable[[Connection], None]) -> threading.Thread:
        """Run serve_forever() on a daemon thread and return it."""
        host, port = self.address
        self._thread = threading.Thread(
            target=self.serve_forever,
            args=(connection_handler,),
            name=f"devserve-accept-{port}",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            if self.ssl_context is not None:
                try:
                    client_socket = self.ssl_context.wrap_socket(
                        client_socket,
                        server_side=True,
                        do_handshake_on_connect=False,
                    )
                except (ssl.SSLError, OSError) as e:
                    logger.debug(f"TLS wrap failed for {client_address[0]}: {e}")
                    client_socket.close()
                    continue

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                max_request_size=self.config.max_request_size,
            )
            with self._connections_lock:
                self._connections.add(conn)
            connection_handler(conn)

    def forget(self, conn: Connection):
        """Drop a finished connection from the live set."""
        with self._connections_lock:
            self._connections.discard(conn)

    def close_idle_connections(self) -> int:
        """Shut down keep-alive connections waiting for a next request."""
        with self._connections_lock:
            connections = list(self._connections)
        return sum(1 for conn in connections if conn.shutdown_if_idle())

    def close(self, timeout: float = 2.0):
        """
        Stop accepting and release the port.

        Idempotent. When this returns, the listening socket is closed.
        """
        self._running = False
        sock = self._socket
        if sock is None:
            return

        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # not supported on listening sockets everywhere
            pass

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

        try:
            sock.close()
        except OSError:
            pass
        self._socket = None
        self._thread = None
        logger.debug("Listening socket closed")
