"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket with buffered HTTP request reading,
timeouts, and a clean TCP close.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

    Client sends one request:            Server may recv() it as:

        GET /app.js HTTP/1.1\r\n             "GET /app.j"
        Host: localhost\r\n                  "s HTTP/1.1\r\nHost: loc"
        \r\n                                 "alhost\r\n\r\n"

So we buffer until the header terminator (\r\n\r\n), read Content-Length,
then read exactly that many body bytes. Anything after that belongs to the
NEXT request on the same keep-alive connection and stays in the buffer.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► HANDSHAKE ──► READING ──► PROCESSING ──► WRITING ──► KEEP_ALIVE
     │      (TLS only)       │                                      │
     │                       ▼                                      │
     └─────────────────► CLOSING ◄──────────────────────────────────┘
                             │
                             ▼
                           CLOSED

When the server drains for a restart, connections that sit in KEEP_ALIVE
(or are blocked reading a request with nothing buffered) are
IDLE: `shutdown_if_idle()` wakes their blocked recv() so the worker
exits. Connections in PROCESSING/WRITING finish their response first.

=============================================================================
"""

import socket
import ssl
import threading
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import uuid


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states."""

    NEW = "new"
    HANDSHAKE = "handshake"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


class RequestTooLarge(ValueError):
    """The buffered request grew past max_request_size."""


@dataclass(eq=False)
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket (plain or TLS-wrapped).
        address: Client's (ip, port) tuple.
        id: Short identifier for log lines.
        state: Current ConnectionState.
        requests_handled: Number of requests read on this connection.
        timeout: Socket timeout for the first request.
        keep_alive_timeout: Socket timeout while waiting for the next one.
    """

    socket: socket.socket
    address: tuple
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: float = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def is_tls(self) -> bool:
        return isinstance(self.socket, ssl.SSLSocket)

    @property
    def is_idle(self) -> bool:
        """
        True while waiting for a next request that has not started to
        arrive. Such a connection can be closed without losing work.
        """
        if self.state == ConnectionState.KEEP_ALIVE:
            return True
        # blocked on a first request that never came (browser preconnect)
        # counts too: nothing has been read yet
        return self.state == ConnectionState.READING and not self._buffer

    def handshake(self) -> bool:
        """
        Complete the TLS handshake for a socket wrapped with
        do_handshake_on_connect=False.

        Runs in the worker thread so a slow or broken client cannot stall
        the accept loop. Returns False (and closes) on failure.
        """
        if not self.is_tls:
            return True
        self.state = ConnectionState.HANDSHAKE
        try:
            self.socket.do_handshake()
            return True
        except (ssl.SSLError, OSError) as e:
            logger.debug(f"[{self.id}] TLS handshake failed: {e}")
            self.close()
            return False

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request from the socket.

            set timeout (keep-alive timeout after the first request)
            recv() until \\r\\n\\r\\n is buffered
            parse Content-Length from the raw header block
            recv() until the body is complete
            slice the request off the buffer, keep the rest

        Returns:
            Request bytes, or None if the client closed the connection or
            went quiet past the keep-alive timeout.

        Raises:
            TimeoutError: First request did not arrive in time.
            RequestTooLarge: Request exceeds max_request_size.
        """
        self.state = ConnectionState.READING

        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None
                self._buffer += chunk
                if len(self._buffer) > self.max_request_size:
                    raise RequestTooLarge(f"Request too large: {len(self._buffer)} bytes")

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._parse_content_length(self._buffer[:header_end])

            if body_start + content_length > self.max_request_size:
                raise RequestTooLarge(f"Request too large: {body_start + content_length} bytes")

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    break
                self._buffer += chunk

            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]

            self.requests_handled += 1
            self.state = ConnectionState.PROCESSING
            return request_data

        except socket.timeout:
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            if self.state != ConnectionState.CLOSED:
                try:
                    self.socket.settimeout(self.timeout)
                except OSError:
                    pass

    def _recv(self) -> bytes:
        """recv() that maps resets and local shutdowns to end-of-stream."""
        try:
            return self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError, ssl.SSLError):
            return b""
        except OSError as e:
            # EBADF/ENOTCONN after shutdown_if_idle() closed us
            if isinstance(e, socket.timeout):
                raise
            return b""

    def _parse_content_length(self, headers: bytes) -> int:
        """
        Content-Length from the raw header block.

        A plain scan, because the request has not been parsed yet.
        """
        header_str = headers.decode("latin-1").lower()
        for line in header_str.split("\r\n"):
            if line.startswith("content-length:"):
                try:
                    return max(0, int(line.split(":", 1)[1].strip()))
                except ValueError:
                    return 0
        return 0

    def send_response(self, data: bytes) -> bool:
        """
        sendall() the response bytes.

        Returns:
            True on success, False if the client went away.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
            return True
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False

    def set_keep_alive(self):
        """Response sent; waiting for the next request."""
        self.state = ConnectionState.KEEP_ALIVE

    def shutdown_if_idle(self) -> bool:
        """
        Shut the socket down if the connection is idle.

        A worker blocked in recv() on this socket sees end-of-stream and
        returns. Returns True when the connection was idle.
        """
        with self._lock:
            if not self.is_idle:
                return False
            try:
                self.socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            return True

    def close(self):
        """
        Close the connection gracefully.

            shutdown(SHUT_WR)   → FIN to the client, "no more data"
            drain recv()        → don't leave unread bytes (avoids RST)
            close()             → release the descriptor
        """
        with self._lock:
            if self.state == ConnectionState.CLOSED:
                return
            self.state = ConnectionState.CLOSING

            try:
                self.socket.shutdown(socket.SHUT_WR)
            except OSError:
                pass

            try:
                self.socket.settimeout(0.5)
                while self.socket.recv(1024):
                    pass
            except OSError:
                pass

            try:
                self.socket.close()
            except OSError:
                pass

            self.state = ConnectionState.CLOSED

        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
