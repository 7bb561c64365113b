"""
=============================================================================
SERVER LIFECYCLE
=============================================================================

Owns the listening server: starting it, restarting it when the
configuration changes, and stopping it on request or on a signal.

=============================================================================
STATE MACHINE
=============================================================================

                 start(cfg)                 bound + serving
        IDLE ───────────────► STARTING ──────────────────────► LISTENING
         ▲                       │                                │  │
         │        bind failed    │            start(same cfg)     │  │
         ├───────────────────────┘            = no-op ◄───────────┘  │
         │                                                           │
         │          stop() / signal / restart(new cfg)               │
         └───────────────────── DRAINING ◄───────────────────────────┘
                                   │
                   restart: straight back to STARTING with the new cfg

Every transition happens under one re-entrant lock, so a bundler calling
start() from a watcher thread and Ctrl+C arriving at the same moment
cannot interleave.

=============================================================================
RESTART WITHOUT TWO SOCKETS
=============================================================================

A restart CLOSES the old listening socket BEFORE binding the new one:

    old: ──listening──┤close()          (port released here)
    new:                    bind()──listening──

At no point are two sockets bound. If the port cannot be bound again
(someone else grabbed it in between), the process exits with the same
"address in use" diagnostic as on first start.

=============================================================================
THE CONNECTION LOOP (ServerInstance)
=============================================================================

    accept thread ──► ThreadPool.submit(_process_connection)
                                         │
          ┌──────────────────────────────┘
          ▼
    while running:
        raw = conn.read_request()        None → client left / idle timeout
        request = parser.parse(raw)      HTTPParseError → 4xx/5xx, close
        response = handler(request)      exception → 500, logged
        add Connection / Keep-Alive headers
        send (without body for HEAD)
        keep-alive? loop : close

=============================================================================
"""

import logging
import signal
import ssl
import sys
import threading
from concurrent.futures import Future
from enum import Enum
from typing import Callable, Optional, Tuple

from .config import ServeConfig, TLSConfigError
from .core import AddressInUseError, Connection, RequestTooLarge, SocketServer, ThreadPool, create_ssl_context
from .http import HTTPParseError, HTTPRequest, HTTPResponse, HTTPStatus, RequestParser, ResponseBuilder
from .pipeline import build_pipeline


logger = logging.getLogger(__name__)


ADDRESS_IN_USE_MESSAGE = "Endpoint is in use, either stop the other server or use a different port."

HANDLED_SIGNALS = ("SIGINT", "SIGTERM", "SIGQUIT", "SIGHUP")


class LifecycleState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    LISTENING = "listening"
    DRAINING = "draining"


class ServerInstance:
    """
    One bound listening socket with its config snapshot, handler, worker
    pool and accept thread.

    Created by LifecycleManager only. Never reconfigured: a new config
    means a new instance.
    """

    def __init__(self, config: ServeConfig, handler: Callable[[HTTPRequest], HTTPResponse]):
        self.config = config
        self.handler = handler

        ssl_context = None
        if config.tls is not None:
            try:
                ssl_context = create_ssl_context(config.tls.cert_path, config.tls.key_path)
            except (ssl.SSLError, OSError) as e:
                raise TLSConfigError(f"Cannot load TLS key/certificate: {e}") from e

        self._socket_server = SocketServer(config, ssl_context)
        self._thread_pool = ThreadPool(
            min_workers=config.min_workers,
            max_workers=config.max_workers,
            name=f"devserve-{config.port}",
        )
        self._parser = RequestParser(max_request_size=config.max_request_size)
        self._running = False

    @property
    def address(self) -> Tuple[str, int]:
        return self._socket_server.address

    @property
    def port(self) -> int:
        return self.address[1]

    @property
    def scheme(self) -> str:
        return self._socket_server.scheme

    @property
    def url(self) -> str:
        """URL with the host as configured and the port actually bound."""
        return f"{self.scheme}://{self.config.host}:{self.port}"

    @property
    def is_running(self) -> bool:
        return self._running

    def bind(self):
        """
        Raises:
            AddressInUseError: The port is taken.
            OSError: Other bind failures.
        """
        self._socket_server.bind()

    def serve_in_background(self):
        self._thread_pool.start()
        self._running = True
        self._socket_server.serve_in_thread(self._handle_connection)

    def close(self, drain: bool = True, timeout: float = 5.0):
        """
        Stop serving. The port is free when this returns.

            1. stop accepting, close the listening socket
            2. wake idle keep-alive connections so their workers exit
            3. let in-flight requests finish (drain) and stop the pool
        """
        if not self._running and not self._socket_server.is_running:
            return
        self._running = False
        self._socket_server.close()
        idle = self._socket_server.close_idle_connections()
        if idle:
            logger.debug(f"Closed {idle} idle keep-alive connection(s)")
        self._thread_pool.shutdown(wait=drain, timeout=timeout)

    # =========================================================================
    # CONNECTION HANDLING (runs on pool workers)
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        try:
            submitted = self._thread_pool.submit(self._process_connection, args=(conn,), block=False)
        except RuntimeError:
            submitted = False
        if not submitted:
            logger.warning(f"[{conn.id}] Thread pool unavailable, rejecting connection")
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
            conn.close()
            self._socket_server.forget(conn)

    def _process_connection(self, conn: Connection):
        try:
            with conn:
                if not conn.handshake():
                    return
                while self._running:
                    if not self._serve_one(conn):
                        break
        finally:
            self._socket_server.forget(conn)

    def _serve_one(self, conn: Connection) -> bool:
        """Read, handle and answer one request. False ends the connection."""
        try:
            raw_request = conn.read_request()
        except TimeoutError:
            self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
            return False
        except RequestTooLarge as e:
            self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE, str(e))
            return False

        if raw_request is None:
            return False

        try:
            request = self._parser.parse(raw_request, conn.address, scheme=self.scheme)
        except HTTPParseError as e:
            self._send_error(conn, e.status_code, str(e))
            return False

        try:
            response = self.handler(request)
        except Exception as e:
            logger.exception(f"[{conn.id}] Handler error for {request.method} {request.url}: {e}")
            response = ResponseBuilder().status(HTTPStatus.INTERNAL_SERVER_ERROR).text(
                "Internal Server Error").build()

        keep_alive = request.is_keep_alive and self.config.keep_alive and self._running
        if keep_alive:
            if not response.has_header("Connection"):
                response.set_header("Connection", "keep-alive")
                response.set_header("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
            elif response.get_header("Connection").lower() == "close":
                keep_alive = False
        else:
            response.set_header("Connection", "close")

        payload = response.to_bytes(self.config.server_name, include_body=request.method != "HEAD")
        if not conn.send_response(payload):
            return False
        if not keep_alive:
            return False
        conn.set_keep_alive()
        return True

    def _send_error(self, conn: Connection, status: int, message: str):
        """Error answered before (or instead of) the pipeline."""
        response = ResponseBuilder().status(status).text(message).close_connection().build()
        conn.send_response(response.to_bytes(self.config.server_name))


class LifecycleManager:
    """
    Starts, restarts and stops the ServerInstance.

    Usage:
        manager = LifecycleManager()
        instance = manager.start(config)     # returns once listening
        manager.start(config)                # same fingerprint: no-op
        manager.start(other_config)          # different: restart
        manager.wait()                       # until a signal or stop()
    """

    def __init__(self, install_signal_handlers: bool = True):
        self.install_signal_handlers = install_signal_handlers
        self._lock = threading.RLock()
        self._state = LifecycleState.IDLE
        self._instance: Optional[ServerInstance] = None
        self._fingerprint: Optional[str] = None
        self._idle = threading.Event()
        self._idle.set()
        self._listening: Future = Future()
        self._original_handlers: dict = {}

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def instance(self) -> Optional[ServerInstance]:
        return self._instance

    @property
    def listening(self) -> Future:
        """Resolves with the bound (host, port) once the server listens."""
        return self._listening

    @property
    def is_listening(self) -> bool:
        return self._state == LifecycleState.LISTENING

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def start(self, config: ServeConfig) -> ServerInstance:
        """
        Listen with `config`.

        Raises:
            SystemExit: The port is in use (exit status 1).
            TLSConfigError: The key/certificate cannot be loaded.
            OSError: Any other bind failure.
        """
        with self._lock:
            if self._state == LifecycleState.LISTENING and self._instance is not None:
                if config.fingerprint() == self._fingerprint:
                    logger.debug("Configuration unchanged, keeping the running server")
                    return self._instance
                return self.restart(config)
            return self._start_locked(config)

    def restart(self, config: ServeConfig) -> ServerInstance:
        """Close the current instance (releasing its port), then start."""
        with self._lock:
            if self._instance is not None:
                logger.info("Configuration changed, restarting server...")
                self._state = LifecycleState.DRAINING
                self._instance.close(drain=True)
                self._instance = None
                self._fingerprint = None
            return self._start_locked(config)

    def stop(self):
        """Drain and close the server; back to IDLE. Idempotent."""
        with self._lock:
            if self._instance is None and self._state == LifecycleState.IDLE:
                return
            logger.info("Shutting down server...")
            self._state = LifecycleState.DRAINING
            try:
                if self._instance is not None:
                    self._instance.close(drain=True)
            finally:
                self._instance = None
                self._fingerprint = None
                self._state = LifecycleState.IDLE
                self._restore_signals()
                self._idle.set()
            logger.info("Server stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the manager is IDLE again.

        Waits in short slices so signal handlers still run on the main
        thread. Returns False on timeout.
        """
        if timeout is not None:
            return self._idle.wait(timeout)
        while not self._idle.wait(0.5):
            pass
        return True

    def _start_locked(self, config: ServeConfig) -> ServerInstance:
        self._state = LifecycleState.STARTING
        if self._listening.done():
            self._listening = Future()

        try:
            instance = ServerInstance(config, build_pipeline(config))
            instance.bind()
        except AddressInUseError as e:
            self._state = LifecycleState.IDLE
            self._idle.set()
            logger.error(ADDRESS_IN_USE_MESSAGE)
            raise SystemExit(1) from e
        except BaseException:
            self._state = LifecycleState.IDLE
            self._idle.set()
            raise

        instance.serve_in_background()
        self._instance = instance
        self._fingerprint = config.fingerprint()
        self._state = LifecycleState.LISTENING
        self._idle.clear()
        self._install_signals()

        logger.info(f"Server listening on {instance.url}")
        self._listening.set_result(instance.address)

        if config.on_listening is not None:
            try:
                config.on_listening(instance)
            except Exception as e:
                logger.exception(f"on_listening callback failed: {e}")
        return instance

    # =========================================================================
    # SIGNALS
    # =========================================================================

    def _install_signals(self):
        """Install shutdown handlers once, from the main thread only."""
        if not self.install_signal_handlers or self._original_handlers:
            return
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, signal handlers not installed")
            return
        for name in HANDLED_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            try:
                self._original_handlers[signum] = signal.signal(signum, self._on_signal)
            except (OSError, ValueError) as e:
                logger.debug(f"Cannot install handler for {name}: {e}")

    def _restore_signals(self):
        if threading.current_thread() is not threading.main_thread():
            return
        for signum, handler in self._original_handlers.items():
            signal.signal(signum, handler)
        self._original_handlers.clear()

    def _on_signal(self, signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
        self.stop()
        sys.exit(0)


_default_manager: Optional[LifecycleManager] = None
_default_manager_lock = threading.Lock()


def get_manager() -> LifecycleManager:
    """Process-wide default manager."""
    global _default_manager
    with _default_manager_lock:
        if _default_manager is None:
            _default_manager = LifecycleManager()
        return _default_manager
