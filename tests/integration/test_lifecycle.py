"""
Integration tests for the lifecycle manager: real sockets on localhost.
"""

import http.client
import logging
import os
import signal
import socket
import sys
import time
from pathlib import Path

import pytest

from devserve.config import TLSConfigError, normalize_options
from devserve.lifecycle import (
    ADDRESS_IN_USE_MESSAGE,
    LifecycleManager,
    LifecycleState,
)


def options(site: Path, **extra) -> dict:
    values = {"content_base": str(site), "host": "127.0.0.1", "port": 0, "min_workers": 2}
    values.update(extra)
    return values


def get(port: int, path: str = "/", method: str = "GET", headers=None):
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
    try:
        conn.request(method, path, headers=headers or {})
        response = conn.getresponse()
        return response.status, dict(response.getheaders()), response.read()
    finally:
        conn.close()


def port_refuses(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.settimeout(2)
        try:
            s.connect(("127.0.0.1", port))
        except ConnectionRefusedError:
            return True
    return False


class TestStart:
    """Tests for LifecycleManager.start()."""

    def test_start_serves_requests(self, manager: LifecycleManager, site: Path):
        instance = manager.start(normalize_options(options(site)))

        status, headers, body = get(instance.port, "/app.js")

        assert manager.state is LifecycleState.LISTENING
        assert status == 200
        assert body == (site / "app.js").read_bytes()
        assert headers["Server"] == "devserve"

    def test_listening_future_and_callback(self, manager: LifecycleManager, site: Path):
        seen = []
        config = normalize_options(options(site, on_listening=seen.append))

        instance = manager.start(config)

        assert manager.listening.result(timeout=1) == instance.address
        assert seen == [instance]
        assert instance.url == f"http://127.0.0.1:{instance.port}"

    def test_start_twice_is_noop(self, manager: LifecycleManager, site: Path):
        config = normalize_options(options(site))

        first = manager.start(config)
        second = manager.start(normalize_options(options(site)))

        assert second is first
        assert get(first.port)[0] == 200

    def test_changed_config_restarts(self, manager: LifecycleManager, site: Path):
        first = manager.start(normalize_options(options(site)))
        old_port = first.port

        second = manager.start(normalize_options(options(site, headers={"X-Version": "2"})))

        assert second is not first
        assert port_refuses(old_port)
        status, headers, _ = get(second.port, "/app.js")
        assert status == 200
        assert headers["X-Version"] == "2"

    def test_restart_same_port(self, manager: LifecycleManager, site: Path, free_port: int):
        first = manager.start(normalize_options(options(site, port=free_port)))

        second = manager.restart(normalize_options(options(site, port=free_port, headers={"X-A": "1"})))

        assert second is not first
        assert second.port == free_port
        assert get(free_port)[1]["X-A"] == "1"


class TestStop:
    def test_stop_releases_port(self, manager: LifecycleManager, site: Path):
        instance = manager.start(normalize_options(options(site)))
        port = instance.port

        manager.stop()

        assert manager.state is LifecycleState.IDLE
        assert manager.instance is None
        assert port_refuses(port)
        assert manager.wait(timeout=0.1) is True

    def test_stop_is_idempotent(self, manager: LifecycleManager):
        manager.stop()
        manager.stop()

        assert manager.state is LifecycleState.IDLE

    def test_idle_keep_alive_connection_does_not_block_stop(self, manager: LifecycleManager, site: Path):
        instance = manager.start(normalize_options(options(site, keep_alive_timeout=30)))
        conn = http.client.HTTPConnection("127.0.0.1", instance.port, timeout=5)
        conn.request("GET", "/app.js")
        conn.getresponse().read()

        port = instance.port

        started = time.monotonic()
        manager.stop()

        assert time.monotonic() - started < 5
        assert port_refuses(port)
        conn.close()

    def test_silent_preconnect_does_not_block_restart(self, manager: LifecycleManager, site: Path):
        instance = manager.start(normalize_options(options(site)))
        old_port = instance.port
        preconnect = socket.create_connection(("127.0.0.1", old_port), timeout=5)
        try:
            time.sleep(0.3)

            started = time.monotonic()
            second = manager.restart(normalize_options(options(site, headers={"X-B": "1"})))
            elapsed = time.monotonic() - started

            assert elapsed < 2
            assert port_refuses(old_port)
            assert get(second.port)[0] == 200
            assert preconnect.recv(1) == b""
        finally:
            preconnect.close()


class TestBindErrors:
    """Tests for fatal startup errors."""

    def test_address_in_use_exits(self, manager: LifecycleManager, site: Path, caplog):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]
        try:
            with caplog.at_level(logging.ERROR, logger="devserve.lifecycle"):
                with pytest.raises(SystemExit) as exc_info:
                    manager.start(normalize_options(options(site, port=port)))
        finally:
            blocker.close()

        assert exc_info.value.code == 1
        assert ADDRESS_IN_USE_MESSAGE in caplog.text
        assert manager.state is LifecycleState.IDLE

    def test_unreadable_tls_material(self, manager: LifecycleManager, site: Path, tmp_path: Path):
        (tmp_path / "key.pem").write_text("not a key")
        (tmp_path / "cert.pem").write_text("not a cert")
        config = normalize_options(options(site, tls={"key": str(tmp_path / "key.pem"),
                                                      "cert": str(tmp_path / "cert.pem")}))

        with pytest.raises(TLSConfigError):
            manager.start(config)

        assert manager.state is LifecycleState.IDLE


class TestConnectionLoop:
    """Tests for the per-connection request loop."""

    def test_keep_alive_reuses_connection(self, manager: LifecycleManager, site: Path):
        instance = manager.start(normalize_options(options(site)))
        conn = http.client.HTTPConnection("127.0.0.1", instance.port, timeout=5)
        try:
            conn.request("GET", "/app.js")
            first = conn.getresponse()
            first.read()
            sock = conn.sock
            conn.request("GET", "/index.html")
            second = conn.getresponse()
            second.read()
            reused = conn.sock is sock
        finally:
            conn.close()

        assert first.getheader("Connection") == "keep-alive"
        assert second.status == 200
        assert reused

    def test_head_has_no_body(self, manager: LifecycleManager, site: Path):
        instance = manager.start(normalize_options(options(site)))

        status, headers, body = get(instance.port, "/app.js", method="HEAD")

        assert status == 200
        assert body == b""
        assert headers["Content-Length"] == str(len((site / "app.js").read_bytes()))

    def test_middleware_exception_is_500(self, manager: LifecycleManager, site: Path):
        def broken(request, next):
            raise RuntimeError("mock exploded")

        instance = manager.start(normalize_options(options(site, middleware=[broken])))

        status, _, body = get(instance.port, "/app.js")

        assert status == 500
        assert b"mock exploded" not in body

    def test_malformed_request_is_400(self, manager: LifecycleManager, site: Path):
        instance = manager.start(normalize_options(options(site)))

        with socket.create_connection(("127.0.0.1", instance.port), timeout=5) as s:
            s.sendall(b"NONSENSE\r\n\r\n")
            reply = s.recv(4096)

        assert reply.startswith(b"HTTP/1.1 400 ")

    def test_unknown_method_is_405(self, manager: LifecycleManager, site: Path):
        instance = manager.start(normalize_options(options(site)))

        with socket.create_connection(("127.0.0.1", instance.port), timeout=5) as s:
            s.sendall(b"BREW /pot HTTP/1.1\r\nHost: x\r\n\r\n")
            reply = s.recv(4096)

        assert reply.startswith(b"HTTP/1.1 405 ")

    def test_connection_close_honored(self, manager: LifecycleManager, site: Path):
        instance = manager.start(normalize_options(options(site)))

        with socket.create_connection(("127.0.0.1", instance.port), timeout=5) as s:
            s.sendall(b"GET /app.js HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")
            chunks = []
            while True:
                chunk = s.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)

        reply = b"".join(chunks)
        assert b"Connection: close\r\n" in reply
        assert reply.endswith((site / "app.js").read_bytes())


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal delivery")
class TestSignals:
    """Shutdown signals drain the server, exit 0 and restore handlers."""

    def test_sigterm_stops_and_exits(self, site: Path):
        previous = signal.getsignal(signal.SIGTERM)
        manager = LifecycleManager()
        try:
            instance = manager.start(normalize_options(options(site)))
            port = instance.port

            assert signal.getsignal(signal.SIGTERM) == manager._on_signal

            with pytest.raises(SystemExit) as exc_info:
                os.kill(os.getpid(), signal.SIGTERM)
                # the handler runs on the main thread between bytecodes
                for _ in range(50):
                    time.sleep(0.1)

            assert exc_info.value.code == 0
            assert manager.state is LifecycleState.IDLE
            assert port_refuses(port)
            assert signal.getsignal(signal.SIGTERM) == previous
        finally:
            manager.stop()
            signal.signal(signal.SIGTERM, previous)
