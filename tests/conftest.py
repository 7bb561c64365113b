"""
pytest configuration and fixtures.
"""

import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Dict, Generator, List

import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from devserve.http import HTTPRequest, RequestParser
from devserve.lifecycle import LifecycleManager


INDEX_HTML = b"<!doctype html><title>app</title><div id=app></div>"
APP_JS = b"console.log('app');"
WASM_BYTES = b"\x00asm\x01\x00\x00\x00"


@pytest.fixture
def make_request():
    """Build an HTTPRequest from a method, a target and headers."""
    parser = RequestParser()

    def build(method: str = "GET", target: str = "/", headers: Dict[str, str] = None,
              body: bytes = b"", client=("127.0.0.1", 50000)) -> HTTPRequest:
        lines = [f"{method} {target} HTTP/1.1", "Host: localhost:10001"]
        for name, value in (headers or {}).items():
            lines.append(f"{name}: {value}")
        if body:
            lines.append(f"Content-Length: {len(body)}")
        raw = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body
        return parser.parse(raw, client)

    return build


@pytest.fixture
def site(tmp_path: Path) -> Path:
    """A built frontend: index.html, app.js, a wasm module and a subfolder."""
    root = tmp_path / "dist"
    root.mkdir()
    (root / "index.html").write_bytes(INDEX_HTML)
    (root / "app.js").write_bytes(APP_JS)
    (root / "module.wasm").write_bytes(WASM_BYTES)
    (root / "docs").mkdir()
    (root / "docs" / "index.html").write_bytes(b"<h1>docs</h1>")
    return root.resolve()


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


class RecordingUpstream:
    """Backend stand-in that records every request it receives."""

    def __init__(self):
        self.requests: List[dict] = []
        upstream = self

        class Handler(BaseHTTPRequestHandler):
            def _answer(self):
                length = int(self.headers.get("Content-Length", 0))
                body = self.rfile.read(length) if length else b""
                upstream.requests.append({
                    "method": self.command,
                    "path": self.path,
                    "headers": dict(self.headers.items()),
                    "body": body,
                })
                payload = json.dumps({"path": self.path, "method": self.command}).encode()
                self.send_response(200)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(payload)))
                self.send_header("Set-Cookie", "a=1")
                self.send_header("Set-Cookie", "b=2")
                self.end_headers()
                if self.command != "HEAD":
                    self.wfile.write(payload)

            do_GET = do_POST = do_PUT = do_DELETE = do_HEAD = _answer

            def log_message(self, format, *args):
                pass

        self.server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.port = self.server.server_address[1]
        self.url = f"http://127.0.0.1:{self.port}"
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def start(self):
        self._thread.start()

    def stop(self):
        self.server.shutdown()
        self.server.server_close()


@pytest.fixture
def upstream() -> Generator[RecordingUpstream, None, None]:
    backend = RecordingUpstream()
    backend.start()
    yield backend
    backend.stop()


@pytest.fixture
def manager() -> Generator[LifecycleManager, None, None]:
    """Lifecycle manager that leaves signal handlers alone."""
    mgr = LifecycleManager(install_signal_handlers=False)
    yield mgr
    mgr.stop()
