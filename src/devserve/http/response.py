"""
=============================================================================
HTTP RESPONSE BUILDER
=============================================================================

Builds HTTP/1.1 responses and serializes them for the socket.

=============================================================================
HTTP RESPONSE ANATOMY
=============================================================================

    HTTP/1.1 200 OK\r\n                        ← status line
    Content-Type: text/javascript; charset=utf-8\r\n
    ETag: "1767225600-512"\r\n
    Cache-Control: no-cache\r\n
    Set-Cookie: a=1\r\n                        ← repeated headers (proxy)
    Set-Cookie: b=2\r\n
    Content-Length: 512\r\n                    ← auto-added
    Date: Thu, 01 Jan 2026 00:00:00 GMT\r\n    ← auto-added
    Server: devserve\r\n                       ← auto-added
    \r\n
    <body bytes>                               ← omitted for HEAD

=============================================================================
WHERE DID THIS RESPONSE COME FROM?
=============================================================================

Every handler in the pipeline marks the responses it produces:

    ┌──────────────────┬─────────────────┬──────────────────────────────┐
    │ Producer         │ response.source │ response.target              │
    ├──────────────────┼─────────────────┼──────────────────────────────┤
    │ static files     │ "static"        │ None                         │
    │ proxy router     │ "proxy"         │ "http://localhost:9000/items"│
    │ SPA fallback     │ "spa-fallback"  │ None                         │
    │ user mock        │ "mock"          │ None                         │
    │ anything else    │ "unknown"       │ None                         │
    └──────────────────┴─────────────────┴──────────────────────────────┘

These two attributes are read by the trace middleware and are NEVER
written to the wire: `to_bytes()` only serializes status, headers, body.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
import json

from .status_codes import HTTPStatus, reason_phrase
from .mime_types import get_content_type


DEFAULT_SERVER_NAME = "devserve"

SOURCE_STATIC = "static"
SOURCE_PROXY = "proxy"
SOURCE_FALLBACK = "spa-fallback"
SOURCE_MOCK = "mock"
SOURCE_UNKNOWN = "unknown"


@dataclass
class HTTPResponse:
    """
    Represents an HTTP response to be sent to the client.

    Attributes:
        status:        Status code. A plain int, so that proxied responses
                       can carry codes HTTPStatus does not list.
        headers:       Single-valued headers (name → value).
        body:          Response body.
        version:       HTTP version for the status line.
        multi_headers: Headers that must repeat on the wire (Set-Cookie).
        source:        Which handler produced it (out-of-band).
        target:        Upstream URL for proxied responses (out-of-band).
    """

    status: int = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"
    multi_headers: List[Tuple[str, str]] = field(default_factory=list)
    source: str = SOURCE_UNKNOWN
    target: Optional[str] = None

    @property
    def status_line(self) -> str:
        """e.g. "HTTP/1.1 404 Not Found"."""
        return f"{self.version} {int(self.status)} {reason_phrase(self.status)}"

    def _find_header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key in self.headers:
            if key.lower() == lowered:
                return key
        return None

    def has_header(self, name: str) -> bool:
        """Case-insensitive presence check."""
        if self._find_header(name) is not None:
            return True
        lowered = name.lower()
        return any(key.lower() == lowered for key, _ in self.multi_headers)

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        key = self._find_header(name)
        return self.headers[key] if key is not None else default

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """
        Set a header, replacing any existing one regardless of case.

        Returns self for chaining.
        """
        existing = self._find_header(name)
        if existing is not None and existing != name:
            del self.headers[existing]
        self.headers[name] = value
        return self

    def add_header(self, name: str, value: str) -> "HTTPResponse":
        """Append a header that may appear several times."""
        self.multi_headers.append((name, value))
        return self

    def set_content_type(self, content_type: str) -> "HTTPResponse":
        return self.set_header("Content-Type", content_type)

    def set_body(self, body: Union[str, bytes]) -> "HTTPResponse":
        """Set the body, encoding strings as UTF-8."""
        if isinstance(body, str):
            self.body = body.encode("utf-8")
        else:
            self.body = body
        return self

    def to_bytes(
        self,
        server_name: str = DEFAULT_SERVER_NAME,
        include_body: bool = True,
    ) -> bytes:
        """
        Serialize the response for socket.sendall().

        Content-Length always describes the full body, even when the body
        itself is left out (HEAD requests), so the client sees the same
        headers GET would have produced.

        Args:
            server_name: Value for the Server header if none is set.
            include_body: False for responses to HEAD.
        """
        response_headers = dict(self.headers)
        present = {name.lower() for name in response_headers}

        if "content-length" not in present:
            response_headers["Content-Length"] = str(len(self.body))
        if "date" not in present:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))
        if "server" not in present:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        for name, value in self.multi_headers:
            lines.append(f"{name}: {value}")
        lines.append("")

        header_bytes = "\r\n".join(lines).encode("latin-1", errors="replace") + b"\r\n"
        if include_body:
            return header_bytes + self.body
        return header_bytes


def tag_source(
    response: HTTPResponse,
    source: str,
    target: Optional[str] = None,
) -> HTTPResponse:
    """
    Mark which handler produced `response` and return it.

    User middleware that serves mock data should call
    `tag_source(response, "mock")` so trace lines show it.
    """
    response.source = source
    response.target = target
    return response


class ResponseBuilder:
    """
    Fluent builder for constructing HTTP responses.

        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .json({"workspace": {...}})
            .no_cache()
            .source("mock")
            .build())

    Every method except build() returns self.
    """

    def __init__(self, server_name: str = DEFAULT_SERVER_NAME):
        self._status: int = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._multi_headers: List[Tuple[str, str]] = []
        self._body: bytes = b""
        self._source = SOURCE_UNKNOWN
        self._target: Optional[str] = None
        self._server_name = server_name

    # =========================================================================
    # STATUS / HEADERS
    # =========================================================================

    def status(self, status: int) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def headers(self, headers: Union[Dict[str, str], Iterable[Tuple[str, str]]]) -> "ResponseBuilder":
        items = headers.items() if isinstance(headers, dict) else headers
        for name, value in items:
            self._headers[name] = value
        return self

    def add_header(self, name: str, value: str) -> "ResponseBuilder":
        self._multi_headers.append((name, value))
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def source(self, source: str, target: Optional[str] = None) -> "ResponseBuilder":
        self._source = source
        self._target = target
        return self

    # =========================================================================
    # BODY
    # =========================================================================

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        if isinstance(body, str):
            self._body = body.encode("utf-8")
        else:
            self._body = body
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        self._body = text.encode("utf-8")
        self._headers["Content-Type"] = content_type
        return self

    def html(self, html: str) -> "ResponseBuilder":
        self._body = html.encode("utf-8")
        self._headers["Content-Type"] = "text/html; charset=utf-8"
        return self

    def json(self, data: Any, pretty: bool = False) -> "ResponseBuilder":
        indent = 2 if pretty else None
        self._body = json.dumps(data, indent=indent, ensure_ascii=False).encode("utf-8")
        self._headers["Content-Type"] = "application/json; charset=utf-8"
        return self

    def file(self, content: bytes, filename: str, content_type: Optional[str] = None) -> "ResponseBuilder":
        """
        File contents; the Content-Type comes from the filename unless
        the caller already resolved one (with user MIME overrides).
        """
        self._body = content
        self._headers["Content-Type"] = content_type or get_content_type(filename)
        return self

    # =========================================================================
    # REDIRECT / CACHING / CONNECTION
    # =========================================================================

    def redirect(self, location: str, permanent: bool = False) -> "ResponseBuilder":
        """301 when permanent, otherwise 302."""
        self._status = HTTPStatus.MOVED_PERMANENTLY if permanent else HTTPStatus.FOUND
        self._headers["Location"] = location
        return self

    def no_cache(self) -> "ResponseBuilder":
        """
        Force revalidation on every request.

        Development assets change on every save; "no-cache" still lets the
        browser keep a copy but makes it ask (ETag → 304) before reusing it.
        """
        self._headers["Cache-Control"] = "no-cache"
        return self

    def cache(self, max_age: int = 3600) -> "ResponseBuilder":
        self._headers["Cache-Control"] = f"public, max-age={max_age}"
        return self

    def keep_alive(self, timeout: int = 5, max_requests: int = 100) -> "ResponseBuilder":
        self._headers["Connection"] = "keep-alive"
        self._headers["Keep-Alive"] = f"timeout={timeout}, max={max_requests}"
        return self

    def close_connection(self) -> "ResponseBuilder":
        self._headers["Connection"] = "close"
        return self

    # =========================================================================
    # BUILD
    # =========================================================================

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=dict(self._headers),
            body=self._body,
            multi_headers=list(self._multi_headers),
            source=self._source,
            target=self._target,
        )

    def to_bytes(self) -> bytes:
        return self.build().to_bytes(self._server_name)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

        Thu, 01 Jan 2026 12:00:00 GMT

    HTTP dates are always GMT; aware datetimes are converted first.
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return (
        f"{_DAYS[dt.weekday()]}, "
        f"{dt.day:02d} {_MONTHS[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def ok(body: Union[str, bytes, dict, list] = "", content_type: Optional[str] = None) -> HTTPResponse:
    """200 OK; dict/list become JSON, str becomes text/plain."""
    builder = ResponseBuilder().status(HTTPStatus.OK)
    if isinstance(body, (dict, list)):
        builder.json(body)
    elif isinstance(body, str):
        builder.text(body, content_type or "text/plain; charset=utf-8")
    else:
        builder.body(body)
        if content_type:
            builder.content_type(content_type)
    return builder.build()


def redirect(location: str, permanent: bool = False) -> HTTPResponse:
    return ResponseBuilder().redirect(location, permanent).build()


def error_response(status: int, message: Optional[str] = None) -> HTTPResponse:
    """Plain-text error page: "<code> <phrase>" or a custom message."""
    text = message if message is not None else f"{int(status)} {reason_phrase(status)}"
    return ResponseBuilder().status(status).text(text).build()


def bad_request(message: str = "Bad Request") -> HTTPResponse:
    return error_response(HTTPStatus.BAD_REQUEST, message)


def forbidden(message: str = "Forbidden") -> HTTPResponse:
    return error_response(HTTPStatus.FORBIDDEN, message)


def not_found(message: str = "Not Found") -> HTTPResponse:
    return error_response(HTTPStatus.NOT_FOUND, message)


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, message)


def bad_gateway(message: str = "Bad Gateway", target: Optional[str] = None) -> HTTPResponse:
    """502 for a proxy whose upstream could not be reached."""
    response = error_response(HTTPStatus.BAD_GATEWAY, message)
    return tag_source(response, SOURCE_PROXY, target)
