"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses raw HTTP/1.1 request bytes into structured HTTPRequest objects.

=============================================================================
WHAT THE DEV SERVER NEEDS FROM A REQUEST
=============================================================================

    GET /api/items%20x?page=1 HTTP/1.1\r\n
    Host: localhost:10001\r\n
    Accept: text/html,application/xhtml+xml;q=0.9,*/*;q=0.8\r\n
    \r\n

        method        "GET"
        raw_path      "/api/items%20x"   ← forwarded to upstreams untouched
        path          "/api/items x"     ← decoded, used for files on disk
        query_string  "page=1"           ← appended to proxied URLs
        url           "/api/items%20x?page=1"   ← what trace lines print
        headers       {"host": ..., "accept": ...}   (lowercase keys)
        scheme        "http" / "https"   ← set by the listener
        client_address ("127.0.0.1", 53122)

Two different consumers want two different paths. The static server maps
the DECODED path onto the file system; the proxy forwards the RAW path so
that percent-escapes survive the hop exactly as the browser sent them.

=============================================================================
CONTENT NEGOTIATION
=============================================================================

The SPA fallback only answers requests that prefer HTML. `prefers_html()`
parses the Accept header's quality values:

    Accept: text/html,*/*;q=0.8              → html q=1.0  → True
    Accept: application/json                 → html q=0    → False
    Accept: application/json, */*;q=0.1      → json 1.0 > html 0.1 → False
    (no Accept header)                       → treated as */*     → True

=============================================================================
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlsplit


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the status code the connection loop should answer with:
        400 Bad Request, 405 Method Not Allowed,
        413 Payload Too Large, 505 HTTP Version Not Supported
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


HTML_TYPES = ("text/html", "application/xhtml+xml")


def parse_accept(header: str) -> List[Tuple[str, float]]:
    """
    Split an Accept header into (media-range, quality) pairs.

        parse_accept("text/html, */*;q=0.5")
        → [("text/html", 1.0), ("*/*", 0.5)]
    """
    ranges = []
    for part in header.split(","):
        pieces = [p.strip() for p in part.split(";")]
        media = pieces[0].lower()
        if not media:
            continue
        quality = 1.0
        for param in pieces[1:]:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    quality = float(value.strip())
                except ValueError:
                    quality = 0.0
        ranges.append((media, quality))
    return ranges


def _range_matches(media_range: str, media_type: str) -> bool:
    if media_range == "*/*":
        return True
    range_major, _, range_minor = media_range.partition("/")
    type_major, _, type_minor = media_type.partition("/")
    if range_minor == "*":
        return range_major == type_major
    return media_range == media_type


@dataclass
class HTTPRequest:
    """
    Represents a parsed HTTP request.

    Attributes:
        method:         GET, POST, HEAD, ...
        path:           Decoded request path without query string
        version:        "HTTP/1.1" or "HTTP/1.0"
        headers:        Header dict with LOWERCASE keys
        query_params:   Parsed query string, name → list of values
        body:           Raw body bytes (Content-Length delimited)
        raw_path:       Path exactly as sent on the request line
        query_string:   Query string without the "?"
        scheme:         "http" or "https", whichever listener accepted it
        client_address: (ip, port) of the peer
        raw:            Original request bytes
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    body: bytes = b""
    raw_path: str = ""
    query_string: str = ""
    scheme: str = "http"
    client_address: tuple[str, int] = ("", 0)
    raw: bytes = field(default=b"", repr=False)

    _body_json: Optional[Any] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.raw_path:
            self.raw_path = self.path

    @property
    def url(self) -> str:
        """Original request target: raw path plus query string."""
        if self.query_string:
            return f"{self.raw_path}?{self.query_string}"
        return self.raw_path

    @property
    def client_ip(self) -> str:
        return self.client_address[0]

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters, lowercased."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def json(self) -> Any:
        """
        Body parsed as JSON (cached).

        Raises:
            HTTPParseError: If the body is not valid JSON.
        """
        if self._body_json is None and self.body:
            try:
                self._body_json = json.loads(self.body.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise HTTPParseError(f"Invalid JSON body: {e}")
        return self._body_json

    @property
    def is_keep_alive(self) -> bool:
        """
        HTTP/1.1 keeps the connection unless "Connection: close";
        HTTP/1.0 closes it unless "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(name, [])
        return values[0] if values else default

    def accept_quality(self, media_type: str) -> float:
        """
        Quality the client assigns to `media_type`.

        The most specific matching range wins (text/html beats text/*
        beats */*), as RFC 7231 section 5.3.2 describes.
        """
        header = self.headers.get("accept")
        if header is None or not header.strip():
            return 1.0
        best_specificity = -1
        quality = 0.0
        for media_range, q in parse_accept(header):
            if not _range_matches(media_range, media_type):
                continue
            specificity = 0 if media_range == "*/*" else (1 if media_range.endswith("/*") else 2)
            if specificity > best_specificity:
                best_specificity = specificity
                quality = q
        return quality

    def prefers_html(self) -> bool:
        """
        True when HTML is at least as acceptable as anything else the
        client explicitly listed.
        """
        html_quality = max(self.accept_quality(t) for t in HTML_TYPES)
        if html_quality <= 0:
            return False
        header = self.headers.get("accept", "")
        for media_range, q in parse_accept(header):
            if "*" in media_range or media_range in HTML_TYPES:
                continue
            if q > html_quality:
                return False
        return True


class RequestParser:
    """
    Parses raw HTTP request bytes into HTTPRequest objects.

        Raw bytes
            │
            ├─ size check ─────────────── 413
            ├─ split at \\r\\n\\r\\n
            ├─ request line ───────────── 400 / 405 / 505
            ├─ headers (lowercased, repeated ones joined with ", ")
            └─ body by Content-Length
    """

    VALID_METHODS = {
        "GET", "POST", "PUT", "DELETE", "PATCH",
        "HEAD", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: tuple[str, int] = ("", 0),
        scheme: str = "http",
    ) -> HTTPRequest:
        """
        Parse raw HTTP request data into an HTTPRequest.

        Args:
            data: Raw request bytes from the connection.
            client_address: Peer (ip, port).
            scheme: "https" when the listener is TLS-wrapped.

        Raises:
            HTTPParseError: If the request is malformed.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {len(data)} bytes",
                status_code=413,
            )

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")
        header_section = data[:header_end].decode("utf-8", errors="replace")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, raw_path, query_string, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError("Invalid Content-Length header")
        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        path = unquote(raw_path) or "/"
        if ".." in path.split("/"):
            raise HTTPParseError("Invalid path: contains ..", status_code=400)

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=parse_qs(query_string, keep_blank_values=True),
            body=body[:content_length],
            raw_path=raw_path,
            query_string=query_string,
            scheme=scheme,
            client_address=client_address,
            raw=data,
        )

    def _parse_request_line(self, line: str) -> tuple[str, str, str, str]:
        """
        "GET /users?page=1 HTTP/1.1" → ("GET", "/users", "page=1", "HTTP/1.1")
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, target, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505,
            )

        # Absolute-form targets ("GET http://host/path") are accepted and
        # reduced to their path, the way origin servers treat them.
        parts = urlsplit(target)
        raw_path = parts.path or "/"
        if not raw_path.startswith("/"):
            raise HTTPParseError(f"Invalid request target: {target}")
        return method, raw_path, parts.query, version

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        """Header lines → dict with lowercase names."""
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            # obs-fold continuation line
            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers


def parse_request(
    data: bytes,
    client_address: tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024,
) -> HTTPRequest:
    """One-shot helper around RequestParser."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
