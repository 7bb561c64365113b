"""
=============================================================================
REQUEST TRACE MIDDLEWARE
=============================================================================

Logs one line per request, saying WHO answered it.

    [TRACE] GET /app.js → 200 (static) +1.2ms 5120b
    [TRACE] GET /api/items?page=2 → 200 (proxy) +38.4ms 912b → http://localhost:9000/items?page=2
    [TRACE] GET /settings/profile → 200 (spa-fallback) +0.9ms 733b
    [TRACE] POST /api/login → 502 (proxy) +2.0ms 11b → http://localhost:9000/login

In a dev server the interesting question is rarely "what status?" but
"did that come from disk, from the backend, or from the SPA fallback?".
Handlers record the answer on the response (`response.source`,
`response.target`); this middleware reads it back out.

=============================================================================
POSITION IN THE PIPELINE
=============================================================================

Tracing is the OUTERMOST middleware, so its timer covers every other
stage, including user middleware and the upstream round trip:

    start = perf_counter()
    response = next(request)          ← headers, user mw, static, proxy, ...
    elapsed = perf_counter() - start

=============================================================================
FORMATS
=============================================================================

    dev       [TRACE] :method :url → :status (:source) +:response-time ms :length b
    combined  :remote-addr - - [:date] ":method :url HTTP/:http-version" :status
              :res[content-length] ":referrer" ":user-agent"
    common    combined without referrer and user agent
    short     :remote-addr - :method :url HTTP/:http-version :status
              :res[content-length] - :response-time ms
    tiny      :method :url :status :res[content-length] - :response-time ms

Any other string is a token format; a callable receives the TraceEvent
and returns the line.

=============================================================================
FILTERS
=============================================================================

    filters=()                 → trace everything
    filters=("/api",)          → prefix: /api, /api/items, /apis ...
    filters=("*.js", "/api/*") → fnmatch globs against the path

=============================================================================
"""

import fnmatch
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Mapping, Optional, Union

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, format_http_date
from ..http.status_codes import is_client_error, is_redirect, is_server_error, is_success
from ..log import colorize, stream_supports_color


logger = logging.getLogger("devserve.trace")


@dataclass(frozen=True)
class TraceEvent:
    """
    Everything known about one finished request.

    Built once per request, passed to the formatter, then dropped.
    """

    method: str
    url: str
    path: str
    status: int
    source: str
    target: Optional[str]
    elapsed_ms: float
    length: int
    client_ip: str = ""
    http_version: str = "1.1"
    referrer: str = ""
    user_agent: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    request_headers: Mapping[str, str] = field(default_factory=dict, repr=False)
    response_headers: Mapping[str, str] = field(default_factory=dict, repr=False)


Formatter = Callable[[TraceEvent], str]


# =============================================================================
# FORMATTERS
# =============================================================================

PRESETS = {
    "combined": ':remote-addr - - [:date[clf]] ":method :url HTTP/:http-version" '
                ':status :res[content-length] ":referrer" ":user-agent"',
    "common": ':remote-addr - - [:date[clf]] ":method :url HTTP/:http-version" '
              ':status :res[content-length]',
    "short": ":remote-addr - :method :url HTTP/:http-version :status "
             ":res[content-length] - :response-time ms",
    "tiny": ":method :url :status :res[content-length] - :response-time ms",
}

TOKEN_PATTERN = re.compile(r":([a-z][a-z0-9-]*)(?:\[([^\]]+)\])?")

_STATUS_COLORS = (
    (is_server_error, 31),   # red
    (is_client_error, 33),   # yellow
    (is_redirect, 36),       # cyan
    (is_success, 32),        # green
)


def status_color(status: int) -> Optional[int]:
    """ANSI color code for a status class, None for 1xx/unknown."""
    for predicate, code in _STATUS_COLORS:
        if predicate(status):
            return code
    return None


def format_dev(event: TraceEvent, use_color: bool = False) -> str:
    """
    The default one-line format.

        [TRACE] GET /api/items → 200 (proxy) +12.3ms 512b → http://localhost:9000/items
    """
    status = str(event.status)
    code = status_color(event.status)
    if use_color and code is not None:
        status = colorize(status, code)
    line = (
        f"[TRACE] {event.method} {event.url} → {status} ({event.source}) "
        f"+{event.elapsed_ms:.1f}ms {event.length}b"
    )
    if event.target:
        line += f" → {event.target}"
    return line


def _format_date(event: TraceEvent, style: Optional[str]) -> str:
    if style == "iso":
        return event.timestamp.isoformat()
    if style == "web":
        return format_http_date(event.timestamp)
    return event.timestamp.strftime("%d/%b/%Y:%H:%M:%S +0000")


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def _token_value(event: TraceEvent, name: str, arg: Optional[str]) -> Optional[str]:
    if name == "method":
        return event.method
    if name == "url":
        return event.url
    if name == "path":
        return event.path
    if name == "status":
        return str(event.status)
    if name == "source":
        return event.source
    if name == "target":
        return event.target
    if name == "response-time":
        return f"{event.elapsed_ms:.3f}"
    if name == "remote-addr":
        return event.client_ip
    if name == "remote-user":
        return None
    if name == "date":
        return _format_date(event, arg)
    if name == "http-version":
        return event.http_version
    if name in ("referrer", "referer"):
        return event.referrer
    if name == "user-agent":
        return event.user_agent
    if name == "res" and arg:
        if arg.lower() == "content-length":
            return str(event.length)
        return _header(event.response_headers, arg)
    if name == "req" and arg:
        return _header(event.request_headers, arg)
    # unknown tokens stay in the line verbatim
    return f":{name}" + (f"[{arg}]" if arg else "")


def compile_format(fmt: str) -> Formatter:
    """
    Compile a token format string into a formatter.

        compile_format(":method :url :status")(event) → "GET /x 200"

    Empty or missing values render as "-".
    """
    def render(event: TraceEvent) -> str:
        def substitute(match: re.Match) -> str:
            value = _token_value(event, match.group(1), match.group(2))
            return value if value else "-"
        return TOKEN_PATTERN.sub(substitute, fmt)

    return render


def resolve_formatter(formatter: Union[str, Formatter, None], use_color: bool = False) -> Formatter:
    """Preset name, token format or callable → formatter callable."""
    if callable(formatter):
        return formatter
    if formatter is None or formatter == "dev":
        return lambda event: format_dev(event, use_color)
    if formatter in PRESETS:
        return compile_format(PRESETS[formatter])
    return compile_format(formatter)


# =============================================================================
# FILTERS
# =============================================================================

_GLOB_CHARS = set("*?[")


def compile_filters(patterns: Iterable[str]) -> Callable[[str], bool]:
    """
    Patterns → predicate over request paths.

    No patterns means "trace everything".
    """
    patterns = tuple(p for p in patterns if p)
    if not patterns:
        return lambda path: True

    globs = tuple(p for p in patterns if _GLOB_CHARS & set(p))
    prefixes = tuple(p for p in patterns if not _GLOB_CHARS & set(p))

    def matches(path: str) -> bool:
        if prefixes and path.startswith(prefixes):
            return True
        return any(fnmatch.fnmatchcase(path, pattern) for pattern in globs)

    return matches


# =============================================================================
# MIDDLEWARE
# =============================================================================

class TraceMiddleware(Middleware):
    """
    Request tracing middleware.

    Usage:
        pipeline.add(TraceMiddleware())                          # dev format
        pipeline.add(TraceMiddleware("tiny", filters=["/api"]))
        pipeline.add(TraceMiddleware(lambda e: f"{e.status} {e.url}"))

    Logging never breaks a request: a formatter that raises is reported at
    debug level and the response goes out unchanged.
    """

    def __init__(
        self,
        formatter: Union[str, Formatter, None] = "dev",
        filters: Iterable[str] = (),
        use_color: Optional[bool] = None,
        log_level: int = logging.INFO,
    ):
        self.use_color = stream_supports_color() if use_color is None else use_color
        self.formatter = resolve_formatter(formatter, self.use_color)
        self.filters = tuple(filters)
        self._should_trace = compile_filters(self.filters)
        self.log_level = log_level

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        start = time.perf_counter()

        try:
            response = next(request)
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            if self._should_trace(request.path):
                logger.error(
                    f"[TRACE] {request.method} {request.url} failed after {elapsed_ms:.1f}ms "
                    f"- {type(e).__name__}: {e}"
                )
            raise

        elapsed_ms = (time.perf_counter() - start) * 1000

        if self._should_trace(request.path):
            self._emit(request, response, elapsed_ms)
        return response

    def _emit(self, request: HTTPRequest, response: HTTPResponse, elapsed_ms: float):
        try:
            event = build_event(request, response, elapsed_ms)
            line = self.formatter(event)
        except Exception as e:
            logger.debug(f"Trace formatter failed for {request.method} {request.url}: {e}")
            return
        if line:
            logger.log(self.log_level, line)


def build_event(request: HTTPRequest, response: HTTPResponse, elapsed_ms: float) -> TraceEvent:
    length_header = response.get_header("Content-Length")
    try:
        length = int(length_header) if length_header is not None else len(response.body)
    except ValueError:
        length = len(response.body)

    return TraceEvent(
        method=request.method,
        url=request.url,
        path=request.path,
        status=int(response.status),
        source=response.source or "unknown",
        target=response.target,
        elapsed_ms=elapsed_ms,
        length=length,
        client_ip=request.client_ip,
        http_version=request.version.replace("HTTP/", ""),
        referrer=request.get_header("referer"),
        user_agent=request.user_agent,
        request_headers=dict(request.headers),
        response_headers=dict(response.headers),
    )
