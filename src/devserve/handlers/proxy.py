"""
=============================================================================
PROXY ROUTER
=============================================================================

Forwards requests under configured prefixes to a backend server, so the
frontend and its API share one origin during development.

=============================================================================
ROUTE MATCHING
=============================================================================

    proxy = {"/api": {"target": "http://localhost:9000", "strip_prefix": True},
             "/api/auth": "http://localhost:9100"}

    /api/items        → "/api"        (segment boundary after /api)
    /api/auth/login   → "/api/auth"   (longest prefix wins)
    /apiary           → no match      ("/api" must end at a "/" boundary)
    /                 → no match      (unless a "/" route exists)

Among routes with the SAME prefix length the first one declared wins.

=============================================================================
PATH REWRITING
=============================================================================

                      strip_prefix=False            strip_prefix=True
    /api/items?x=1    http://t:9000/api/items?x=1   http://t:9000/items?x=1
    /api              http://t:9000/api             http://t:9000/

    upstream_url = target.rstrip("/") + "/" + forwarded.lstrip("/")

Routes match the DECODED path, like static files do, but the RAW request
path is forwarded, so percent-escapes (%2F, %20) reach the backend exactly
as the browser sent them.

=============================================================================
FORWARDING HEADERS
=============================================================================

    Host:               target's host:port  (the backend sees its own origin)
    X-Forwarded-For:    <existing>, <client ip>
    X-Forwarded-Host:   original Host header
    X-Forwarded-Proto:  http / https of the dev server listener
    Forwarded:          <existing>, for=<client>;proto=<scheme>;host="<host>"

Hop-by-hop headers (Connection, Keep-Alive, Transfer-Encoding, ...) apply
to ONE connection and are dropped in both directions.

=============================================================================
FAILURE
=============================================================================

Backend down, refused, reset or timed out → 502 Bad Gateway, tagged as a
proxy response with its target, and an error in the log. No retries: the
developer should see the failure immediately.

=============================================================================
"""

import http.client
import ipaddress
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlsplit

from ..config import ProxyRoute
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, SOURCE_PROXY, bad_gateway
from ..middleware.base import Middleware, NextHandler


logger = logging.getLogger(__name__)


HOP_BY_HOP_HEADERS = {
    "connection", "proxy-connection", "keep-alive", "transfer-encoding",
    "te", "trailer", "upgrade", "proxy-authorization", "proxy-authenticate",
}

# Recomputed for the new hop
SKIP_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length"}
SKIP_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-length"}


class UpstreamError(Exception):
    """The upstream could not be reached or returned no usable response."""

    def __init__(self, url: str, cause: Exception):
        super().__init__(f"{url}: {type(cause).__name__}: {cause}")
        self.url = url
        self.cause = cause


@dataclass
class OutboundRequest:
    method: str
    url: str
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    timeout: Optional[float] = None


@dataclass
class UpstreamResponse:
    status: int
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    reason: str = ""


class Transport(ABC):
    """Sends an OutboundRequest and returns the upstream's answer."""

    @abstractmethod
    def forward(self, request: OutboundRequest) -> UpstreamResponse:
        """
        Raises:
            UpstreamError: Connect, send or read failed.
        """


class HTTPClientTransport(Transport):
    """
    Transport over http.client, one connection per request.

    No pooling: a dev backend restarts constantly, and a fresh connection
    never hits a socket the backend already closed.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def forward(self, request: OutboundRequest) -> UpstreamResponse:
        parts = urlsplit(request.url)
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"

        conn_class = http.client.HTTPSConnection if parts.scheme == "https" else http.client.HTTPConnection
        timeout = request.timeout if request.timeout is not None else self.timeout
        kwargs = {"timeout": timeout} if timeout is not None else {}
        conn = conn_class(parts.hostname, parts.port, **kwargs)
        try:
            conn.request(
                request.method,
                path,
                body=request.body or None,
                headers=dict(_merge_headers(request.headers)),
            )
            resp = conn.getresponse()
            body = resp.read()
            return UpstreamResponse(
                status=resp.status,
                headers=list(resp.getheaders()),
                body=body,
                reason=resp.reason,
            )
        except (OSError, http.client.HTTPException) as e:
            raise UpstreamError(request.url, e) from e
        finally:
            conn.close()


def _merge_headers(headers: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Join repeated names with ", " so they fit a dict."""
    merged: dict = {}
    order: List[str] = []
    for name, value in headers:
        key = name.lower()
        if key in merged:
            merged[key] = (merged[key][0], f"{merged[key][1]}, {value}")
        else:
            merged[key] = (name, value)
            order.append(key)
    return [merged[key] for key in order]


# =============================================================================
# ROUTING
# =============================================================================

def prefix_matches(prefix: str, path: str) -> bool:
    """Segment-boundary prefix test."""
    if prefix == "/":
        return True
    return path == prefix or path.startswith(prefix + "/")


def match_route(routes: Sequence[ProxyRoute], path: str) -> Optional[ProxyRoute]:
    """
    Longest matching prefix; first declared among equals.

    Ties keep the earlier route because only a strictly longer prefix
    replaces the current best.
    """
    best: Optional[ProxyRoute] = None
    for route in routes:
        if prefix_matches(route.prefix, path):
            if best is None or len(route.prefix) > len(best.prefix):
                best = route
    return best


def raw_prefix_length(prefix: str, raw_path: str) -> int:
    """
    Length of the leading part of `raw_path` that decodes to `prefix`.

    Routes match the decoded path, but the raw one is forwarded:

        prefix "/api", raw "/ap%69/items"  ──►  6  (remainder "/items")
    """
    if raw_path.startswith(prefix):
        return len(prefix)
    for end in range(len(prefix), len(raw_path) + 1):
        if unquote(raw_path[:end]) == prefix:
            return end
    return len(prefix)


def rewrite_path(route: ProxyRoute, raw_path: str) -> str:
    """Raw path to forward: the prefix removed when strip_prefix is set."""
    if not route.strip_prefix or route.prefix == "/":
        return raw_path
    stripped = raw_path[raw_prefix_length(route.prefix, raw_path):]
    return stripped or "/"


def upstream_url(target: str, forwarded: str) -> str:
    return target.rstrip("/") + "/" + forwarded.lstrip("/")


def _forwarded_node(ip: str) -> str:
    """RFC 7239 node: IPv6 addresses are bracketed and quoted."""
    if not ip:
        return "unknown"
    try:
        if ipaddress.ip_address(ip.split("%", 1)[0]).version == 6:
            return f'"[{ip}]"'
    except ValueError:
        return f'"{ip}"' if ":" in ip else ip
    return ip


def _quoted(value: str) -> str:
    """RFC 7239 value: a token as is, anything else (host:port) quoted."""
    if value and all(c.isalnum() or c in "!#$%&'*+-.^_`|~" for c in value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def forwarding_headers(request: HTTPRequest, target_netloc: str, scheme: str) -> List[Tuple[str, str]]:
    """
    Outbound header list: the client's headers minus hop-by-hop ones,
    plus Host and the X-Forwarded-* / Forwarded family.
    """
    connection_tokens = {
        token.strip().lower()
        for token in request.get_header("connection").split(",")
        if token.strip()
    }

    headers: List[Tuple[str, str]] = [("Host", target_netloc)]
    for name, value in request.headers.items():
        if name in SKIP_REQUEST_HEADERS or name in connection_tokens:
            continue
        if name in ("x-forwarded-for", "x-forwarded-host", "x-forwarded-proto", "forwarded"):
            continue
        headers.append((name, value))

    client_ip = request.client_ip
    original_host = request.host

    xff = request.get_header("x-forwarded-for")
    headers.append(("X-Forwarded-For", f"{xff}, {client_ip}" if xff else client_ip))
    if original_host:
        headers.append(("X-Forwarded-Host", original_host))
    headers.append(("X-Forwarded-Proto", scheme))

    element = f"for={_forwarded_node(client_ip)};proto={scheme}"
    if original_host:
        element += f";host={_quoted(original_host)}"
    existing = request.get_header("forwarded")
    headers.append(("Forwarded", f"{existing}, {element}" if existing else element))
    return headers


# =============================================================================
# MIDDLEWARE
# =============================================================================

class ProxyRouter(Middleware):
    """
    Proxy middleware.

    Usage:
        router = ProxyRouter(config.proxy, scheme=config.protocol)
        pipeline.add(router)

    Requests under no configured prefix fall through to the next handler.
    """

    def __init__(
        self,
        routes: Iterable[ProxyRoute],
        transport: Optional[Transport] = None,
        scheme: str = "http",
        timeout: Optional[float] = None,
    ):
        self.routes = tuple(routes)
        self.transport = transport or HTTPClientTransport(timeout=timeout)
        self.scheme = scheme

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        route = match_route(self.routes, request.path)
        if route is None:
            return next(request)

        forwarded = rewrite_path(route, request.raw_path)
        if request.query_string:
            forwarded = f"{forwarded}?{request.query_string}"
        url = upstream_url(route.target, forwarded)

        outbound = OutboundRequest(
            method=request.method,
            url=url,
            headers=forwarding_headers(request, urlsplit(route.target).netloc, self.scheme),
            body=request.body,
        )

        try:
            upstream = self.transport.forward(outbound)
        except UpstreamError as e:
            logger.error(f"Proxy error: {request.method} {request.url} → {url}: {e.cause}")
            return bad_gateway(target=url)

        return self._relay(upstream, url, keep_length=request.method == "HEAD")

    def _relay(self, upstream: UpstreamResponse, url: str, keep_length: bool = False) -> HTTPResponse:
        response = HTTPResponse(status=upstream.status, body=upstream.body)
        for name, value in upstream.headers:
            lowered = name.lower()
            if lowered == "content-length" and keep_length:
                # HEAD: the length GET would have returned
                response.set_header(name, value)
                continue
            if lowered in SKIP_RESPONSE_HEADERS:
                continue
            if lowered == "set-cookie":
                response.add_header(name, value)
            elif response.has_header(name):
                response.set_header(name, f"{response.get_header(name)}, {value}")
            else:
                response.set_header(name, value)
        response.source = SOURCE_PROXY
        response.target = url
        return response
