"""
Unit tests for the proxy router.
"""

import logging
from typing import List

from devserve.config import ProxyRoute
from devserve.handlers.proxy import (
    OutboundRequest,
    ProxyRouter,
    Transport,
    UpstreamError,
    UpstreamResponse,
    forwarding_headers,
    match_route,
    prefix_matches,
    raw_prefix_length,
    rewrite_path,
    upstream_url,
)
from devserve.http.response import HTTPStatus, error_response


def passthrough(request):
    return error_response(HTTPStatus.NOT_FOUND, "next")


class FakeTransport(Transport):
    """Records outbound requests and answers with a canned response."""

    def __init__(self, response: UpstreamResponse = None, error: Exception = None):
        self.sent: List[OutboundRequest] = []
        self.response = response or UpstreamResponse(
            status=200,
            headers=[("Content-Type", "application/json"), ("Content-Length", "2")],
            body=b"{}",
        )
        self.error = error

    def forward(self, request: OutboundRequest) -> UpstreamResponse:
        self.sent.append(request)
        if self.error is not None:
            raise UpstreamError(request.url, self.error)
        return self.response


def header(outbound: OutboundRequest, name: str):
    values = [value for key, value in outbound.headers if key.lower() == name.lower()]
    return values[0] if values else None


class TestRouteMatching:
    """Tests for prefix selection."""

    def test_segment_boundary(self):
        assert prefix_matches("/api", "/api")
        assert prefix_matches("/api", "/api/items")
        assert not prefix_matches("/api", "/apiary")
        assert prefix_matches("/", "/anything")

    def test_longest_prefix_wins(self):
        routes = [ProxyRoute("/api", "http://a"), ProxyRoute("/api/auth", "http://b")]

        assert match_route(routes, "/api/auth/login").target == "http://b"
        assert match_route(routes, "/api/items").target == "http://a"
        assert match_route(routes, "/static/app.js") is None

    def test_first_declared_wins_on_tie(self):
        routes = [ProxyRoute("/api", "http://first"), ProxyRoute("/api", "http://second")]

        assert match_route(routes, "/api/x").target == "http://first"


class TestRewriting:
    def test_no_strip(self):
        route = ProxyRoute("/api", "http://localhost:9000")

        assert rewrite_path(route, "/api/items") == "/api/items"

    def test_strip(self):
        route = ProxyRoute("/api", "http://localhost:9000", strip_prefix=True)

        assert rewrite_path(route, "/api/items") == "/items"
        assert rewrite_path(route, "/api") == "/"

    def test_strip_encoded_prefix(self):
        route = ProxyRoute("/api", "http://localhost:9000", strip_prefix=True)

        assert raw_prefix_length("/api", "/ap%69/items") == 6
        assert rewrite_path(route, "/ap%69/a%20b") == "/a%20b"

    def test_upstream_url_joins_single_slash(self):
        assert upstream_url("http://localhost:9000/", "/items") == "http://localhost:9000/items"
        assert upstream_url("http://localhost:9000/v1", "items") == "http://localhost:9000/v1/items"


class TestForwardingHeaders:
    """Tests for Host and the X-Forwarded-* family."""

    def test_headers_added(self, make_request):
        request = make_request("GET", "/api/items", headers={
            "Connection": "keep-alive, X-Secret",
            "X-Secret": "drop me",
            "Accept": "application/json",
        })

        headers = dict(forwarding_headers(request, "localhost:9000", "http"))

        assert headers["Host"] == "localhost:9000"
        assert headers["X-Forwarded-For"] == "127.0.0.1"
        assert headers["X-Forwarded-Host"] == "localhost:10001"
        assert headers["X-Forwarded-Proto"] == "http"
        assert headers["Forwarded"] == 'for=127.0.0.1;proto=http;host="localhost:10001"'
        assert headers["accept"] == "application/json"
        assert "connection" not in headers
        assert "x-secret" not in headers

    def test_existing_chain_appended(self, make_request):
        request = make_request("GET", "/api", headers={
            "X-Forwarded-For": "10.0.0.1",
            "Forwarded": "for=10.0.0.1",
        })

        headers = dict(forwarding_headers(request, "t:1", "https"))

        assert headers["X-Forwarded-For"] == "10.0.0.1, 127.0.0.1"
        assert headers["Forwarded"].startswith("for=10.0.0.1, for=127.0.0.1;proto=https")

    def test_ipv6_client_quoted(self, make_request):
        request = make_request("GET", "/api", client=("::1", 5000))

        headers = dict(forwarding_headers(request, "t:1", "http"))

        assert headers["Forwarded"].startswith('for="[::1]"')


class TestProxyRouter:
    """Tests for ProxyRouter end to end with a fake transport."""

    def test_strip_prefix_scenario(self, make_request):
        transport = FakeTransport()
        router = ProxyRouter(
            [ProxyRoute("/api", "http://localhost:9000", strip_prefix=True)],
            transport=transport,
        )

        response = router(make_request("GET", "/api/items"), passthrough)

        assert transport.sent[0].url == "http://localhost:9000/items"
        assert transport.sent[0].method == "GET"
        assert response.status == 200
        assert response.body == b"{}"
        assert response.source == "proxy"
        assert response.target == "http://localhost:9000/items"

    def test_query_and_escapes_preserved(self, make_request):
        transport = FakeTransport()
        router = ProxyRouter([ProxyRoute("/api", "http://localhost:9000")], transport=transport)

        router(make_request("GET", "/api/a%2Fb?q=1&r=x%20y"), passthrough)

        assert transport.sent[0].url == "http://localhost:9000/api/a%2Fb?q=1&r=x%20y"

    def test_body_forwarded(self, make_request):
        transport = FakeTransport()
        router = ProxyRouter([ProxyRoute("/api", "http://localhost:9000")], transport=transport)

        router(make_request("POST", "/api/items", body=b'{"a": 1}'), passthrough)

        assert transport.sent[0].body == b'{"a": 1}'
        assert header(transport.sent[0], "content-length") is None

    def test_encoded_path_matches_decoded_prefix(self, make_request):
        transport = FakeTransport()
        router = ProxyRouter(
            [ProxyRoute("/api", "http://localhost:9000", strip_prefix=True)],
            transport=transport,
        )

        response = router(make_request("GET", "/ap%69/items?x=1"), passthrough)

        assert response.source == "proxy"
        assert transport.sent[0].url == "http://localhost:9000/items?x=1"

    def test_unmatched_falls_through(self, make_request):
        transport = FakeTransport()
        router = ProxyRouter([ProxyRoute("/api", "http://localhost:9000")], transport=transport)

        response = router(make_request("GET", "/app.js"), passthrough)

        assert response.body == b"next"
        assert transport.sent == []

    def test_upstream_failure_is_502(self, make_request, caplog):
        transport = FakeTransport(error=ConnectionRefusedError("refused"))
        router = ProxyRouter([ProxyRoute("/api", "http://localhost:9000")], transport=transport)

        with caplog.at_level(logging.ERROR, logger="devserve.handlers.proxy"):
            response = router(make_request("GET", "/api/items"), passthrough)

        assert response.status == HTTPStatus.BAD_GATEWAY
        assert response.source == "proxy"
        assert response.target == "http://localhost:9000/api/items"
        assert "refused" in caplog.text

    def test_response_headers_relayed(self, make_request):
        transport = FakeTransport(UpstreamResponse(
            status=201,
            headers=[
                ("Content-Type", "text/plain"),
                ("Transfer-Encoding", "chunked"),
                ("Set-Cookie", "a=1"),
                ("Set-Cookie", "b=2"),
                ("Vary", "Accept"),
                ("Vary", "Origin"),
            ],
            body=b"created",
        ))
        router = ProxyRouter([ProxyRoute("/api", "http://localhost:9000")], transport=transport)

        response = router(make_request("POST", "/api/items"), passthrough)

        assert response.status == 201
        assert response.get_header("Content-Type") == "text/plain"
        assert not response.has_header("Transfer-Encoding")
        assert response.multi_headers == [("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")]
        assert response.get_header("Vary") == "Accept, Origin"

    def test_head_keeps_upstream_length(self, make_request):
        transport = FakeTransport(UpstreamResponse(
            status=200, headers=[("Content-Length", "1234")], body=b"",
        ))
        router = ProxyRouter([ProxyRoute("/api", "http://localhost:9000")], transport=transport)

        response = router(make_request("HEAD", "/api/file"), passthrough)

        assert response.get_header("Content-Length") == "1234"
