"""
Unit tests for the SPA history fallback.
"""

from pathlib import Path

from devserve.config import FallbackConfig, FallbackKind
from devserve.handlers.fallback import FallbackRouter, route_matches
from devserve.http.response import HTTPStatus, error_response


HTML = "text/html,application/xhtml+xml,*/*;q=0.8"


def passthrough(request):
    return error_response(HTTPStatus.NOT_FOUND, "next")


def router_for(site: Path, routes=()) -> FallbackRouter:
    kind = FallbackKind.ROUTE_LIST if routes else FallbackKind.DEFAULT_FILE
    return FallbackRouter(FallbackConfig(kind, site / "index.html", tuple(routes)))


class TestRouteMatches:
    def test_exact(self):
        assert route_matches("/about", "/about")
        assert not route_matches("/about", "/about/team")

    def test_glob(self):
        assert route_matches("/users/*", "/users/42")
        assert not route_matches("/users/*", "/teams/1")


class TestFallbackRouter:
    """Tests for FallbackRouter."""

    def test_html_navigation_gets_index(self, site, make_request):
        response = router_for(site)(make_request("GET", "/unknown/path", headers={"Accept": HTML}), passthrough)

        assert response.status == HTTPStatus.OK
        assert response.body == (site / "index.html").read_bytes()
        assert response.source == "spa-fallback"
        assert response.get_header("Content-Type").startswith("text/html")

    def test_head_supported(self, site, make_request):
        response = router_for(site)(make_request("HEAD", "/settings", headers={"Accept": HTML}), passthrough)

        assert response.source == "spa-fallback"

    def test_json_request_not_served(self, site, make_request):
        request = make_request("GET", "/data.json", headers={"Accept": "application/json"})

        assert router_for(site)(request, passthrough).body == b"next"

    def test_post_not_served(self, site, make_request):
        request = make_request("POST", "/settings", headers={"Accept": HTML}, body=b"x")

        assert router_for(site)(request, passthrough).body == b"next"

    def test_routes_limit_fallback(self, site, make_request):
        router = router_for(site, routes=["/", "/about", "/users/*"])

        assert router(make_request("GET", "/about", headers={"Accept": HTML}), passthrough).source == "spa-fallback"
        assert router(make_request("GET", "/users/7", headers={"Accept": HTML}), passthrough).source == "spa-fallback"
        assert router(make_request("GET", "/contact", headers={"Accept": HTML}), passthrough).body == b"next"

    def test_file_removed_after_start(self, tmp_path, make_request):
        index = tmp_path / "index.html"
        index.write_text("<p>app</p>")
        router = FallbackRouter(FallbackConfig(FallbackKind.DEFAULT_FILE, index))
        index.unlink()

        response = router(make_request("GET", "/x", headers={"Accept": HTML}), passthrough)

        assert response.body == b"next"
