"""
Unit tests for request tracing.
"""

import logging

import pytest

from devserve.http.response import ResponseBuilder, SOURCE_PROXY, tag_source
from devserve.middleware.trace import (
    PRESETS,
    TraceEvent,
    TraceMiddleware,
    build_event,
    compile_filters,
    compile_format,
    format_dev,
    status_color,
)


def make_event(**overrides) -> TraceEvent:
    values = dict(
        method="GET",
        url="/api/items?x=1",
        path="/api/items",
        status=200,
        source="proxy",
        target="http://localhost:9000/items?x=1",
        elapsed_ms=12.34,
        length=512,
        client_ip="127.0.0.1",
        user_agent="pytest",
    )
    values.update(overrides)
    return TraceEvent(**values)


class TestFormatters:
    """Tests for the dev format and token formats."""

    def test_dev_format(self):
        line = format_dev(make_event())

        assert line == ("[TRACE] GET /api/items?x=1 → 200 (proxy) +12.3ms 512b"
                        " → http://localhost:9000/items?x=1")

    def test_dev_format_without_target(self):
        line = format_dev(make_event(source="static", target=None))

        assert line.endswith("512b")
        assert "(static)" in line

    def test_dev_format_colors_status(self):
        line = format_dev(make_event(status=404), use_color=True)

        assert "\x1b[33m404\x1b[0m" in line

    def test_status_colors(self):
        assert status_color(503) == 31
        assert status_color(404) == 33
        assert status_color(304) == 36
        assert status_color(200) == 32
        assert status_color(101) is None

    def test_token_format(self):
        render = compile_format(":method :url :status :source :res[content-length] :user-agent")

        assert render(make_event()) == "GET /api/items?x=1 200 proxy 512 pytest"

    def test_missing_values_render_as_dash(self):
        render = compile_format(":referrer :remote-user :req[x-missing]")

        assert render(make_event()) == "- - -"

    def test_unknown_token_kept(self):
        assert compile_format(":method :bogus")(make_event()) == "GET :bogus"

    def test_presets_compile(self):
        for fmt in PRESETS.values():
            assert compile_format(fmt)(make_event())


class TestFilters:
    def test_no_filters_matches_everything(self):
        assert compile_filters(())("/anything")

    def test_prefix_and_glob(self):
        matches = compile_filters(["/api", "*.wasm"])

        assert matches("/api/items")
        assert matches("/pkg/module.wasm")
        assert not matches("/index.html")


class TestTraceMiddleware:
    """Tests for TraceMiddleware."""

    def test_logs_one_line(self, make_request, caplog):
        middleware = TraceMiddleware(use_color=False)
        handler = lambda request: tag_source(ResponseBuilder().text("ok").build(), "static")

        with caplog.at_level(logging.INFO, logger="devserve.trace"):
            middleware(make_request("GET", "/app.js"), handler)

        assert len(caplog.records) == 1
        assert caplog.records[0].getMessage().startswith("[TRACE] GET /app.js → 200 (static)")

    def test_filtered_paths_not_logged(self, make_request, caplog):
        middleware = TraceMiddleware(filters=["/api"], use_color=False)
        handler = lambda request: ResponseBuilder().text("ok").build()

        with caplog.at_level(logging.INFO, logger="devserve.trace"):
            middleware(make_request("GET", "/app.js"), handler)

        assert caplog.records == []

    def test_failing_formatter_never_breaks_request(self, make_request, caplog):
        def broken(event):
            raise RuntimeError("boom")

        middleware = TraceMiddleware(broken, use_color=False)
        response = ResponseBuilder().text("ok").build()

        with caplog.at_level(logging.DEBUG, logger="devserve.trace"):
            result = middleware(make_request(), lambda request: response)

        assert result is response
        records = [r for r in caplog.records if r.name == "devserve.trace"]
        assert [r.levelno for r in records] == [logging.DEBUG]
        assert "boom" in records[0].getMessage()

    def test_handler_error_logged_and_raised(self, make_request, caplog):
        def explode(request):
            raise ValueError("bad mock")

        middleware = TraceMiddleware(use_color=False)

        with caplog.at_level(logging.ERROR, logger="devserve.trace"):
            with pytest.raises(ValueError):
                middleware(make_request("POST", "/api/x"), explode)

        assert "bad mock" in caplog.text

    def test_build_event(self, make_request):
        request = make_request("GET", "/api/items?x=1", headers={"Referer": "http://localhost/"})
        response = tag_source(ResponseBuilder().text("abc").build(), SOURCE_PROXY, "http://t/items")

        event = build_event(request, response, 3.0)

        assert event.url == "/api/items?x=1"
        assert event.path == "/api/items"
        assert event.length == 3
        assert event.source == "proxy"
        assert event.target == "http://t/items"
        assert event.referrer == "http://localhost/"
        assert event.http_version == "1.1"
