"""
Unit tests for the middleware framework and the headers middleware.
"""

import pytest

from devserve.http.response import ResponseBuilder
from devserve.middleware import (
    FunctionMiddleware,
    HeadersMiddleware,
    Middleware,
    MiddlewarePipeline,
    as_middleware,
)


class Recorder(Middleware):
    def __init__(self, label, calls):
        self.label = label
        self.calls = calls

    def __call__(self, request, next):
        self.calls.append(f"{self.label}:in")
        response = next(request)
        self.calls.append(f"{self.label}:out")
        return response


def final(request):
    return ResponseBuilder().text("final").build()


class TestMiddlewarePipeline:
    """Tests for MiddlewarePipeline ordering."""

    def test_onion_order(self, make_request):
        calls = []
        pipeline = MiddlewarePipeline().use(Recorder("a", calls), Recorder("b", calls))

        pipeline.wrap(final)(make_request())

        assert calls == ["a:in", "b:in", "b:out", "a:out"]

    def test_functions_are_wrapped(self, make_request):
        def mock(request, next):
            return ResponseBuilder().text("mocked").source("mock").build()

        pipeline = MiddlewarePipeline().add(mock)
        response = pipeline.wrap(final)(make_request())

        assert response.body == b"mocked"
        assert pipeline.names == ["mock"]
        assert isinstance(list(pipeline)[0], FunctionMiddleware)

    def test_short_circuit_skips_rest(self, make_request):
        calls = []
        pipeline = MiddlewarePipeline()
        pipeline.add(lambda request, next: ResponseBuilder().text("early").build())
        pipeline.add(Recorder("late", calls))

        assert pipeline.wrap(final)(make_request()).body == b"early"
        assert calls == []

    def test_as_middleware_rejects_non_callables(self):
        with pytest.raises(TypeError):
            as_middleware("not middleware")


class TestHeadersMiddleware:
    """Custom headers never overwrite what a handler set."""

    def test_fills_missing_headers(self, make_request):
        middleware = HeadersMiddleware({"X-Frame-Options": "DENY", "Cache-Control": "no-store"})

        response = middleware(make_request(), final)

        assert response.get_header("X-Frame-Options") == "DENY"
        assert response.get_header("Cache-Control") == "no-store"

    def test_does_not_restamp(self, make_request):
        middleware = HeadersMiddleware([("content-type", "application/octet-stream")])

        response = middleware(make_request(), final)

        assert response.get_header("Content-Type") == "text/plain; charset=utf-8"
