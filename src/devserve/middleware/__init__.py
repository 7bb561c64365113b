"""
=============================================================================
MIDDLEWARE FRAMEWORK
=============================================================================

Middleware runs BETWEEN receiving a request and the handler that answers
it. Each one may answer on its own, pass the request on, or adjust the
response on its way back:

    Incoming Request
         │
         ▼
    ┌──────────────────┐
    │ TraceMiddleware  │ ──► times the request, logs one line
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ HeadersMiddleware│ ──► fills in custom response headers
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ user middleware  │ ──► mocks, DevTools endpoint
    └────────┬─────────┘
             ▼
        static / proxy / fallback / 404
             │
             ▼
    Response flows back UP through the chain

User middleware can be a Middleware subclass or a plain function:

    def mock(request, next):
        if request.path == "/api/ping":
            return ResponseBuilder().text("pong").source("mock").build()
        return next(request)

=============================================================================
"""

from .base import (
    Middleware,
    MiddlewarePipeline,
    FunctionMiddleware,
    function_middleware,
    as_middleware,
)
from .trace import TraceMiddleware, TraceEvent, compile_format, compile_filters
from .headers import HeadersMiddleware

__all__ = [
    # Base classes
    "Middleware",
    "MiddlewarePipeline",
    "FunctionMiddleware",
    "function_middleware",
    "as_middleware",

    # Built-in middleware
    "TraceMiddleware",
    "TraceEvent",
    "compile_format",
    "compile_filters",
    "HeadersMiddleware",
]
