"""
=============================================================================
PIPELINE ASSEMBLER
=============================================================================

Builds the request handler for one ServeConfig.

=============================================================================
FIXED ORDER
=============================================================================

    request
       │
       ▼
    ┌─────────────────────┐  outermost: times everything below it
    │ 1. trace            │  (only when trace is configured)
    ├─────────────────────┤
    │ 2. custom headers   │  filled in on the way OUT, never over a
    │                     │  header an inner handler already set
    ├─────────────────────┤
    │ 3. user middleware  │  mocks, DevTools endpoint... in declared order
    ├─────────────────────┤
    │ 4. static files     │  every content directory, in mount order
    ├─────────────────────┤
    │ 5. proxy            │  only when routes exist
    ├─────────────────────┤
    │ 6. SPA fallback     │  only when configured
    ├─────────────────────┤
    │ 7. 404              │  "Cannot GET /path"
    └─────────────────────┘

User middleware sits BEFORE static so a mock can shadow a file or an
upstream route; static sits before the proxy so a file on disk always
beats the backend.

The pipeline is built once per configuration. A new configuration gets
a new pipeline (and a new server instance), never an edited one.

=============================================================================
"""

import logging
from typing import Callable, Optional

from .config import ServeConfig
from .handlers.fallback import FallbackRouter
from .handlers.proxy import ProxyRouter, Transport
from .handlers.static import StaticFileHandler
from .http.mime_types import MimeResolver
from .http.request import HTTPRequest
from .http.response import HTTPResponse, HTTPStatus, error_response
from .log import verbose
from .middleware.base import MiddlewarePipeline, as_middleware
from .middleware.headers import HeadersMiddleware
from .middleware.trace import TraceMiddleware


logger = logging.getLogger(__name__)


Handler = Callable[[HTTPRequest], HTTPResponse]


def not_found_handler(request: HTTPRequest) -> HTTPResponse:
    """Final handler: nothing claimed the request."""
    return error_response(HTTPStatus.NOT_FOUND, f"Cannot {request.method} {request.path}")


def build_middleware(
    config: ServeConfig,
    *,
    transport: Optional[Transport] = None,
    use_color: Optional[bool] = None,
) -> MiddlewarePipeline:
    """The ordered MiddlewarePipeline for `config` (without the 404)."""
    pipeline = MiddlewarePipeline()
    mime = MimeResolver(config.mime_types)

    if config.trace is not None:
        pipeline.add(TraceMiddleware(
            formatter=config.trace.formatter,
            filters=config.trace.filters,
            use_color=use_color,
        ))

    if config.headers:
        pipeline.add(HeadersMiddleware(config.headers))

    for entry in config.middleware:
        pipeline.add(as_middleware(entry))

    pipeline.add(StaticFileHandler(config.content_base, mime))
    for mount in config.content_base:
        verbose(logger, f"Serving {mount.directory} at {mount.mount}")

    if config.proxy:
        pipeline.add(ProxyRouter(
            config.proxy,
            transport=transport,
            scheme=config.protocol,
            timeout=config.proxy_timeout,
        ))
        for route in config.proxy:
            strip = " (strip prefix)" if route.strip_prefix else ""
            verbose(logger, f"Proxying {route.prefix} → {route.target}{strip}")

    if config.fallback is not None:
        pipeline.add(FallbackRouter(config.fallback, mime))
        verbose(logger, f"History fallback → {config.fallback.file_path}")

    return pipeline


def build_pipeline(
    config: ServeConfig,
    *,
    transport: Optional[Transport] = None,
    use_color: Optional[bool] = None,
) -> Handler:
    """
    Build the complete request handler for `config`.

    Args:
        config: Normalized configuration.
        transport: Proxy transport override (tests pass a fake).
        use_color: Force trace coloring on/off; default follows the TTY.

    Returns:
        handler(request) -> response
    """
    pipeline = build_middleware(config, transport=transport, use_color=use_color)
    logger.debug(f"Pipeline: {' → '.join(pipeline.names)} → 404")
    return pipeline.wrap(not_found_handler)
