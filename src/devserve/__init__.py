"""
=============================================================================
DEVSERVE - Development HTTP Server
=============================================================================

Serves a frontend build during development: static files from one or more
folders, an API proxy to a backend, a history fallback for single-page
apps, and a request trace, all on one origin.

=============================================================================
HOW A REQUEST FLOWS
=============================================================================

    browser ──► SocketServer (accept thread)
                    │
                    ▼
                ThreadPool worker ── Connection (keep-alive loop)
                    │
                    ▼
                RequestParser ──► pipeline:
                                    trace
                                    custom headers
                                    user middleware (mocks, DevTools)
                                    static files
                                    proxy ──► backend
                                    SPA fallback
                                    404

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    devserve/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m devserve)
    ├── config.py            # Option normalizer, ServeConfig
    ├── controller.py        # ServingController, BuildHook
    ├── lifecycle.py         # LifecycleManager, ServerInstance
    ├── pipeline.py          # Fixed-order pipeline assembly
    ├── log.py               # Leveled, queued, colored logging
    ├── core/                # Sockets, connections, worker pool
    ├── http/                # Request/response model, MIME types
    ├── middleware/          # Middleware base, trace, headers
    └── handlers/            # Static, proxy, fallback, DevTools

=============================================================================
QUICK START
=============================================================================

    from devserve import create_serving, tag_source, ResponseBuilder

    def mock_user(request, next):
        if request.path == "/api/me":
            return ResponseBuilder().json({"name": "dev"}).source("mock").build()
        return next(request)

    controller = create_serving({
        "content_base": ["dist"],
        "proxy": {"/api": "http://localhost:9000"},
        "fallback": True,
        "trace": True,
        "middleware": [mock_user],
    })
    controller.start_server()
    controller.manager.wait()

=============================================================================
"""

__version__ = "1.0.0"

from .config import (
    ConfigError,
    ServeConfig,
    TLSConfigError,
    env_options,
    normalize_options,
)
from .controller import BuildHook, ServingController, create_serving
from .handlers import DevToolsWorkspace
from .http import HTTPRequest, HTTPResponse, ResponseBuilder, tag_source
from .lifecycle import LifecycleManager, LifecycleState, ServerInstance, get_manager
from .middleware import Middleware, TraceEvent
from .pipeline import build_pipeline

__all__ = [
    "__version__",
    # Configuration
    "ServeConfig",
    "ConfigError",
    "TLSConfigError",
    "normalize_options",
    "env_options",
    # Serving
    "ServingController",
    "create_serving",
    "BuildHook",
    "LifecycleManager",
    "LifecycleState",
    "ServerInstance",
    "get_manager",
    "build_pipeline",
    # Extending
    "Middleware",
    "TraceEvent",
    "DevToolsWorkspace",
    "HTTPRequest",
    "HTTPResponse",
    "ResponseBuilder",
    "tag_source",
]
