"""
=============================================================================
HANDLERS MODULE
=============================================================================

The content stages of the pipeline. Each one is a Middleware: it answers
the requests it owns and passes everything else to the next stage.

    ┌───────────────────┬────────────────────────────────────────────────┐
    │ Handler           │ Answers                                        │
    ├───────────────────┼────────────────────────────────────────────────┤
    │ StaticFileHandler │ files under the content directories            │
    │ ProxyRouter       │ paths under a proxy prefix (via a Transport)   │
    │ FallbackRouter    │ HTML navigations nothing else answered         │
    │ DevToolsWorkspace │ Chrome's workspace descriptor (user middleware)│
    └───────────────────┴────────────────────────────────────────────────┘

=============================================================================
"""

from .static import StaticFileHandler, file_response
from .proxy import (
    ProxyRouter,
    Transport,
    HTTPClientTransport,
    OutboundRequest,
    UpstreamResponse,
    UpstreamError,
)
from .fallback import FallbackRouter
from .devtools import DevToolsWorkspace

__all__ = [
    "StaticFileHandler",
    "file_response",
    "ProxyRouter",
    "Transport",
    "HTTPClientTransport",
    "OutboundRequest",
    "UpstreamResponse",
    "UpstreamError",
    "FallbackRouter",
    "DevToolsWorkspace",
]
