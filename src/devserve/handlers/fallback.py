"""
=============================================================================
SPA HISTORY FALLBACK
=============================================================================

Single-page apps route on the client: /settings/profile exists only in the
browser's history API, not on disk. When the user reloads that URL, the
server must answer with the app shell (index.html) instead of a 404.

=============================================================================
WHEN DOES THE FALLBACK ANSWER?
=============================================================================

Only after static files and the proxy passed, and only if ALL hold:

    1. method is GET or HEAD
    2. the client prefers HTML (a navigation, not fetch("/data.json"))
    3. with routes configured, the path is one of them

    GET /settings/profile   Accept: text/html,...          → index.html
    GET /missing.js         Accept: */*                    → index.html *
    GET /missing.json       Accept: application/json       → 404
    POST /settings          Accept: text/html              → 404

    * a missing Accept header or */* counts as HTML-acceptable; restrict
      with routes when that matters.

Routes are exact paths, or fnmatch globs when they contain * ? [ ]:

    routes = ["/", "/about", "/users/*"]

=============================================================================
"""

import fnmatch
import logging
from typing import Optional

from ..config import FallbackConfig
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, SOURCE_FALLBACK
from ..http.mime_types import MimeResolver
from ..middleware.base import Middleware, NextHandler
from .static import file_response


logger = logging.getLogger(__name__)


_GLOB_CHARS = set("*?[")


def route_matches(route: str, path: str) -> bool:
    if _GLOB_CHARS & set(route):
        return fnmatch.fnmatchcase(path, route)
    return path == route


class FallbackRouter(Middleware):
    """
    Serve the fallback file for HTML navigations nothing else answered.

    Usage:
        pipeline.add(FallbackRouter(config.fallback, MimeResolver(config.mime_types)))
    """

    def __init__(self, fallback: FallbackConfig, mime: Optional[MimeResolver] = None):
        self.fallback = fallback
        self.mime = mime or MimeResolver()

    def applies_to(self, request: HTTPRequest) -> bool:
        if request.method not in ("GET", "HEAD"):
            return False
        if not request.prefers_html():
            return False
        routes = self.fallback.routes
        if routes:
            return any(route_matches(route, request.path) for route in routes)
        return True

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if not self.applies_to(request):
            return next(request)

        try:
            return file_response(self.fallback.file_path, request, self.mime, SOURCE_FALLBACK)
        except FileNotFoundError:
            logger.warning(f"Fallback file {self.fallback.file_path} no longer exists")
            return next(request)
        except OSError as e:
            logger.error(f"Error reading fallback file {self.fallback.file_path}: {e}")
            return next(request)
