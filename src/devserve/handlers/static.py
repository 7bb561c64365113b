"""
=============================================================================
STATIC FILE SERVER
=============================================================================

Serves files from one or more content directories, each under a URL mount.

=============================================================================
MOUNTS
=============================================================================

    content_base = {"dist": "/", "public": "/", "assets/img": "/img"}

    GET /app.js          → dist/app.js      (first "/" mount that has it)
                           public/app.js    (only if dist has no app.js)
    GET /img/logo.png    → assets/img/logo.png
    GET /img             → 301 Location: /img/
    GET /img/            → assets/img/index.html, if there is one
    GET /api/items       → no file anywhere → next handler (proxy)

Mounts are tried in declaration order. A mount claims a path only when the
path equals the mount or continues below it with "/": "/img" does NOT
claim "/imgs/a.png".

=============================================================================
SECURITY: PATH TRAVERSAL
=============================================================================

    GET /..%2F..%2Fetc/passwd

The parser already rejects ".." segments with 400. As a second line of
defense every candidate is resolve()d (following symlinks) and must stay
inside its mount directory, otherwise 403:

    (root / "../../etc/passwd").resolve()  →  /etc/passwd
    /etc/passwd.relative_to(root)          →  ValueError  →  403

=============================================================================
CACHING FOR DEVELOPMENT
=============================================================================

Files change on every save, so responses carry `Cache-Control: no-cache`
plus an ETag built from the nanosecond mtime and the size. The browser
revalidates each time and gets a cheap 304 while nothing changed.

=============================================================================
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from ..config import StaticMount
from ..http.request import HTTPRequest
from ..http.response import (
    HTTPResponse, ResponseBuilder, HTTPStatus, SOURCE_STATIC,
    error_response, forbidden, format_http_date, redirect, tag_source,
)
from ..http.mime_types import MimeResolver
from ..middleware.base import Middleware, NextHandler


logger = logging.getLogger(__name__)


SERVED_METHODS = ("GET", "HEAD")


def etag_matches(if_none_match: str, etag: str) -> bool:
    """If-None-Match may list several tags, weak ones, or "*"."""
    if not if_none_match:
        return False
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == "*" or candidate == etag:
            return True
    return False


def file_response(
    path: Path,
    request: HTTPRequest,
    mime: MimeResolver,
    source: str = SOURCE_STATIC,
    cache_max_age: int = 0,
) -> HTTPResponse:
    """
    Build the response for one file on disk.

    Shared by the static server and the SPA fallback.

        200 with Content-Type / ETag / Last-Modified / Cache-Control
        304 when If-None-Match matches
        403 when the file is not readable

    Raises:
        FileNotFoundError: The file vanished between lookup and read.
    """
    stat = path.stat()
    etag = f'"{stat.st_mtime_ns:x}-{stat.st_size:x}"'
    cache_control = f"max-age={cache_max_age}" if cache_max_age > 0 else "no-cache"

    if etag_matches(request.get_header("if-none-match"), etag):
        return (ResponseBuilder()
            .status(HTTPStatus.NOT_MODIFIED)
            .header("ETag", etag)
            .header("Cache-Control", cache_control)
            .source(source)
            .build())

    try:
        content = path.read_bytes()
    except PermissionError:
        return tag_source(forbidden("Permission denied"), source)

    modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
    return (ResponseBuilder()
        .status(HTTPStatus.OK)
        .file(content, path.name, content_type=mime.content_type(path))
        .header("ETag", etag)
        .header("Last-Modified", format_http_date(modified))
        .header("Cache-Control", cache_control)
        .source(source)
        .build())


def mount_relative(mount: str, path: str) -> Optional[str]:
    """
    Part of `path` below `mount`, or None when the mount does not claim it.

        mount_relative("/", "/a/b.js")       → "a/b.js"
        mount_relative("/img", "/img/x.png") → "x.png"
        mount_relative("/img", "/img")       → ""
        mount_relative("/img", "/imgs/x")    → None
    """
    if mount == "/":
        return path.lstrip("/")
    if path == mount:
        return ""
    if path.startswith(mount + "/"):
        return path[len(mount) + 1:]
    return None


class StaticFileHandler(Middleware):
    """
    Multi-mount static file middleware.

    Usage:
        static = StaticFileHandler(config.content_base, MimeResolver(config.mime_types))
        pipeline.add(static)

    Falls through (calls next) for non-GET/HEAD methods and for paths no
    mount can serve.
    """

    def __init__(
        self,
        mounts: Iterable[StaticMount],
        mime: Optional[MimeResolver] = None,
        index_file: str = "index.html",
        cache_max_age: int = 0,
    ):
        self.mounts = tuple(mounts)
        self.mime = mime or MimeResolver()
        self.index_file = index_file
        self.cache_max_age = cache_max_age

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if request.method not in SERVED_METHODS:
            return next(request)

        for mount in self.mounts:
            response = self._try_mount(mount, request)
            if response is not None:
                return response

        return next(request)

    def _try_mount(self, mount: StaticMount, request: HTTPRequest) -> Optional[HTTPResponse]:
        """Response from this mount, or None to try the next one."""
        relative = mount_relative(mount.mount, request.path)
        if relative is None:
            return None

        root = mount.directory
        try:
            full_path = (root / relative).resolve()
        except (OSError, ValueError):
            # embedded NUL bytes, symlink loops
            return None

        try:
            full_path.relative_to(root)
        except ValueError:
            logger.warning(f"Path traversal attempt: {request.path}")
            return tag_source(forbidden("Access denied"), SOURCE_STATIC)

        if full_path.is_dir():
            if not request.path.endswith("/"):
                location = request.raw_path + "/"
                if request.query_string:
                    location += "?" + request.query_string
                return tag_source(redirect(location, permanent=True), SOURCE_STATIC)
            full_path = full_path / self.index_file

        if not full_path.is_file():
            return None

        try:
            return file_response(full_path, request, self.mime, SOURCE_STATIC, self.cache_max_age)
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Error serving file {full_path}: {e}")
            return tag_source(error_response(HTTPStatus.INTERNAL_SERVER_ERROR), SOURCE_STATIC)
