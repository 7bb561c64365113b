"""
=============================================================================
MIME TYPE RESOLUTION
=============================================================================

Maps a file extension to the Content-Type a browser needs to see.

=============================================================================
RESOLUTION ORDER
=============================================================================

    request for /pkg/module.wasm
              │
              ▼
    ┌──────────────────────────┐   hit   ┌───────────────────────────────┐
    │ 1. user overrides        │────────►│ "application/wasm"            │
    │    {".wasm": ...}        │         │ (first entry if a list)       │
    └────────────┬─────────────┘         └───────────────────────────────┘
                 │ miss
                 ▼
    ┌──────────────────────────┐   hit
    │ 2. built-in MIME_TYPES   │────────► "text/css", "image/png", ...
    └────────────┬─────────────┘
                 │ miss
                 ▼
         application/octet-stream

Overrides exist because development setups serve odd things: `.wasm`
modules, `.mjs` chunks, `.webmanifest` files, source maps. A browser
refuses to instantiate WebAssembly or run an ES module whose Content-Type
is wrong, so a one-line override in the config has to be enough.

Text types get a `; charset=utf-8` parameter appended by
`content_type()`; binary types never do.
=============================================================================
"""

from pathlib import Path
from typing import Mapping, Optional, Sequence, Union


MIME_TYPES = {
    # Documents and code the browser executes
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".cjs": "text/javascript",
    ".json": "application/json",
    ".map": "application/json",
    ".webmanifest": "application/manifest+json",
    ".xml": "application/xml",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",
    ".wasm": "application/wasm",

    # Images
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".bmp": "image/bmp",

    # Fonts
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".eot": "application/vnd.ms-fontobject",

    # Media
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".m4a": "audio/mp4",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",

    # Downloads
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".gz": "application/gzip",
    ".tar": "application/x-tar",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

_TEXT_APPLICATION_TYPES = {
    "application/json",
    "application/xml",
    "application/javascript",
    "application/manifest+json",
    "image/svg+xml",
}

OverrideValue = Union[str, Sequence[str]]


def _extension(path: Union[str, Path]) -> str:
    return Path(path).suffix.lower()


def get_mime_type(path: Union[str, Path], default: Optional[str] = None) -> str:
    """
    Built-in lookup by extension.

        >>> get_mime_type("style.css")
        'text/css'
        >>> get_mime_type("blob.xyz")
        'application/octet-stream'
    """
    return MIME_TYPES.get(_extension(path), default or DEFAULT_MIME_TYPE)


def is_text_type(mime_type: str) -> bool:
    """True for types that should carry a charset parameter."""
    mime_type = mime_type.split(";", 1)[0].strip().lower()
    if mime_type.startswith("text/"):
        return True
    return mime_type in _TEXT_APPLICATION_TYPES or mime_type.endswith("+json")


def with_charset(mime_type: str, charset: str = "utf-8") -> str:
    """Append a charset to text types that do not already declare one."""
    if "charset=" in mime_type.lower() or not is_text_type(mime_type):
        return mime_type
    return f"{mime_type}; charset={charset}"


def get_content_type(path: Union[str, Path], charset: str = "utf-8") -> str:
    """Content-Type header value using only the built-in table."""
    return with_charset(get_mime_type(path), charset)


class MimeResolver:
    """
    Extension → content type, with user overrides consulted first.

    Usage:
        mime = MimeResolver({".wasm": "application/wasm",
                             ".glsl": ["x-shader/x-fragment", "text/plain"]})
        mime.mime_type("module.wasm")     # application/wasm
        mime.mime_type("frag.glsl")       # x-shader/x-fragment
        mime.content_type("index.html")   # text/html; charset=utf-8
    """

    def __init__(self, overrides: Optional[Mapping[str, OverrideValue]] = None):
        self._overrides = {}
        for ext, value in (overrides or {}).items():
            chosen = value if isinstance(value, str) else next(iter(value), None)
            if chosen:
                self._overrides[ext.lower()] = chosen

    @property
    def overrides(self) -> dict:
        return dict(self._overrides)

    def mime_type(self, path: Union[str, Path]) -> str:
        ext = _extension(path)
        if ext in self._overrides:
            return self._overrides[ext]
        return get_mime_type(path)

    def content_type(self, path: Union[str, Path], charset: str = "utf-8") -> str:
        return with_charset(self.mime_type(path), charset)
