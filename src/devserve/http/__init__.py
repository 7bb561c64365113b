"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

Translates raw bytes from TCP into structured HTTP messages and back.

    bytes ──► RequestParser ──► HTTPRequest ──► pipeline
                                                   │
    bytes ◄── HTTPResponse.to_bytes() ◄────────────┘

    request.py      → HTTPRequest, RequestParser, Accept negotiation
    response.py     → HTTPResponse, ResponseBuilder, tag_source
    status_codes.py → HTTPStatus, reason_phrase
    mime_types.py   → MimeResolver and the built-in extension table

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, parse_accept
from .response import (
    HTTPResponse,
    ResponseBuilder,
    tag_source,
    format_http_date,
    ok,
    redirect,
    error_response,
    bad_request,
    forbidden,
    not_found,
    internal_error,
    bad_gateway,
    SOURCE_STATIC,
    SOURCE_PROXY,
    SOURCE_FALLBACK,
    SOURCE_MOCK,
    SOURCE_UNKNOWN,
)
from .status_codes import HTTPStatus, reason_phrase
from .mime_types import MimeResolver, get_mime_type, get_content_type, is_text_type

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_accept",
    "HTTPResponse",
    "ResponseBuilder",
    "tag_source",
    "format_http_date",
    "ok",
    "redirect",
    "error_response",
    "bad_request",
    "forbidden",
    "not_found",
    "internal_error",
    "bad_gateway",
    "SOURCE_STATIC",
    "SOURCE_PROXY",
    "SOURCE_FALLBACK",
    "SOURCE_MOCK",
    "SOURCE_UNKNOWN",
    "HTTPStatus",
    "reason_phrase",
    "MimeResolver",
    "get_mime_type",
    "get_content_type",
    "is_text_type",
]
