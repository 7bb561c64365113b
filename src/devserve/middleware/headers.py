"""
Custom response headers.

Adds the configured headers to every response, without overriding a
header a handler already set (compared case-insensitively):

    headers = {"Access-Control-Allow-Origin": "*", "Cache-Control": "max-age=60"}

    static file          → gets both; its own "Cache-Control: no-cache" wins
    proxied response     → upstream's headers win, the rest are added
"""

from typing import Iterable, Mapping, Tuple, Union

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


class HeadersMiddleware(Middleware):
    """Fill in configured headers where the response lacks them."""

    def __init__(self, headers: Union[Mapping[str, str], Iterable[Tuple[str, str]]]):
        items = headers.items() if isinstance(headers, Mapping) else headers
        self.headers = tuple((str(name), str(value)) for name, value in items)

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        response = next(request)
        for name, value in self.headers:
            if not response.has_header(name):
                response.set_header(name, value)
        return response
