"""
=============================================================================
MIDDLEWARE BASE
=============================================================================

Every stage of the request pipeline is a middleware: a callable that gets
the request and the NEXT stage, and returns a response.

=============================================================================
THE MIDDLEWARE CONTRACT
=============================================================================

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse

A middleware either ANSWERS (returns its own response, short-circuiting
the rest) or FALLS THROUGH (returns next(request)). The static server,
proxy router and SPA fallback are all middleware; each one falls through
when the request is not theirs:

    request ─► static ──(no such file)──► proxy ──(no route)──► fallback ─► 404
                  │                          │                      │
               file bytes              upstream bytes          index.html

User middleware (mocks, auth stubs, DevTools endpoint) plugs into the same
contract. Plain functions `(request, next) -> response` are accepted and
wrapped in FunctionMiddleware.

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Union
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


NextHandler = Callable[[HTTPRequest], HTTPResponse]


class Middleware(ABC):
    """
    Abstract base class for middleware.

        class PoweredBy(Middleware):
            def __call__(self, request, next):
                response = next(request)
                response.set_header("X-Powered-By", "devserve")
                return response
    """

    @abstractmethod
    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        """
        Process the request.

        Args:
            request: The incoming HTTP request.
            next: The rest of the chain. Call it to fall through.

        Returns:
            Either this middleware's own response or next(request).
        """

    @property
    def name(self) -> str:
        return self.__class__.__name__


class FunctionMiddleware(Middleware):
    """
    Wraps a plain function as middleware.

        def api_mock(request, next):
            if request.path == "/api/status":
                return tag_source(ok({"up": True}), "mock")
            return next(request)

        pipeline.add(FunctionMiddleware(api_mock))
    """

    def __init__(
        self,
        func: Callable[[HTTPRequest, NextHandler], HTTPResponse],
        name: Optional[str] = None,
    ):
        self._func = func
        self._name = name or getattr(func, "__name__", type(func).__name__)

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        return self._func(request, next)

    @property
    def func(self) -> Callable:
        return self._func

    @property
    def name(self) -> str:
        return self._name


def function_middleware(
    func: Callable[[HTTPRequest, NextHandler], HTTPResponse]
) -> FunctionMiddleware:
    """Decorator form of FunctionMiddleware."""
    return FunctionMiddleware(func)


def as_middleware(entry: Union[Middleware, Callable]) -> Middleware:
    """
    Coerce a user middleware entry.

    Middleware instances pass through; any other callable is treated as a
    `(request, next)` function.

    Raises:
        TypeError: entry is not callable.
    """
    if isinstance(entry, Middleware):
        return entry
    if callable(entry):
        return FunctionMiddleware(entry)
    raise TypeError(f"Middleware must be callable, got {type(entry).__name__}")


class MiddlewarePipeline:
    """
    Chains middleware around a final handler.

    =========================================================================
    ONION ORDER
    =========================================================================

        pipeline.add(trace)      # first added = outermost
        pipeline.add(headers)
        pipeline.add(static)     # last added = closest to the handler

            ┌ trace ─────────────────────────────────────┐
            │  ┌ headers ─────────────────────────────┐  │
            │  │  ┌ static ───────────────────────┐   │  │
            │  │  │         final handler         │   │  │
            │  │  └───────────────────────────────┘   │  │
            │  └──────────────────────────────────────┘  │
            └────────────────────────────────────────────┘

    Requests flow inward in the order added; responses flow back outward.
    =========================================================================
    """

    def __init__(self):
        self._middleware: List[Middleware] = []

    def add(self, middleware: Union[Middleware, Callable]) -> "MiddlewarePipeline":
        """Append a middleware (or `(request, next)` function)."""
        middleware = as_middleware(middleware)
        self._middleware.append(middleware)
        logger.debug(f"Added middleware: {middleware.name}")
        return self

    def use(self, *middleware: Union[Middleware, Callable]) -> "MiddlewarePipeline":
        for mw in middleware:
            self.add(mw)
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        """
        Build the chain around `handler`.

        Wrapping happens in REVERSE so the first-added middleware ends up
        outermost:  MW1 → MW2 → MW3 → handler
        """
        current = handler
        for middleware in reversed(self._middleware):
            current = self._create_wrapped_handler(middleware, current)
        return current

    def _create_wrapped_handler(
        self,
        middleware: Middleware,
        next_handler: NextHandler,
    ) -> NextHandler:
        def wrapped(request: HTTPRequest) -> HTTPResponse:
            return middleware(request, next_handler)

        wrapped.__name__ = f"{middleware.name}_handler"
        return wrapped

    @property
    def names(self) -> List[str]:
        return [mw.name for mw in self._middleware]

    def __len__(self) -> int:
        return len(self._middleware)

    def __iter__(self):
        return iter(self._middleware)
