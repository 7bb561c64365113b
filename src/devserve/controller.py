"""
=============================================================================
SERVING CONTROLLER
=============================================================================

The public face of devserve for code that embeds it: a bundler plugin, a
test fixture, or the CLI.

    controller = create_serving({"content_base": ["dist", "public"],
                                 "proxy": {"/api": "http://localhost:9000"}})
    controller.start_server()
    controller.print_resolve_paths()
    #   http://localhost:10001 -> /home/me/app/dist
    #   http://localhost:10001 -> /home/me/app/public
    controller.open_page()

Options are normalized ONCE, in the constructor. restart() with new
options normalizes again and hands the result to the lifecycle manager,
which decides whether anything actually changed.

=============================================================================
BUNDLER INTEGRATION (BuildHook)
=============================================================================

Watch-mode bundlers rebuild many times per session. The server must start
once and the browser must open once:

    build #1  ──► print paths, open browser
    build #2  ──► (nothing)
    build #3  ──► (nothing)

=============================================================================
"""

import logging
import sys
import webbrowser
from typing import Callable, Mapping, Optional, TextIO

from .config import ServeConfig, normalize_options
from .lifecycle import LifecycleManager, ServerInstance, get_manager
from .log import colorize


logger = logging.getLogger(__name__)


class ServingController:
    """
    Normalized options plus the lifecycle manager serving them.

    Args:
        options: Raw option mapping (see devserve.config).
        manager: Lifecycle manager; the process-wide one by default.
        cwd: Base for relative paths in `options`.
    """

    def __init__(
        self,
        options: Optional[Mapping] = None,
        manager: Optional[LifecycleManager] = None,
        cwd: Optional[str] = None,
    ):
        self.cwd = cwd
        self.config: ServeConfig = normalize_options(options, cwd=cwd)
        self.manager = manager or get_manager()

    @property
    def instance(self) -> Optional[ServerInstance]:
        return self.manager.instance

    @property
    def port(self) -> int:
        """Bound port while listening, configured port otherwise."""
        if self.instance is not None:
            return self.instance.port
        return self.config.port

    @property
    def url(self) -> str:
        return f"{self.config.protocol}://{self.config.host}:{self.port}"

    def start_server(self) -> ServerInstance:
        return self.manager.start(self.config)

    def stop(self):
        self.manager.stop()

    def restart(self, options: Optional[Mapping] = None) -> ServerInstance:
        """Restart, with newly normalized `options` when given."""
        if options is not None:
            self.config = normalize_options(options, cwd=self.cwd)
        return self.manager.restart(self.config)

    def print_resolve_paths(self, stream: Optional[TextIO] = None):
        """One line per content directory: which URL serves which folder."""
        stream = stream or sys.stdout
        url = colorize(self.url, 32)
        for directory in self.config.root_directories:
            print(f"{url} -> {directory}", file=stream)
        stream.flush()

    def page_url(self) -> str:
        page = self.config.open_page or "/"
        if page.startswith(("http://", "https://")):
            return page
        return self.url + "/" + page.lstrip("/")

    def open_page(self, opener: Callable[[str], object] = webbrowser.open) -> str:
        """Open the page in a browser and return the URL opened."""
        url = self.page_url()
        logger.debug(f"Opening {url}")
        opener(url)
        return url


def create_serving(options: Optional[Mapping] = None, **kwargs) -> ServingController:
    return ServingController(options, **kwargs)


class BuildHook:
    """
    Bundler-side hook: starts the server now, reacts to the first build.

    Usage:
        hook = BuildHook(create_serving(options), open_browser=True)
        ...
        bundler.on("build_end", hook.build_complete)
    """

    def __init__(self, controller: ServingController, open_browser: bool = False):
        self.controller = controller
        self.open_browser = open_browser or controller.config.open
        self._first_build = True
        controller.start_server()

    def build_complete(self, stream: Optional[TextIO] = None) -> bool:
        """
        Report a finished build.

        Returns:
            True if this was the first build (paths printed, page opened).
        """
        if not self._first_build:
            return False
        self._first_build = False

        if self.controller.config.verbose:
            self.controller.print_resolve_paths(stream)
        if self.open_browser:
            self.controller.open_page()
        return True
