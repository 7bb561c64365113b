"""
=============================================================================
DEVSERVE CLI ENTRY POINT
=============================================================================

    # Serve the current directory on http://localhost:10001
    python -m devserve

    # Use a config file
    python -m devserve --config devserve.config.py

    # Override port/host, open the browser
    python -m devserve -p 3000 -H 0.0.0.0 --open

=============================================================================
WHERE OPTIONS COME FROM
=============================================================================

    defaults  <  config file  <  environment  <  CLI flags

Without --config, the current directory is searched for:

    devserve.config.py     module exposing `config` (or `CONFIG`)
    devserve.config.json   a JSON object

A Python config can hold what JSON cannot: middleware functions, a
trace formatter, an on_listening callback.

    # devserve.config.py
    from devserve import DevToolsWorkspace

    config = {
        "content_base": ["dist", "public"],
        "proxy": {"/api": {"target": "http://localhost:9000", "strip_prefix": True}},
        "fallback": True,
        "trace": {"format": "dev", "filters": ["/api"]},
        "middleware": [DevToolsWorkspace()],
    }

=============================================================================
"""

import argparse
import importlib.util
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from . import __version__
from .config import ConfigError, env_options
from .controller import ServingController
from .lifecycle import get_manager
from .log import setup_logging, shutdown_logging


logger = logging.getLogger("devserve")


DEFAULT_CONFIG_FILES = ("devserve.config.py", "devserve.config.json")


class ConfigFileNotFound(FileNotFoundError):
    def __init__(self, path: str):
        super().__init__(f'Config file not found at "{path}"')
        self.path = path


def load_config_file(path: str) -> Dict[str, Any]:
    """
    Read options from a .py or .json config file.

    Raises:
        ConfigFileNotFound: `path` does not exist.
        ConfigError: The file does not hold an option mapping.
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise ConfigFileNotFound(path)

    if file_path.suffix == ".json":
        try:
            options = json.loads(file_path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    else:
        spec = importlib.util.spec_from_file_location("devserve_user_config", file_path)
        if spec is None or spec.loader is None:
            raise ConfigError(f"Cannot load config module {path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        options = getattr(module, "config", None)
        if options is None:
            options = getattr(module, "CONFIG", None)

    if not isinstance(options, dict):
        raise ConfigError(f"{path} must provide an option mapping")
    logger.debug(f"Loaded options from {file_path.resolve()}")
    return options


def find_config_file(cwd: Optional[str] = None) -> Optional[str]:
    base = Path(cwd or os.getcwd())
    for name in DEFAULT_CONFIG_FILES:
        candidate = base / name
        if candidate.is_file():
            return str(candidate)
    return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devserve",
        description="Development HTTP server: static files, API proxy, SPA fallback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  devserve                               # Serve the current directory
  devserve -c devserve.config.py         # Use a config file
  devserve -p 3000 --open                # Custom port, open the browser
  DEVSERVE_LOG_LEVEL=debug devserve      # Debug logging via environment
        """
    )

    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Config file (.py or .json); default: devserve.config.py/.json in the cwd"
    )

    # ─────────────────────────────────────────────────────────────────────
    # OVERRIDES
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: 10001)"
    )

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (default: localhost)"
    )

    parser.add_argument(
        "--open",
        action="store_true",
        default=None,
        help="Open the browser once the server is listening"
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["error", "warn", "verbose", "info", "debug"],
        default=None,
        help="Logging level (default: info)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"devserve {__version__}"
    )

    return parser


def cli_options(args: argparse.Namespace) -> Dict[str, Any]:
    """Only the flags actually given."""
    options: Dict[str, Any] = {}
    if args.port is not None:
        options["port"] = args.port
    if args.host is not None:
        options["host"] = args.host
    if args.open:
        options["open"] = True
    if args.log_level is not None:
        options["log_level"] = args.log_level
    return options


def resolve_options(args: argparse.Namespace, environ=None, cwd: Optional[str] = None) -> Dict[str, Any]:
    """
    Merge config file, environment and CLI flags (later wins).

    Raises:
        ConfigFileNotFound: --config names a missing file.
    """
    path = args.config or find_config_file(cwd)
    file_options = load_config_file(path) if path else {}

    options: Dict[str, Any] = dict(file_options)
    options.update(env_options(environ))
    options.update(cli_options(args))
    return options


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        options = resolve_options(args)
    except ConfigFileNotFound as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(
        level=options.get("log_level") or options.get("logLevel") or "info",
        log_file=options.get("log_file") or options.get("logFile"),
    )

    try:
        controller = ServingController(options)
        manager = controller.manager
        controller.start_server()

        if controller.config.verbose:
            controller.print_resolve_paths()
        if controller.config.open:
            controller.open_page()

        manager.wait()
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        get_manager().stop()
    finally:
        shutdown_logging()


if __name__ == "__main__":
    main()
