"""
=============================================================================
DIAGNOSTIC LOG SINK
=============================================================================

Every module in devserve writes diagnostics through the standard library
`logging` package:

    logger = logging.getLogger(__name__)
    logger.warning("Proxy entry for /api has no target, ignoring it")

This module configures WHERE those records go and adds the one level the
standard library does not have: VERBOSE.

=============================================================================
LEVELS
=============================================================================

    ┌──────────┬──────────┬─────────┬──────────────────────────────────────┐
    │  Name    │ Priority │ Color   │ Used for                             │
    ├──────────┼──────────┼─────────┼──────────────────────────────────────┤
    │  error   │    40    │ red     │ fatal or degraded conditions         │
    │  warn    │    30    │ yellow  │ malformed options that were ignored  │
    │  verbose │    25    │ green   │ what got mounted/proxied at startup  │
    │  info    │    20    │ cyan    │ lifecycle flow, trace lines          │
    │  debug   │    10    │ blue    │ per-connection details               │
    └──────────┴──────────┴─────────┴──────────────────────────────────────┘

VERBOSE sits between WARNING and INFO: a developer who lowers the level to
"verbose" still sees what the server wired up, without the request noise.

=============================================================================
NON-BLOCKING WRITES
=============================================================================

Handlers never write to the terminal themselves. The root logger gets a
QueueHandler; a QueueListener thread drains the queue into the real
console/file handlers:

    worker thread ──► logger.info() ──► QueueHandler ──► queue.Queue
                                                             │
                                  QueueListener thread ◄─────┘
                                        │
                              ┌─────────┴─────────┐
                              ▼                   ▼
                        StreamHandler        FileHandler
                        (colored text)       (JSON lines)

A slow terminal therefore never stalls a response.

=============================================================================
"""

import json
import logging
import logging.handlers
import queue
import sys
from typing import Optional


VERBOSE = 25
logging.addLevelName(VERBOSE, "VERBOSE")

LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "verbose": VERBOSE,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

DEFAULT_LEVEL = "info"

# ANSI foreground codes per level
_COLORS = {
    logging.ERROR: 31,     # red
    logging.CRITICAL: 31,
    logging.WARNING: 33,   # yellow
    VERBOSE: 32,           # green
    logging.INFO: 36,      # cyan
    logging.DEBUG: 34,     # blue
}

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_listener: Optional[logging.handlers.QueueListener] = None


def colorize(text: str, code: int) -> str:
    """Wrap text in an ANSI color escape."""
    return f"\x1b[{code}m{text}\x1b[0m"


def stream_supports_color(stream=None) -> bool:
    """True when the stream is an interactive terminal."""
    stream = stream if stream is not None else sys.stderr
    isatty = getattr(stream, "isatty", None)
    try:
        return bool(isatty and isatty())
    except ValueError:
        # closed stream
        return False


def resolve_level(name) -> int:
    """
    Map a level name (or number) to a logging level.

    Unknown names fall back to "info" rather than failing: a typo in a
    config file should not keep the dev server from starting.
    """
    if isinstance(name, int):
        return name
    return LEVELS.get(str(name or "").strip().lower(), LEVELS[DEFAULT_LEVEL])


def verbose(logger: logging.Logger, message: str, *args) -> None:
    """Log at VERBOSE level."""
    logger.log(VERBOSE, message, *args)


class ColorFormatter(logging.Formatter):
    """
    Text formatter that colors the bracketed level name.

    Output:
        2026-01-01 12:00:00 [VERBOSE] devserve.pipeline: Serving /srv/dist at /
                            ─────────
                            green on a TTY, plain otherwise
    """

    def __init__(self, use_color: bool = True):
        super().__init__(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)
        original = record.levelname
        code = _COLORS.get(record.levelno)
        if code:
            record.levelname = colorize(original, code)
        try:
            return super().format(record)
        finally:
            record.levelname = original


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log files."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(
    level="info",
    log_file: Optional[str] = None,
    silent: bool = False,
    use_color: Optional[bool] = None,
) -> logging.handlers.QueueListener:
    """
    Configure the root logger for a devserve process.

    Safe to call more than once: the previous listener is stopped and
    its handlers replaced, so a restarted CLI does not print every line
    twice.

    Args:
        level: One of error/warn/verbose/info/debug.
        log_file: Optional path; receives JSON lines.
        silent: Drop console output (the file, if any, still gets records).
        use_color: Force color on/off. Defaults to "is stderr a TTY".

    Returns:
        The running QueueListener.
    """
    global _listener

    shutdown_logging()

    targets = []
    if not silent:
        console = logging.StreamHandler(sys.stderr)
        color = stream_supports_color(sys.stderr) if use_color is None else use_color
        console.setFormatter(ColorFormatter(use_color=color))
        targets.append(console)
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        targets.append(file_handler)
    if not targets:
        targets.append(logging.NullHandler())

    log_queue: queue.Queue = queue.Queue(-1)
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(logging.handlers.QueueHandler(log_queue))

    numeric = resolve_level(level)
    root.setLevel(numeric)
    logging.getLogger("devserve").setLevel(numeric)

    _listener = logging.handlers.QueueListener(
        log_queue, *targets, respect_handler_level=True
    )
    _listener.start()
    return _listener


def shutdown_logging() -> None:
    """Flush and stop the background listener, if one is running."""
    global _listener
    if _listener is not None:
        _listener.stop()
        for handler in _listener.handlers:
            handler.close()
        _listener = None
