"""
=============================================================================
OPTION NORMALIZER
=============================================================================

Turns the loose, user-facing option mapping into one immutable ServeConfig.

=============================================================================
WHY NORMALIZE ONCE?
=============================================================================

Users write options by hand, in whatever shape is convenient:

    {
        "contentBase": "dist",                       # str, list or dict
        "proxy": {"api": "http://localhost:9000"},   # str or {target, ...}
        "historyAPIFallback": True,                  # bool, str, list, dict
        "traceRequests": {"format": "tiny", "filter": "/api"},
        "mimeTypes": {"wasm": "application/wasm"},
    }

Every request handler would otherwise have to re-check each of those
shapes. Instead, normalize_options() resolves them ONCE into canonical
records, and the rest of the server only ever sees:

    ServeConfig(
        content_base=(StaticMount(Path("/abs/dist"), "/"),),
        proxy=(ProxyRoute("/api", "http://localhost:9000", False),),
        fallback=FallbackConfig(DEFAULT_FILE, Path("/abs/dist/index.html"), ()),
        trace=TraceConfig("tiny", ("/api",)),
        mime_types={".wasm": ("application/wasm",)},
        ...
    )

=============================================================================
ERROR POLICY
=============================================================================

    ┌─────────────────────────────────┬──────────────────────────────────┐
    │ Problem                         │ Result                           │
    ├─────────────────────────────────┼──────────────────────────────────┤
    │ content directory missing       │ warning, mount kept              │
    │ proxy target empty / not a URL  │ warning, route dropped           │
    │ fallback file missing           │ error logged, fallback disabled  │
    │ port out of range               │ warning, default port            │
    │ unknown option key              │ warning, ignored                 │
    │ TLS key or cert file missing    │ TLSConfigError (fatal)           │
    └─────────────────────────────────┴──────────────────────────────────┘

A dev server that refuses to start over a typo in a proxy table wastes
more time than one that starts and says what it ignored. TLS is the
exception: silently serving plain HTTP when HTTPS was asked for would
break every https:// URL the developer has open.

=============================================================================
"""

import hashlib
import logging
import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import urlsplit


logger = logging.getLogger(__name__)


DEFAULT_PORT = 10001
DEFAULT_HOST = "localhost"
DEFAULT_FALLBACK_FILE = "index.html"
DEFAULT_TRACE_FORMAT = "dev"

ENV_HOST = "DEVSERVE_HOST"
ENV_PORT = "DEVSERVE_PORT"
ENV_LOG_LEVEL = "DEVSERVE_LOG_LEVEL"


class ConfigError(ValueError):
    """Options that cannot be turned into a working configuration."""


class TLSConfigError(ConfigError):
    """TLS was requested but its key or certificate file is missing."""


class FallbackKind(Enum):
    DEFAULT_FILE = "default_file"
    EXPLICIT_FILE = "explicit_file"
    ROUTE_LIST = "route_list"
    PATH_AND_ROUTES = "path_and_routes"


@dataclass(frozen=True)
class StaticMount:
    """A content directory served under a URL mount ("/" or "/assets")."""

    directory: Path
    mount: str = "/"


@dataclass(frozen=True)
class ProxyRoute:
    """Requests under `prefix` are forwarded to `target`."""

    prefix: str
    target: str
    strip_prefix: bool = False


@dataclass(frozen=True)
class FallbackConfig:
    kind: FallbackKind
    file_path: Path
    routes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TraceConfig:
    formatter: Union[str, Callable] = DEFAULT_TRACE_FORMAT
    filters: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TLSConfig:
    key_path: Path
    cert_path: Path


@dataclass(frozen=True)
class ServeConfig:
    """
    Normalized, immutable server configuration.

    Built by normalize_options(); never mutated afterwards. A changed
    configuration is a NEW ServeConfig, compared by fingerprint().

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    SERVING
    - content_base, proxy, fallback, headers, middleware, mime_types

    LISTENER
    - host, port, tls

    DIAGNOSTICS
    - trace, verbose, log_level, log_file

    TUNING (socket and thread pool)
    - backlog, buffer_size, timeout, keep_alive, keep_alive_timeout,
      max_request_size, min_workers, max_workers, proxy_timeout

    =========================================================================
    """

    content_base: Tuple[StaticMount, ...] = ()
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    proxy: Tuple[ProxyRoute, ...] = ()
    fallback: Optional[FallbackConfig] = None
    headers: Tuple[Tuple[str, str], ...] = ()
    middleware: Tuple[Any, ...] = ()
    trace: Optional[TraceConfig] = None
    mime_types: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    tls: Optional[TLSConfig] = None
    verbose: bool = True
    on_listening: Optional[Callable] = None
    open: bool = False
    open_page: Optional[str] = None

    backlog: int = 128
    """Queued connections the kernel holds before refusing new ones."""

    buffer_size: int = 8192
    """Bytes per recv() call."""

    timeout: Optional[float] = 30.0
    """Socket timeout for the first request on a connection."""

    keep_alive: bool = True
    """Reuse connections for several requests (HTTP/1.1 default)."""

    keep_alive_timeout: float = 5.0
    """Idle seconds before a keep-alive connection is closed."""

    max_request_size: int = 10 * 1024 * 1024
    """Largest accepted request (headers plus body)."""

    min_workers: int = 4
    max_workers: int = 16

    server_name: str = "devserve"
    """Value of the Server response header."""

    proxy_timeout: Optional[float] = None
    """Seconds to wait on an upstream; None waits as long as the socket does."""

    log_level: str = "info"
    log_file: Optional[str] = None

    @property
    def protocol(self) -> str:
        return "https" if self.tls is not None else "http"

    @property
    def url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"

    @property
    def root_directories(self) -> Tuple[Path, ...]:
        return tuple(mount.directory for mount in self.content_base)

    def fingerprint(self) -> str:
        """
        Stable digest of every field.

        Two configs with the same fingerprint serve identically, so the
        lifecycle manager can skip a restart. Callables (middleware,
        formatters, on_listening) compare by identity: the same function
        object twice is "unchanged", a re-created lambda is not.
        """
        digest = hashlib.sha256()
        for f in fields(self):
            digest.update(f.name.encode("utf-8"))
            digest.update(b"=")
            digest.update(_canonical(getattr(self, f.name)).encode("utf-8"))
            digest.update(b";")
        return digest.hexdigest()

    def with_overrides(self, **changes) -> "ServeConfig":
        """Copy with some fields replaced (still frozen)."""
        return replace(self, **changes)


def _canonical(value: Any) -> str:
    """Deterministic text form of a config value, for fingerprinting."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return repr(value)
    if isinstance(value, Path):
        return f"Path({str(value)!r})"
    if isinstance(value, Enum):
        return f"{type(value).__name__}.{value.name}"
    if isinstance(value, (tuple, list)):
        return "(" + ",".join(_canonical(v) for v in value) + ")"
    if isinstance(value, Mapping):
        items = sorted((str(k), _canonical(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}:{v}" for k, v in items) + "}"
    if isinstance(value, (StaticMount, ProxyRoute, FallbackConfig, TraceConfig, TLSConfig)):
        parts = ",".join(f"{f.name}={_canonical(getattr(value, f.name))}" for f in fields(value))
        return f"{type(value).__name__}({parts})"
    name = getattr(value, "__qualname__", type(value).__qualname__)
    return f"<{name}@{id(value):x}>"


# =============================================================================
# OPTION KEYS
# =============================================================================

_ALIASES = {
    "contentBase": "content_base",
    "historyAPIFallback": "fallback",
    "historyApiFallback": "fallback",
    "history_api_fallback": "fallback",
    "traceRequests": "trace",
    "trace_requests": "trace",
    "mimeTypes": "mime_types",
    "mime_overrides": "mime_types",
    "https": "tls",
    "openPage": "open_page",
    "onListening": "on_listening",
    "keepAlive": "keep_alive",
    "keepAliveTimeout": "keep_alive_timeout",
    "maxRequestSize": "max_request_size",
    "bufferSize": "buffer_size",
    "minWorkers": "min_workers",
    "maxWorkers": "max_workers",
    "serverName": "server_name",
    "proxyTimeout": "proxy_timeout",
    "logLevel": "log_level",
    "logFile": "log_file",
}

_KNOWN_KEYS = {f.name for f in fields(ServeConfig)}

_TUNING_INTS = ("backlog", "buffer_size", "max_request_size", "min_workers", "max_workers")
_TUNING_FLOATS = ("timeout", "keep_alive_timeout", "proxy_timeout")


def _canonical_keys(raw: Mapping) -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    for key, value in raw.items():
        name = _ALIASES.get(key, key)
        if name not in _KNOWN_KEYS:
            logger.warning(f"Unknown option {key!r}, ignoring it")
            continue
        if name in options and name != key:
            logger.warning(f"Option {key!r} duplicates {name!r}, using the later value")
        options[name] = value
    return options


# =============================================================================
# PER-KEY NORMALIZERS
# =============================================================================

def normalize_mount(mount: Any) -> str:
    """
    Canonical mount path.

        ""         → "/"
        "assets"   → "/assets"
        "/assets/" → "/assets"
        "/"        → "/"
    """
    mount = str(mount or "").strip()
    if not mount.startswith("/"):
        mount = "/" + mount
    if len(mount) > 1:
        mount = mount.rstrip("/") or "/"
    return mount


def _resolve_directory(value: Any, cwd: Path) -> Path:
    path = Path(os.path.expanduser(str(value)))
    if not path.is_absolute():
        path = cwd / path
    path = path.resolve()
    if not path.is_dir():
        logger.warning(f"Content directory {path} does not exist")
    return path


def normalize_content_base(value: Any, cwd: Path) -> Tuple[StaticMount, ...]:
    """
    Content directories → ordered StaticMounts.

        None                        → cwd at "/"
        "dist"                      → dist at "/"
        ["dist", "public"]          → both at "/" (dist wins on conflicts)
        {"dist": "/", "img": "/i"}  → dist at "/", img at "/i"
    """
    if value is None or value == "" or value == [] or value == {}:
        return (StaticMount(cwd.resolve(), "/"),)

    if isinstance(value, (str, os.PathLike)):
        return (StaticMount(_resolve_directory(value, cwd), "/"),)

    if isinstance(value, Mapping):
        return tuple(
            StaticMount(_resolve_directory(directory, cwd), normalize_mount(mount))
            for directory, mount in value.items()
            if str(directory).strip()
        )

    if isinstance(value, (list, tuple)):
        mounts = []
        for directory in value:
            if not isinstance(directory, (str, os.PathLike)) or not str(directory).strip():
                logger.warning(f"Ignoring content directory {directory!r}")
                continue
            mounts.append(StaticMount(_resolve_directory(directory, cwd), "/"))
        return tuple(mounts) or (StaticMount(cwd.resolve(), "/"),)

    logger.warning(f"content_base must be a path, a list or a mapping, got {type(value).__name__}")
    return (StaticMount(cwd.resolve(), "/"),)


def _is_http_url(target: str) -> bool:
    parts = urlsplit(target)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def normalize_proxy(value: Any) -> Tuple[ProxyRoute, ...]:
    """
    Proxy table → ProxyRoutes in declaration order.

        {"/api": "http://localhost:9000"}
        {"/api": {"target": "http://localhost:9000", "stripPrefix": True}}
    """
    if not value:
        return ()
    if not isinstance(value, Mapping):
        logger.warning(f"proxy must be a mapping of route to target, got {type(value).__name__}")
        return ()

    routes = []
    for prefix, entry in value.items():
        prefix = normalize_mount(prefix)
        if isinstance(entry, str):
            target, strip = entry, False
        elif isinstance(entry, Mapping):
            target = entry.get("target")
            strip = entry.get("strip_prefix", entry.get("stripPrefix", False))
            if not isinstance(strip, bool):
                logger.warning(f"strip_prefix for {prefix} must be true or false, got {strip!r}; not stripping")
                strip = False
        else:
            target, strip = None, False

        if not isinstance(target, str) or not target.strip():
            logger.warning(f"Proxy entry for {prefix} has no target, ignoring it")
            continue
        target = target.strip()
        if not _is_http_url(target):
            logger.warning(f"Proxy target {target!r} for {prefix} is not an http(s) URL, ignoring it")
            continue
        routes.append(ProxyRoute(prefix=prefix, target=target, strip_prefix=strip))
    return tuple(routes)


def _fallback_base(content_base: Tuple[StaticMount, ...], cwd: Path) -> Path:
    for mount in content_base:
        if mount.mount == "/":
            return mount.directory
    if content_base:
        return content_base[0].directory
    return cwd


def _routes(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(route) for route in value if str(route).strip())


def normalize_fallback(
    value: Any,
    content_base: Tuple[StaticMount, ...],
    cwd: Path,
) -> Optional[FallbackConfig]:
    """
    SPA fallback option → FallbackConfig, or None when disabled.

        True                              → DEFAULT_FILE
        "app.html"                        → EXPLICIT_FILE
        ["/", "/about"]                   → ROUTE_LIST (default file)
        {"path": ..., "routes": [...]}    → PATH_AND_ROUTES

    Never raises: a missing file disables the fallback with an error.
    """
    if value is None or value is False:
        return None

    if value is True:
        kind, file_value, routes = FallbackKind.DEFAULT_FILE, DEFAULT_FALLBACK_FILE, ()
    elif isinstance(value, (str, os.PathLike)):
        kind, file_value, routes = FallbackKind.EXPLICIT_FILE, value, ()
    elif isinstance(value, (list, tuple)):
        kind, file_value, routes = FallbackKind.ROUTE_LIST, DEFAULT_FALLBACK_FILE, _routes(value)
    elif isinstance(value, Mapping):
        path = value.get("path")
        kind = FallbackKind.PATH_AND_ROUTES
        file_value = path if isinstance(path, (str, os.PathLike)) and str(path).strip() else DEFAULT_FALLBACK_FILE
        routes = _routes(value.get("routes", ()))
    else:
        logger.warning(f"Unsupported fallback option {value!r}, fallback disabled")
        return None

    file_path = Path(os.path.expanduser(str(file_value)))
    if not file_path.is_absolute():
        file_path = _fallback_base(content_base, cwd) / file_path
    file_path = file_path.resolve()
    if file_path.is_dir():
        file_path = file_path / DEFAULT_FALLBACK_FILE

    if not file_path.is_file():
        logger.error(f"Fallback file {file_path} does not exist, history fallback disabled")
        return None

    return FallbackConfig(kind=kind, file_path=file_path, routes=routes)


def normalize_trace(value: Any) -> Optional[TraceConfig]:
    """
    Trace option → TraceConfig, or None when tracing is off.

        True                                  → "dev", no filters
        "tiny" / ":method :url :status"       → that format
        callable                              → custom formatter
        {"format": ..., "filter": "/api"}     → format plus filters
    """
    if value is True:
        return TraceConfig()
    if isinstance(value, str):
        return TraceConfig(formatter=value.strip() or DEFAULT_TRACE_FORMAT)
    if callable(value):
        return TraceConfig(formatter=value)
    if isinstance(value, Mapping):
        formatter = value.get("format")
        if not (callable(formatter) or (isinstance(formatter, str) and formatter.strip())):
            formatter = DEFAULT_TRACE_FORMAT
        filters = value.get("filter", value.get("filters", ()))
        if isinstance(filters, str):
            filters = [filters]
        if not isinstance(filters, (list, tuple)):
            filters = ()
        return TraceConfig(
            formatter=formatter,
            filters=tuple(str(f).strip() for f in filters if f is not None and str(f).strip()),
        )
    return None


def normalize_mime_types(value: Any) -> Mapping[str, Tuple[str, ...]]:
    """
    {"wasm": "application/wasm", ".GLSL": ["x-shader/x-fragment"]}
    → {".wasm": ("application/wasm",), ".glsl": ("x-shader/x-fragment",)}

    The result is a read-only view, like every other ServeConfig field.
    """
    if not value:
        return MappingProxyType({})
    if not isinstance(value, Mapping):
        logger.warning(f"mime_types must be a mapping, got {type(value).__name__}")
        return MappingProxyType({})

    result: Dict[str, Tuple[str, ...]] = {}
    for ext, types in value.items():
        ext = str(ext).strip().lower()
        if not ext.startswith("."):
            ext = "." + ext
        if isinstance(types, str):
            types = [types]
        cleaned = tuple(str(t).strip() for t in (types or ()) if str(t).strip())
        if not cleaned:
            logger.warning(f"MIME override for {ext} is empty, ignoring it")
            continue
        result[ext] = cleaned
    return MappingProxyType(result)


def normalize_tls(value: Any, cwd: Path) -> Optional[TLSConfig]:
    """
    {"key": "key.pem", "cert": "cert.pem"} → TLSConfig.

    Raises:
        TLSConfigError: A file is missing or not given.
    """
    if not value:
        return None
    if not isinstance(value, Mapping):
        raise TLSConfigError("tls must be a mapping with 'key' and 'cert' paths")

    resolved = {}
    for name in ("key", "cert"):
        raw_path = value.get(name, value.get(f"{name}_path"))
        if not raw_path:
            raise TLSConfigError(f"TLS {name} file not configured")
        path = Path(os.path.expanduser(str(raw_path)))
        if not path.is_absolute():
            path = cwd / path
        if not path.is_file():
            raise TLSConfigError(f"TLS {name} file not found: {path}")
        resolved[name] = path.resolve()

    return TLSConfig(key_path=resolved["key"], cert_path=resolved["cert"])


def normalize_port(value: Any) -> int:
    if value is None:
        return DEFAULT_PORT
    try:
        port = int(value)
    except (TypeError, ValueError):
        port = -1
    if isinstance(value, bool) or not 0 <= port <= 65535:
        logger.warning(f"Invalid port {value!r}, using {DEFAULT_PORT}")
        return DEFAULT_PORT
    return port


def normalize_headers(value: Any) -> Tuple[Tuple[str, str], ...]:
    if not value:
        return ()
    if isinstance(value, Mapping):
        items = value.items()
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        logger.warning(f"headers must be a mapping, got {type(value).__name__}")
        return ()
    return tuple((str(name), str(header_value)) for name, header_value in items)


def normalize_middleware(value: Any) -> Tuple[Any, ...]:
    if not value:
        return ()
    if callable(value):
        return (value,)
    if not isinstance(value, (list, tuple)):
        logger.warning(f"middleware must be a callable or a list, got {type(value).__name__}")
        return ()
    kept = []
    for entry in value:
        if callable(entry):
            kept.append(entry)
        else:
            logger.warning(f"Ignoring non-callable middleware {entry!r}")
    return tuple(kept)


def normalize_open_page(value: Any) -> Optional[str]:
    if value is True:
        return "/"
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _number(name: str, value: Any, cast, default):
    if value is None:
        return default
    try:
        return cast(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid value {value!r} for {name}, using {default!r}")
        return default


# =============================================================================
# ENTRY POINTS
# =============================================================================

def normalize_options(raw: Optional[Mapping] = None, *, cwd: Optional[Union[str, Path]] = None) -> ServeConfig:
    """
    Normalize user options into a ServeConfig.

    Args:
        raw: User options (snake_case or camelCase keys). None means all
             defaults.
        cwd: Base for relative paths; defaults to the process cwd.

    Raises:
        ConfigError: `raw` is not a mapping.
        TLSConfigError: TLS requested with a missing key/cert file.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Options must be a mapping, got {type(raw).__name__}")

    base = Path(cwd) if cwd is not None else Path.cwd()
    options = _canonical_keys(raw)
    defaults = ServeConfig()

    content_base = normalize_content_base(options.get("content_base"), base)

    on_listening = options.get("on_listening")
    if on_listening is not None and not callable(on_listening):
        logger.warning("on_listening is not callable, ignoring it")
        on_listening = None

    tuning = {}
    for name in _TUNING_INTS:
        tuning[name] = _number(name, options.get(name), int, getattr(defaults, name))
    for name in _TUNING_FLOATS:
        tuning[name] = _number(name, options.get(name), float, getattr(defaults, name))

    host = options.get("host")
    return ServeConfig(
        content_base=content_base,
        port=normalize_port(options.get("port")),
        host=str(host).strip() if host else DEFAULT_HOST,
        proxy=normalize_proxy(options.get("proxy")),
        fallback=normalize_fallback(options.get("fallback"), content_base, base),
        headers=normalize_headers(options.get("headers")),
        middleware=normalize_middleware(options.get("middleware")),
        trace=normalize_trace(options.get("trace")),
        mime_types=normalize_mime_types(options.get("mime_types")),
        tls=normalize_tls(options.get("tls"), base),
        verbose=bool(options.get("verbose", True)),
        on_listening=on_listening,
        open=bool(options.get("open", False)),
        open_page=normalize_open_page(options.get("open_page")),
        keep_alive=bool(options.get("keep_alive", True)),
        server_name=str(options.get("server_name") or defaults.server_name),
        log_level=str(options.get("log_level") or defaults.log_level),
        log_file=options.get("log_file"),
        **tuning,
    )


def env_options(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Options taken from the environment.

        DEVSERVE_HOST       host to bind
        DEVSERVE_PORT       port to listen on
        DEVSERVE_LOG_LEVEL  error / warn / verbose / info / debug

    Usage:
        DEVSERVE_PORT=3000 python -m devserve
    """
    environ = os.environ if environ is None else environ
    options: Dict[str, Any] = {}
    if environ.get(ENV_HOST):
        options["host"] = environ[ENV_HOST]
    if environ.get(ENV_PORT):
        options["port"] = environ[ENV_PORT]
    if environ.get(ENV_LOG_LEVEL):
        options["log_level"] = environ[ENV_LOG_LEVEL]
    return options
