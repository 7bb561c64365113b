"""
=============================================================================
CHROME DEVTOOLS WORKSPACE ENDPOINT
=============================================================================

Chrome DevTools asks every dev server for

    GET /.well-known/appspecific/com.chrome.devtools.json

and, given

    {"workspace": {"root": "/home/me/project", "uuid": "6ec0bd7f-..."}}

offers to map the served files onto that folder, so edits made in the
Sources panel are saved straight to disk.

=============================================================================
WHERE ROOT AND UUID COME FROM
=============================================================================

    uuid:  option  →  workspace file  →  new uuid4()
    root:  option  →  workspace file  →  current directory

The workspace file (chrome.devtools.json by default) is written when it
does not exist yet and no explicit uuid was given, so the UUID stays the
same across restarts and DevTools remembers the mapping.

=============================================================================
PATHS SEEN FROM WINDOWS
=============================================================================

When the server runs inside WSL or Docker Desktop but Chrome runs on the
Windows host, a Linux path means nothing to Chrome. The root is rewritten
to a UNC path Windows can open:

    WSL_DISTRO_NAME=Ubuntu    /home/me/app → \\\\wsl.localhost\\Ubuntu\\home\\me\\app
    DOCKER_DESKTOP=1          /app         → \\\\wsl.localhost\\docker-desktop-data\\app
    otherwise                 relative/dir → /abs/relative/dir  (forward slashes)

=============================================================================
"""

import json
import logging
import os
import threading
import uuid as uuid_lib
from pathlib import Path
from typing import Mapping, Optional

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder, SOURCE_MOCK
from ..log import verbose as log_verbose
from ..middleware.base import Middleware, NextHandler


logger = logging.getLogger(__name__)


ENDPOINT = "/.well-known/appspecific/com.chrome.devtools.json"
DEFAULT_WORKSPACE_FILE = "chrome.devtools.json"
UNC_PREFIX = "\\\\"


def _unc_path(*parts: str) -> str:
    return UNC_PREFIX + "\\".join(part.strip("/\\") for part in parts if part.strip("/\\"))


def normalize_root(project_root: str, environ: Mapping[str, str]) -> str:
    """
    Root path in the form Chrome on the host can open.

    UNC roots (read back from a workspace file written under WSL) are
    returned unchanged.
    """
    if project_root.startswith(UNC_PREFIX):
        return project_root

    absolute = os.path.abspath(project_root)
    relative = absolute.replace("\\", "/").lstrip("/")

    distro = environ.get("WSL_DISTRO_NAME")
    if distro:
        return _unc_path("wsl.localhost", distro, relative.replace("/", "\\"))
    if environ.get("DOCKER_DESKTOP"):
        return _unc_path("wsl.localhost", "docker-desktop-data", relative.replace("/", "\\"))
    return absolute.replace("\\", "/")


class DevToolsWorkspace(Middleware):
    """
    Serves the DevTools workspace descriptor.

    Usage (as user middleware):
        options = {"middleware": [DevToolsWorkspace(project_root=".")]}

    Every other request falls through.
    """

    def __init__(
        self,
        uuid: Optional[str] = None,
        project_root: Optional[str] = None,
        workspace_data: str = DEFAULT_WORKSPACE_FILE,
        normalize_for_windows_container: bool = True,
        verbose: bool = False,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.uuid = uuid
        self.project_root = project_root
        self.workspace_path = Path(os.path.abspath(workspace_data or DEFAULT_WORKSPACE_FILE))
        self.normalize_for_windows_container = normalize_for_windows_container
        self.verbose = verbose
        self.environ = os.environ if environ is None else environ
        self._lock = threading.Lock()

    def _log(self, message: str):
        if self.verbose:
            log_verbose(logger, f"[DevTools] {message}")
        else:
            logger.debug(f"[DevTools] {message}")

    def _root(self, root: str) -> str:
        if self.normalize_for_windows_container:
            return normalize_root(root, self.environ)
        return os.path.abspath(root).replace("\\", "/")

    def _read_workspace(self) -> Optional[dict]:
        if not self.workspace_path.is_file():
            return None
        try:
            parsed = json.loads(self.workspace_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read workspace file {self.workspace_path}: {e}")
            return None
        workspace = parsed.get("workspace") if isinstance(parsed, dict) else None
        if isinstance(workspace, dict) and workspace.get("uuid") and workspace.get("root"):
            self._log(f'Loaded workspace data from "{self.workspace_path}"')
            return workspace
        return None

    def _write_workspace(self, descriptor: dict):
        try:
            self.workspace_path.parent.mkdir(parents=True, exist_ok=True)
            self.workspace_path.write_text(json.dumps(descriptor, indent=2), encoding="utf-8")
            self._log(f'Created workspace file at "{self.workspace_path}"')
        except OSError as e:
            logger.warning(f"Failed to write workspace file {self.workspace_path}: {e}")

    def descriptor(self) -> dict:
        """Load or create the {"workspace": {"root", "uuid"}} document."""
        with self._lock:
            stored = self._read_workspace()
            workspace_uuid = self.uuid or (stored or {}).get("uuid") or str(uuid_lib.uuid4())
            root = self._root(self.project_root or (stored or {}).get("root") or os.getcwd())
            descriptor = {"workspace": {"root": root, "uuid": workspace_uuid}}

            if not self.uuid and not self.workspace_path.exists():
                self._write_workspace(descriptor)
            return descriptor

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if request.method not in ("GET", "HEAD") or request.path != ENDPOINT:
            return next(request)

        self._log("Received DevTools workspace request")
        descriptor = self.descriptor()
        return (ResponseBuilder()
            .json(descriptor)
            .source(SOURCE_MOCK)
            .build())
