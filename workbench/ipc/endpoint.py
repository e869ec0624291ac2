"""Endpoint identity for the single-instance protocol.

Every process of one installation run by one user must arrive at the same
address without talking to anybody, so the address is a pure function of the
product identifier, the product version and the user scope found in the
environment mapping passed in. Nothing here touches the filesystem.

- POSIX: a Unix domain socket under ``$XDG_RUNTIME_DIR/<product>`` or, when
  that is unset, under a per-user directory in the system temp location.
  Paths longer than the ``AF_UNIX`` limit are replaced by a short hashed name.
- Windows: Python has no ``AF_UNIX`` support there, so the endpoint is a
  loopback TCP port derived from a hash of the same scope.
"""

from __future__ import annotations

import hashlib
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from ..utils.runtime import Platform

# sun_path is 108 bytes on Linux and 104 on macOS, including the NUL.
MAX_UNIX_PATH_BYTES = 103

_PORT_BASE = 49152
_PORT_SPAN = 16383

LOOPBACK_HOST = "127.0.0.1"


@dataclass(frozen=True)
class EndpointAddress:
    """Well-known local address shared by every instance for one user."""

    path: Optional[Path] = None
    host: str = LOOPBACK_HOST
    port: int = 0

    @property
    def is_unix(self) -> bool:
        return self.path is not None

    @property
    def base_url(self) -> str:
        """HTTP base URL used by clients of the endpoint."""
        if self.is_unix:
            return "http://workbench.local"
        return f"http://{self.host}:{self.port}"

    def __str__(self) -> str:
        if self.path is not None:
            return str(self.path)
        return f"{self.host}:{self.port}"


def _user_scope(environ: Mapping[str, str]) -> str:
    for key in ("USER", "USERNAME", "LOGNAME"):
        value = environ.get(key)
        if value:
            return value
    getuid = getattr(os, "getuid", None)
    if getuid is not None:
        return str(getuid())
    return "default"


def _digest(*parts: str) -> str:
    return hashlib.sha256("\0".join(parts).encode("utf-8")).hexdigest()


def _runtime_root(product_id: str, environ: Mapping[str, str]) -> Path:
    runtime_dir = environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return Path(runtime_dir) / product_id
    return Path(tempfile.gettempdir()) / f"{product_id}-{_user_scope(environ)}"


def derive_endpoint(
    product_id: str,
    version: str,
    role: str,
    *,
    environ: Mapping[str, str],
    platform: Platform,
) -> EndpointAddress:
    """
    Derive the endpoint for ``role`` ("main" or "shared").

    The result is identical for every call with the same inputs.
    """
    if platform is Platform.WINDOWS:
        digest = _digest(product_id, version, role, _user_scope(environ))
        port = _PORT_BASE + int(digest[:8], 16) % _PORT_SPAN
        return EndpointAddress(host=LOOPBACK_HOST, port=port)

    path = _runtime_root(product_id, environ) / f"{version}-{role}.sock"
    if len(os.fsencode(str(path))) > MAX_UNIX_PATH_BYTES:
        digest = _digest(product_id, version, role, str(path))[:16]
        path = Path(tempfile.gettempdir()) / f"{product_id}-{digest}.sock"
    return EndpointAddress(path=path)


def main_endpoint(
    product_id: str, version: str, *, environ: Mapping[str, str], platform: Platform
) -> EndpointAddress:
    """Endpoint owned by the primary instance."""
    return derive_endpoint(product_id, version, "main", environ=environ, platform=platform)


def shared_endpoint(
    product_id: str, version: str, *, environ: Mapping[str, str], platform: Platform
) -> EndpointAddress:
    """Endpoint owned by the shared helper process."""
    return derive_endpoint(product_id, version, "shared", environ=environ, platform=platform)


def format_hook(address: EndpointAddress) -> str:
    """Serialise an address for WORKBENCH_*_IPC_HOOK environment variables."""
    if address.path is not None:
        return str(address.path)
    return f"tcp://{address.host}:{address.port}"


def parse_hook(value: str) -> EndpointAddress:
    """Inverse of :func:`format_hook`."""
    if value.startswith("tcp://"):
        host, _, port = value[len("tcp://"):].rpartition(":")
        return EndpointAddress(host=host or LOOPBACK_HOST, port=int(port))
    return EndpointAddress(path=Path(value))
