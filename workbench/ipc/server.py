from __future__ import annotations

"""
Server role of the single-instance protocol.

- :func:`bind_endpoint` tries to become the listening owner of an
  :class:`EndpointAddress` and reports the outcome as a tagged result.
- :class:`BoundServer` owns the bound socket for the rest of the process
  lifetime. Channels are registered on it first; :meth:`BoundServer.start`
  then serves them with an in-process uvicorn.Server running in a background
  thread.

The socket is bound *and* listening as soon as ``bind_endpoint`` returns, so
a second instance that connects while channels are still being registered
waits in the listen backlog instead of being refused (which it would read as
a stale handle).
"""

import os
import socket
import threading
import time
from pathlib import Path
from typing import Optional

import uvicorn

from .channels import Channel, ChannelRegistry, create_channel_app
from .endpoint import EndpointAddress
from .results import AddressInUse, BindResult, Bound, OtherError, is_address_in_use
from ..utils.logger import get_logger

logger = get_logger(__name__)


class _QuietUvicornConfig(uvicorn.Config):
    def configure_logging(self) -> None:  # type: ignore[override]
        # Logging is owned by workbench.utils.logger.setup_logging().
        return


def _ensure_socket_dir(path: Path) -> None:
    parent = path.parent
    if parent.exists():
        return
    parent.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(parent, 0o700)
    except OSError:
        # Not fatal: the directory already lives in a per-user location.
        pass


def _open_socket(address: EndpointAddress) -> socket.socket:
    if address.path is not None:
        return socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    exclusive = getattr(socket, "SO_EXCLUSIVEADDRUSE", None)
    if exclusive is not None:
        sock.setsockopt(socket.SOL_SOCKET, exclusive, 1)
    return sock


def bind_endpoint(
    address: EndpointAddress,
    *,
    backlog: int = 16,
    version: Optional[str] = None,
) -> BindResult:
    """
    Attempt to bind and listen on ``address``.

    Returns:
        ``Bound(server)`` on success, ``AddressInUse()`` when the platform
        reports a conflicting owner, ``OtherError(exc)`` otherwise.
    """
    try:
        if address.path is not None:
            _ensure_socket_dir(address.path)
        sock = _open_socket(address)
    except OSError as exc:
        return OtherError(exc)

    try:
        if address.path is not None:
            sock.bind(str(address.path))
        else:
            sock.bind((address.host, address.port))
        sock.listen(backlog)
    except OSError as exc:
        sock.close()
        if is_address_in_use(exc):
            logger.debug("Endpoint %s is already in use", address)
            return AddressInUse()
        return OtherError(exc)

    logger.info("Bound endpoint %s", address)
    return Bound(BoundServer(address, sock, version=version))


class BoundServer:
    """
    Owning handle for a bound endpoint.

    ``dispose()`` may be called any number of times from any thread,
    including from a channel handler running on the server's own thread.
    """

    def __init__(
        self,
        address: EndpointAddress,
        sock: socket.socket,
        *,
        version: Optional[str] = None,
    ) -> None:
        self._address = address
        self._sock = sock
        self._version = version
        self._registry = ChannelRegistry()
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._disposed = False

    # ------------------------------- public API -----------------------------

    @property
    def address(self) -> EndpointAddress:
        return self._address

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def serving(self) -> bool:
        return self._server is not None and self._server.started

    def register_channel(self, name: str, channel: Channel) -> None:
        """Register ``channel`` under ``name``; only allowed before start()."""
        if self._disposed:
            raise RuntimeError("Cannot register channels on a disposed server")
        self._registry.register(name, channel)

    def channel_names(self) -> list[str]:
        return list(self._registry)

    def start(self) -> None:
        """Start servicing connections in a background thread."""
        with self._lock:
            if self._disposed:
                raise RuntimeError("Cannot start a disposed server")
            if self._server is not None:
                logger.debug("BoundServer.start() called twice; ignoring")
                return
            self._registry.freeze()

            app = create_channel_app(self._registry, version=self._version)
            config = _QuietUvicornConfig(
                app=app,
                uds=str(self._address.path) if self._address.path is not None else None,
                host=self._address.host,
                port=self._address.port,
                lifespan="off",
                log_config=None,
                access_log=False,
                timeout_graceful_shutdown=2,
            )
            server = uvicorn.Server(config=config)
            self._server = server

            sock = self._sock

            def _run() -> None:
                try:
                    server.run(sockets=[sock])
                except Exception:
                    logger.exception("IPC server on %s crashed", self._address)

            thread = threading.Thread(target=_run, name="workbench-ipc", daemon=True)
            self._thread = thread
            thread.start()
        logger.info("Serving channels %s on %s", ", ".join(self._registry), self._address)

    def wait_until_ready(self, timeout: float = 10.0) -> bool:
        """Block until the server has started serving or ``timeout`` elapses."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.serving:
                return True
            if self._thread is not None and not self._thread.is_alive():
                return False
            time.sleep(0.02)
        logger.warning("Timed out waiting for IPC server on %s", self._address)
        return False

    def dispose(self) -> None:
        """Stop serving, close the socket and remove the socket file."""
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            server = self._server
            thread = self._thread

        logger.debug("Disposing IPC server on %s", self._address)
        if server is not None:
            # uvicorn closes the listening socket itself during shutdown.
            server.should_exit = True
            if (
                thread is not None
                and thread is not threading.current_thread()
                and thread.is_alive()
            ):
                thread.join(timeout=5.0)
        else:
            try:
                self._sock.close()
            except OSError:
                pass

        if self._address.path is not None:
            try:
                self._address.path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not remove socket file %s: %s", self._address.path, exc)
