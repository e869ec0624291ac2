"""Process lifecycle guard.

Owns teardown of everything the primary instance acquired after binding:
the :class:`BoundServer`, the shared helper process and the secondary
instance lock. Teardown can be triggered from three independent places:

- the shell's "about to quit" notification,
- an ``exit`` command on the ``lifecycle`` channel (served on another thread),
- an uncaught exception hook.

``dispose()`` runs each release exactly once no matter how many of those
fire, or how concurrently.
"""

from __future__ import annotations

import sys
import threading
from typing import Any, Callable, Optional, Protocol

from .errors import EXIT_FATAL, EXIT_OK
from .ipc.channels import Channel, UnknownCommandError
from .ipc.models import ExitRequest
from .utils.logger import get_logger
from .utils.runtime import Platform

logger = get_logger(__name__)

LIFECYCLE_CHANNEL = "lifecycle"

ExitCallback = Callable[[int], None]


class Disposable(Protocol):
    def dispose(self) -> None: ...


class Releasable(Protocol):
    def release(self) -> None: ...


class PresenceTarget(Protocol):
    def set_presence_visible(self, visible: bool) -> None: ...


class PlatformPresence:
    """
    Dock/taskbar presence hook.

    Only macOS keeps a persistent dock icon for every process, so elsewhere
    this hook records the request and does nothing. The desired state is
    remembered and applied when the shell attaches, since the shell only
    exists once this process has won the endpoint.
    """

    def __init__(self, platform: Platform) -> None:
        self._enabled = platform is Platform.MACOS
        self._visible: Optional[bool] = None
        self._target: Optional[PresenceTarget] = None

    @property
    def visible(self) -> Optional[bool]:
        return self._visible

    def attach(self, target: PresenceTarget) -> None:
        self._target = target
        if self._visible is not None:
            self._apply()

    def show(self) -> None:
        self._set(True)

    def hide(self) -> None:
        self._set(False)

    def _set(self, visible: bool) -> None:
        if not self._enabled:
            return
        self._visible = visible
        self._apply()

    def _apply(self) -> None:
        if self._target is not None and self._visible is not None:
            self._target.set_presence_visible(self._visible)


class LifecycleGuard:
    """Idempotent owner of the primary instance's process-wide resources."""

    def __init__(self, on_exit: ExitCallback) -> None:
        self._on_exit = on_exit
        self._lock = threading.Lock()
        self._disposed = False
        self._released = threading.Event()
        self._disposing_thread: Optional[int] = None
        self._server: Optional[Disposable] = None
        self._helper: Optional[Disposable] = None
        self._instance_lock: Optional[Releasable] = None
        self._previous_excepthook: Optional[Callable[..., Any]] = None
        self._previous_thread_excepthook: Optional[Callable[..., Any]] = None

    # -------------------- resources ------------------------------------------

    def adopt(
        self,
        *,
        server: Optional[Disposable] = None,
        helper: Optional[Disposable] = None,
        instance_lock: Optional[Releasable] = None,
    ) -> None:
        """Take ownership of resources acquired during start-up."""
        with self._lock:
            if self._disposed:
                raise RuntimeError("Cannot adopt resources after dispose()")
            if server is not None:
                self._server = server
            if helper is not None:
                self._helper = helper
            if instance_lock is not None:
                self._instance_lock = instance_lock

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """
        Release server, helper process and instance lock exactly once.

        Late callers block until the first caller has finished releasing, so
        every exit path observes a completed teardown. The disposing thread
        itself never waits on its own teardown.
        """
        with self._lock:
            late = self._disposed
            if not late:
                self._disposed = True
                self._disposing_thread = threading.get_ident()
                server, self._server = self._server, None
                helper, self._helper = self._helper, None
                instance_lock, self._instance_lock = self._instance_lock, None

        if late:
            if self._disposing_thread != threading.get_ident():
                self._released.wait()
            return

        if server is not None:
            try:
                server.dispose()
            except Exception:
                logger.exception("Failed to dispose IPC server")

        if helper is not None:
            try:
                helper.dispose()
            except Exception:
                logger.exception("Failed to dispose helper process")

        if instance_lock is not None:
            try:
                instance_lock.release()
            except Exception:
                logger.exception("Failed to release instance lock")

        self._released.set()

    # -------------------- exit paths -----------------------------------------

    def on_will_quit(self) -> None:
        """The shell is about to quit on its own; exit status stays with it."""
        logger.info("App#will-quit: disposing resources")
        self.dispose()

    def request_exit(self, code: int = EXIT_OK) -> None:
        """Explicit exit request: dispose, then exit with ``code``."""
        logger.info("Exit requested with code %s", code)
        self.dispose()
        self._on_exit(code)

    def handle_fault(self, exc: BaseException) -> None:
        """Uncaught fault: report it, dispose, exit with status 1."""
        logger.error(
            "[uncaught exception in main]: %s",
            exc,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        self.dispose()
        self._on_exit(EXIT_FATAL)

    def install_fault_handlers(self) -> None:
        """Route uncaught exceptions of every thread to :meth:`handle_fault`."""
        self._previous_excepthook = sys.excepthook
        self._previous_thread_excepthook = threading.excepthook

        def _excepthook(exc_type, exc, tb) -> None:
            if issubclass(exc_type, KeyboardInterrupt):
                self.request_exit(EXIT_OK)
                return
            self.handle_fault(exc)

        def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
            if args.exc_value is None or issubclass(args.exc_type, SystemExit):
                return
            self.handle_fault(args.exc_value)

        sys.excepthook = _excepthook
        threading.excepthook = _thread_excepthook

    def uninstall_fault_handlers(self) -> None:
        if self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook
            self._previous_excepthook = None
        if self._previous_thread_excepthook is not None:
            threading.excepthook = self._previous_thread_excepthook
            self._previous_thread_excepthook = None


class LifecycleChannel(Channel):
    """``lifecycle`` channel: lets a window or helper ask the main process to exit."""

    def __init__(self, guard: LifecycleGuard) -> None:
        self._guard = guard

    async def call(self, command: str, arg: Any) -> Any:
        if command == "exit":
            request = ExitRequest.model_validate(arg or {})
            self._guard.request_exit(request.code)
            return None
        raise UnknownCommandError(f"Unknown lifecycle command: {command}")
