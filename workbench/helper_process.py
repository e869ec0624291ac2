"""Spawned helper processes owned by the primary instance"""

from __future__ import annotations

import subprocess
import sys
import threading
from typing import Mapping, Optional, Sequence

from .utils.logger import get_logger
from .utils.runtime import is_frozen

logger = get_logger(__name__)

SHARED_PROCESS_FLAG = "--type=shared-process"


class HelperProcess:
    """Wrapper around a child process with graceful, idempotent termination."""

    def __init__(
        self,
        popen: subprocess.Popen,
        name: str,
        *,
        graceful_timeout: float = 5.0,
    ) -> None:
        self._popen = popen
        self._name = name
        self._graceful_timeout = graceful_timeout
        self._lock = threading.Lock()
        self._disposed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def alive(self) -> bool:
        return self._popen.poll() is None

    def terminate(self) -> None:
        """
        Close the helper's stdin, then terminate, then kill.

        Helpers watch stdin and exit on EOF, so closing it is the graceful
        request; terminate() and kill() follow only if it is ignored.
        """
        if self._popen.stdin is not None:
            try:
                self._popen.stdin.close()
            except OSError:
                pass
            try:
                self._popen.wait(timeout=self._graceful_timeout)
                return
            except subprocess.TimeoutExpired:
                pass

        if not self.alive:
            return
        try:
            self._popen.terminate()
        except OSError:
            try:
                self._popen.kill()
            except OSError:
                return

        try:
            self._popen.wait(timeout=self._graceful_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("%s did not exit in time; killing it", self._name)
            try:
                self._popen.kill()
                self._popen.wait(timeout=self._graceful_timeout)
            except (OSError, subprocess.TimeoutExpired):
                pass

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
        logger.debug("Disposing %s (pid %s)", self._name, self.pid)
        self.terminate()


def shared_process_command() -> list[str]:
    """Command line that starts the shared helper process."""
    if is_frozen():
        return [sys.executable, SHARED_PROCESS_FLAG]
    return [sys.executable, "-m", "workbench.shared_process"]


def spawn_helper(
    cmd: Sequence[str],
    env: Mapping[str, str],
    *,
    name: str,
    graceful_timeout: float = 5.0,
) -> Optional[HelperProcess]:
    """
    Start ``cmd`` with ``env`` in the background.

    Failures are logged and reported as ``None``: the primary instance keeps
    running without its helper.
    """
    kwargs: dict = {
        "env": dict(env),
        "stdin": subprocess.PIPE,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
    }
    if sys.platform.startswith("win"):
        # No console window for the helper.
        kwargs["creationflags"] = 0x08000000  # CREATE_NO_WINDOW

    try:
        popen = subprocess.Popen(list(cmd), **kwargs)  # type: ignore[arg-type]
    except OSError as exc:
        logger.error("Failed to start %s: %s: %s", name, " ".join(cmd), exc)
        return None

    logger.info("Started %s (pid %s)", name, popen.pid)
    return HelperProcess(popen, name, graceful_timeout=graceful_timeout)


def spawn_shared_process(
    env: Mapping[str, str], *, graceful_timeout: float = 5.0
) -> Optional[HelperProcess]:
    return spawn_helper(
        shared_process_command(),
        env,
        name="shared process",
        graceful_timeout=graceful_timeout,
    )
