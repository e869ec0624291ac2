"""Secondary per-user instance lock.

The local endpoint is what guarantees a single Workbench instance. This lock
is only an extra, externally visible signal that an instance is running
(installers and uninstallers look for it), so every failure here is logged
and swallowed: a missing lock must never stop the application.

The lock is an OS-level file lock:

- On Windows it uses msvcrt.locking on a per-user lock file under
  %LOCALAPPDATA%\\Workbench.
- On POSIX systems it uses fcntl.flock on a file under either
  $XDG_RUNTIME_DIR, $XDG_CACHE_HOME or ~/.cache/Workbench.

Operating system file locks are released automatically when the owning
process exits.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, ClassVar, Mapping, Optional

from .utils.logger import get_logger

logger = get_logger(__name__)


class InstanceLockError(Exception):
    """Raised when the lock file cannot be created or opened."""


@dataclass
class InstanceLock:
    """Best-effort per-user process-wide lock.

    .. code-block:: python

        lock = InstanceLock()
        lock.try_acquire()      # never raises
        ...
        lock.release()          # idempotent
    """

    product_id: str = "workbench"
    environ: Optional[Mapping[str, str]] = None

    _file_handle: Optional[IO[str]] = None
    _lock_path: Optional[Path] = None
    _guard: threading.Lock = field(default_factory=threading.Lock, repr=False)

    # Paths held by this interpreter; flock() would let the same process take
    # the lock twice.
    _held_paths: ClassVar[set[Path]] = set()

    @property
    def held(self) -> bool:
        return self._file_handle is not None

    def acquire(self) -> bool:
        """
        Try to take the lock.

        Returns:
            True if this process now holds the lock, False if another
            instance holds it.

        Raises:
            InstanceLockError: if the lock directory or file is unusable.
        """
        with self._guard:
            if self._file_handle is not None:
                return True

            lock_path = self.resolve_lock_path()
            if lock_path in self.__class__._held_paths:
                return False

            try:
                fh = lock_path.open("a+")
            except OSError as exc:
                raise InstanceLockError(
                    f"Unable to open instance lock file at {lock_path}: {exc}"
                ) from exc

            try:
                if os.name == "nt":
                    acquired = self._acquire_windows_lock(fh)
                else:
                    acquired = self._acquire_posix_lock(fh)
            except Exception:
                fh.close()
                raise

            if not acquired:
                fh.close()
                return False

            self._file_handle = fh
            self._lock_path = lock_path
            self.__class__._held_paths.add(lock_path)
            try:
                fh.seek(0)
                fh.truncate()
                fh.write(str(os.getpid()))
                fh.flush()
            except OSError:
                # The PID is informational only.
                pass
            return True

    def try_acquire(self) -> bool:
        """:meth:`acquire` that logs instead of raising."""
        try:
            acquired = self.acquire()
        except (InstanceLockError, OSError) as exc:
            logger.warning("Instance lock unavailable: %s", exc)
            return False
        if not acquired:
            logger.warning("Instance lock already held by another process")
        return acquired

    def release(self) -> None:
        """Release the lock if held; safe to call repeatedly."""
        with self._guard:
            fh = self._file_handle
            if fh is None:
                return
            lock_path = self._lock_path
            try:
                if os.name == "nt":
                    self._release_windows_lock(fh)
                else:
                    self._release_posix_lock(fh)
            finally:
                try:
                    fh.close()
                except OSError:
                    pass
                self._file_handle = None
                self._lock_path = None
                if lock_path is not None:
                    self.__class__._held_paths.discard(lock_path)

    # ------------------------------------------------------------------ internals

    def resolve_lock_path(self) -> Path:
        """Compute (and create the directory of) the per-user lock file."""
        env = self.environ if self.environ is not None else os.environ
        if os.name == "nt":
            base = env.get("LOCALAPPDATA")
            if base:
                root = Path(base) / "Workbench"
            else:
                root = Path.home() / "AppData" / "Local" / "Workbench"
        else:
            runtime_dir = env.get("XDG_RUNTIME_DIR")
            if runtime_dir:
                root = Path(runtime_dir) / self.product_id
            else:
                cache_home = env.get("XDG_CACHE_HOME")
                if cache_home:
                    root = Path(cache_home) / "Workbench"
                else:
                    root = Path.home() / ".cache" / "Workbench"

        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise InstanceLockError(
                f"Unable to create lock directory at {root}: {exc}"
            ) from exc

        return root / f"{self.product_id}.lock"

    @staticmethod
    def _acquire_windows_lock(fh: IO[str]) -> bool:
        import msvcrt  # type: ignore[import-not-found]

        try:
            msvcrt.locking(fh.fileno(), msvcrt.LK_NBLCK, 1)
            return True
        except OSError:
            return False

    @staticmethod
    def _release_windows_lock(fh: IO[str]) -> None:
        import msvcrt  # type: ignore[import-not-found]

        try:
            fh.seek(0)
            msvcrt.locking(fh.fileno(), msvcrt.LK_UNLCK, 1)
        except OSError:
            return

    @staticmethod
    def _acquire_posix_lock(fh: IO[str]) -> bool:
        import fcntl  # type: ignore[import-not-found]

        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            return True
        except OSError:
            return False

    @staticmethod
    def _release_posix_lock(fh: IO[str]) -> None:
        import fcntl  # type: ignore[import-not-found]

        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
        except OSError:
            return
