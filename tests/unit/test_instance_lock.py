"""Tests for the secondary per-user instance lock.

These tests use the real filesystem and OS-level file locks; no mocking
frameworks. They check that:

- A first lock holds and a second one in the same process is refused until
  the first is released.
- The lock file lives in a per-user directory.
- try_acquire() never raises, which is what keeps the endpoint protocol
  independent of this lock.
"""

import os
from pathlib import Path

import pytest

import workbench.instance_lock as instance_lock_mod
from workbench.instance_lock import InstanceLock, InstanceLockError


def _make_isolated_lock(tmp_path: Path) -> InstanceLock:
    if os.name == "nt":
        environ = {"LOCALAPPDATA": str(tmp_path / "localappdata")}
    else:
        environ = {"XDG_RUNTIME_DIR": str(tmp_path / "xdg_runtime")}
    return InstanceLock(product_id="workbench_test", environ=environ)


def test_single_holder_until_release(tmp_path: Path) -> None:
    lock1 = _make_isolated_lock(tmp_path)
    lock2 = _make_isolated_lock(tmp_path)

    assert lock1.acquire() is True
    assert lock2.acquire() is False

    lock1.release()
    assert lock2.acquire() is True
    assert lock2.held

    lock2.release()


def test_acquire_twice_on_same_instance_returns_true(tmp_path: Path) -> None:
    lock = _make_isolated_lock(tmp_path)

    assert lock.acquire() is True
    assert lock.acquire() is True

    lock.release()


def test_release_is_idempotent(tmp_path: Path) -> None:
    lock = _make_isolated_lock(tmp_path)
    lock.release()

    assert lock.acquire() is True
    lock.release()
    lock.release()

    assert not lock.held


def test_lock_file_records_pid(tmp_path: Path) -> None:
    lock = _make_isolated_lock(tmp_path)
    assert lock.acquire() is True
    try:
        path = lock.resolve_lock_path()
        assert path.read_text(encoding="utf-8").strip() == str(os.getpid())
    finally:
        lock.release()


def test_resolve_lock_path_uses_per_user_directory(tmp_path: Path) -> None:
    lock = _make_isolated_lock(tmp_path)
    path = lock.resolve_lock_path()

    assert path.name == "workbench_test.lock"
    if os.name == "nt":
        assert path.parent == tmp_path / "localappdata" / "Workbench"
    else:
        assert path.parent == tmp_path / "xdg_runtime" / "workbench_test"
    assert path.parent.exists()


@pytest.mark.skipif(os.name == "nt", reason="XDG fallbacks are POSIX only")
def test_resolve_lock_path_falls_back_to_cache_home(tmp_path: Path) -> None:
    lock = InstanceLock(environ={"XDG_CACHE_HOME": str(tmp_path / "cache")})

    assert lock.resolve_lock_path() == tmp_path / "cache" / "Workbench" / "workbench.lock"


def test_acquire_raises_when_open_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    lock = _make_isolated_lock(tmp_path)

    def failing_open(_self: Path, *args, **kwargs):
        raise OSError("cannot open")

    monkeypatch.setattr(instance_lock_mod.Path, "open", failing_open)

    with pytest.raises(InstanceLockError):
        lock.acquire()


def test_resolve_lock_path_raises_when_directory_cannot_be_created(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    lock = _make_isolated_lock(tmp_path)

    def failing_mkdir(self: Path, *args, **kwargs) -> None:
        raise OSError("mkdir failed")

    monkeypatch.setattr(instance_lock_mod.Path, "mkdir", failing_mkdir)

    with pytest.raises(InstanceLockError):
        lock.resolve_lock_path()


def test_try_acquire_never_raises(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    lock = _make_isolated_lock(tmp_path)

    def failing_mkdir(self: Path, *args, **kwargs) -> None:
        raise OSError("mkdir failed")

    monkeypatch.setattr(instance_lock_mod.Path, "mkdir", failing_mkdir)

    assert lock.try_acquire() is False
    assert "Instance lock unavailable" in caplog.text


def test_acquire_propagates_internal_lock_errors(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    lock = _make_isolated_lock(tmp_path)

    def boom(_fh):
        raise RuntimeError("lock failed")

    name = "_acquire_windows_lock" if os.name == "nt" else "_acquire_posix_lock"
    monkeypatch.setattr(InstanceLock, name, staticmethod(boom))

    with pytest.raises(RuntimeError):
        lock.acquire()
    assert not lock.held
