"""Tests for spawned helper processes"""

import os
import sys
from pathlib import Path

import pytest

from workbench import helper_process
from workbench.helper_process import (
    SHARED_PROCESS_FLAG,
    HelperProcess,
    shared_process_command,
    spawn_helper,
)


def test_helper_exits_when_stdin_closes() -> None:
    helper = spawn_helper(
        [sys.executable, "-c", "import sys; sys.stdin.read()"],
        dict(os.environ),
        name="stdin watcher",
        graceful_timeout=10.0,
    )
    assert helper is not None
    assert helper.alive

    helper.dispose()

    assert not helper.alive


def test_helper_ignoring_stdin_is_terminated() -> None:
    helper = spawn_helper(
        [sys.executable, "-c", "import time; time.sleep(60)"],
        dict(os.environ),
        name="sleeper",
        graceful_timeout=0.5,
    )
    assert helper is not None

    helper.dispose()
    helper.dispose()

    assert not helper.alive


def test_spawn_failure_returns_none(tmp_path: Path) -> None:
    missing = tmp_path / "no-such-binary"

    assert spawn_helper([str(missing)], {}, name="missing") is None


def test_helper_process_wraps_popen() -> None:
    class FakePopen:
        pid = 4242
        stdin = None

        def __init__(self) -> None:
            self.terminated = 0
            self._code = None

        def poll(self):
            return self._code

        def terminate(self) -> None:
            self.terminated += 1
            self._code = -15

        def wait(self, timeout=None):
            return self._code

    popen = FakePopen()
    helper = HelperProcess(popen, "fake")  # type: ignore[arg-type]

    assert helper.pid == 4242
    assert helper.name == "fake"
    helper.dispose()
    helper.dispose()

    assert popen.terminated == 1


def test_shared_process_command_for_source_and_frozen_runs(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(helper_process, "is_frozen", lambda: False)
    assert shared_process_command()[1:] == ["-m", "workbench.shared_process"]

    monkeypatch.setattr(helper_process, "is_frozen", lambda: True)
    assert shared_process_command()[1:] == [SHARED_PROCESS_FLAG]
