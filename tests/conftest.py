"""Pytest configuration and fixtures"""

import shutil
import tempfile
from pathlib import Path

import pytest

from workbench.config import AppConfig, set_config
from workbench.ipc.endpoint import EndpointAddress


@pytest.fixture
def short_tmp() -> Path:
    """
    Short temporary directory for socket files.

    pytest's tmp_path can exceed the ~107 byte limit of an AF_UNIX path.
    """
    path = Path(tempfile.mkdtemp(prefix="wb-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def socket_address(short_tmp: Path) -> EndpointAddress:
    """Unix socket endpoint inside a short temp directory"""
    return EndpointAddress(path=short_tmp / "main.sock")


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Point configuration at an empty file and reset the global config."""
    monkeypatch.setenv("WORKBENCH_CONFIG", str(tmp_path / "config.yaml"))
    set_config(AppConfig())
    yield
    set_config(None)
