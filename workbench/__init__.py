"""Workbench desktop application"""

from __future__ import annotations

from pathlib import Path

PRODUCT_NAME = "Workbench"


def _load_version() -> str:
    """
    Load the application version.

    Resolution order:
    1. Source tree / editable install:
       - ../VERSION relative to workbench/__init__.py
    2. Installed distribution metadata (``workbench-desktop``).
    3. Frozen runtime:
       - VERSION next to the running executable (sys.executable / sys.argv[0])

    If all lookups fail, falls back to "0.0.0".
    """
    try:
        version_file = Path(__file__).resolve().parents[1] / "VERSION"
        if version_file.exists():
            return version_file.read_text(encoding="utf-8").strip()
    except OSError:
        pass

    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("workbench-desktop")
    except PackageNotFoundError:
        pass

    try:
        import sys

        exe_path = Path(getattr(sys, "frozen", False) and sys.executable or sys.argv[0])
        version_file = exe_path.resolve().parent / "VERSION"
        if version_file.exists():
            return version_file.read_text(encoding="utf-8").strip()
    except OSError:
        pass

    return "0.0.0"


__version__ = _load_version()
