from __future__ import annotations

"""
Runtime and platform detection utilities.

This module centralises the logic for determining:

- whether the application runs from a regular Python interpreter or as a
  frozen executable, and
- which desktop platform family the process runs on.

Several start-up policies are platform specific (stale socket handles, dock
presence, the secondary instance lock), so the decision is made in one place
and passed down as a plain value. It is intentionally minimal and side-effect
free so that it can be safely imported from anywhere.
"""

import sys
from enum import Enum, auto


class Platform(Enum):
    """Desktop platform families with distinct start-up behaviour."""

    WINDOWS = auto()
    MACOS = auto()
    LINUX = auto()


def is_frozen() -> bool:
    """
    Return True if the current process is a frozen executable.

    Freezer tools set ``sys.frozen`` on the embedded Python interpreter.
    """
    return bool(getattr(sys, "frozen", False))


def current_platform(platform_name: str | None = None) -> Platform:
    """
    Map ``sys.platform`` (or an explicit value) to a :class:`Platform`.

    Anything that is neither Windows nor macOS is treated as a Linux-like
    POSIX desktop.
    """
    name = platform_name if platform_name is not None else sys.platform
    if name.startswith("win"):
        return Platform.WINDOWS
    if name == "darwin":
        return Platform.MACOS
    return Platform.LINUX
