"""
Process environment assembly.

The environment is read once at start-up and then only amended here:

- :func:`get_user_environment` imports the user's login-shell environment.
  A macOS application started from Finder or the Dock inherits a minimal
  launchd environment (no PATH additions from shell profiles), so the login
  shell is asked for its environment instead. Launches from a terminal
  already have it.
- :func:`build_process_environment` merges that into the process
  environment.
- :func:`export_instance_hooks` adds the WORKBENCH_* values children use to
  reach the primary instance.
"""

from __future__ import annotations

import asyncio
from typing import Mapping, MutableMapping, Optional

from .utils.logger import get_logger
from .utils.runtime import Platform

logger = get_logger(__name__)

NLS_CONFIG_KEY = "WORKBENCH_NLS_CONFIG"

# Variables that describe the shell invocation rather than the user's setup.
_IGNORED_SHELL_KEYS = frozenset({"_", "SHLVL", "PWD", "OLDPWD"})


def launched_from_terminal(environ: Mapping[str, str]) -> bool:
    return bool(environ.get("TERM") or environ.get("WORKBENCH_CLI"))


def parse_env_output(raw: bytes) -> dict[str, str]:
    """Parse NUL-separated ``env -0`` output."""
    result: dict[str, str] = {}
    for entry in raw.split(b"\0"):
        if not entry or b"=" not in entry:
            continue
        key, _, value = entry.partition(b"=")
        name = key.decode("utf-8", errors="replace")
        if name in _IGNORED_SHELL_KEYS:
            continue
        result[name] = value.decode("utf-8", errors="replace")
    return result


async def read_login_shell_environment(shell: str, timeout: float = 10.0) -> dict[str, str]:
    """Run ``shell -ilc 'env -0'`` and return the environment it reports."""
    proc = await asyncio.create_subprocess_exec(
        shell,
        "-ilc",
        "env -0",
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    if proc.returncode != 0:
        raise OSError(f"{shell} exited with status {proc.returncode}")
    return parse_env_output(stdout)


async def get_user_environment(
    environ: Mapping[str, str], platform: Platform
) -> dict[str, str]:
    """
    Return the user environment to merge into this process.

    Empty unless this is a macOS GUI launch. Failures are logged and yield
    an empty mapping, so start-up continues with the inherited environment.
    """
    if platform is not Platform.MACOS or launched_from_terminal(environ):
        return {}

    shell = environ.get("SHELL") or "/bin/zsh"
    try:
        return await read_login_shell_environment(shell)
    except (OSError, asyncio.TimeoutError) as exc:
        logger.warning("Unable to read login shell environment from %s: %s", shell, exc)
        return {}


def build_process_environment(
    environ: MutableMapping[str, str],
    user_env: Mapping[str, str],
) -> dict[str, str]:
    """
    Merge ``user_env`` into ``environ`` (in place) and return the user
    environment that travels to windows, with the NLS configuration kept.
    """
    environ.update(user_env)
    propagated = dict(user_env)
    nls_config: Optional[str] = environ.get(NLS_CONFIG_KEY)
    if nls_config is not None:
        propagated[NLS_CONFIG_KEY] = nls_config
    return propagated


def export_instance_hooks(
    environ: MutableMapping[str, str],
    *,
    pid: int,
    main_hook: str,
    shared_hook: str,
) -> None:
    """Publish how child processes reach the primary instance."""
    environ["WORKBENCH_PID"] = str(pid)
    environ["WORKBENCH_IPC_HOOK"] = main_hook
    environ["WORKBENCH_SHARED_IPC_HOOK"] = shared_hook

