from __future__ import annotations

"""
Workbench entrypoint and composition root.

Start-up runs in two phases:

1. :meth:`WorkbenchApplication.acquire_instance` (async) imports the user
   environment and drives :class:`~workbench.bootstrap.InstanceBootstrap`.
   Either this process becomes the primary instance and receives the bound
   server, or the launch is handed to the running instance and a
   :class:`~workbench.errors.BootstrapError` ends start-up.
2. :meth:`WorkbenchApplication.run_primary` registers the channels, starts
   serving, spawns the shared helper process, takes the secondary instance
   lock, installs the :class:`~workbench.lifecycle.LifecycleGuard` and runs
   the Qt event loop.

No Qt object exists before phase 1 has returned a bound server, so a
redundant launch never creates a window or a dock icon.

    python -m workbench [paths...] [-n|-r] [-d] [-g] [--verbose]
"""

import asyncio
import functools
import os
import sys
import time
from typing import Any, Callable, MutableMapping, Optional, Sequence

from . import __version__
from .askpass import ASKPASS_CHANNEL, AskpassChannel, AskpassService
from .bootstrap import InstanceBootstrap
from .cli import CliArgs, CliUsageError, parse_args
from .config import AppConfig, get_config
from .environment import (
    build_process_environment,
    export_instance_hooks,
    get_user_environment,
)
from .errors import EXIT_FATAL, BindFailed, BootstrapError
from .helper_process import SHARED_PROCESS_FLAG, spawn_shared_process
from .instance_lock import InstanceLock
from .ipc.cleaner import remove_stale_handle
from .ipc.client import connect_and_forward
from .ipc.endpoint import format_hook, main_endpoint, shared_endpoint
from .ipc.models import LaunchRequest
from .ipc.server import BoundServer, bind_endpoint
from .launch import LAUNCH_CHANNEL, LaunchChannel, LaunchService, plan_window_open
from .lifecycle import LIFECYCLE_CHANNEL, LifecycleChannel, LifecycleGuard, PlatformPresence
from .utils.logger import get_logger, setup_logging, write_crash_log
from .utils.runtime import Platform, current_platform

logger = get_logger(__name__)


def quit_with(error: BootstrapError) -> int:
    """
    Report the condition that ended start-up and return its exit code.

    Benign terminations (the launch was handed off) are logged at info level;
    anything else is logged with its traceback and appended to the crash log.
    """
    if error.benign:
        logger.info("%s", error)
        return error.exit_code

    logger.error("%s", error, exc_info=(type(error), error, error.__traceback__))
    write_crash_log(f"[main] Start-up failed: {error}", error)
    return error.exit_code


def _create_shell(argv: list[str], platform: Platform, on_will_quit: Callable[[], None]):
    # PySide6 is imported only once this process is the primary instance.
    from .shell import QtShell, create_application

    app = create_application(argv, platform)
    return app, QtShell(app, on_will_quit)


class WorkbenchApplication:
    """Top-level start-up orchestrator."""

    def __init__(
        self,
        cli: CliArgs,
        argv: Sequence[str],
        *,
        config: Optional[AppConfig] = None,
        environ: Optional[MutableMapping[str, str]] = None,
        platform: Optional[Platform] = None,
    ) -> None:
        self._cli = cli
        self._argv = list(argv)
        self._config = config or get_config()
        self._environ = environ if environ is not None else os.environ
        self._platform = platform or current_platform()
        self._presence = PlatformPresence(self._platform)
        self._user_env: dict[str, str] = {}

    @property
    def presence(self) -> PlatformPresence:
        return self._presence

    # -------------------- phase 1 --------------------------------------------

    async def acquire_instance(self) -> BoundServer:
        """Become the primary instance or raise a :class:`BootstrapError`."""
        user_env = await get_user_environment(self._environ, self._platform)
        self._user_env = build_process_environment(self._environ, user_env)

        ipc = self._config.ipc
        address = main_endpoint(
            ipc.product_id, __version__, environ=self._environ, platform=self._platform
        )
        logger.debug("Main endpoint: %s", address)

        request = LaunchRequest(arguments=self._argv, environment=dict(self._environ))
        bootstrap = InstanceBootstrap(
            address,
            request,
            binder=functools.partial(bind_endpoint, backlog=ipc.backlog, version=__version__),
            forwarder=functools.partial(
                connect_and_forward,
                testing=self._cli.is_testing_from_cli,
                timeout=ipc.request_timeout,
            ),
            cleaner=remove_stale_handle,
            cleanup_stale_handles=ipc.cleanup_stale_handles,
            presence=self._presence,
        )
        return await bootstrap.run()

    # -------------------- phase 2 --------------------------------------------

    def run_primary(self, server: BoundServer) -> int:
        """Main routine of the primary instance; returns the exit code."""
        shell: Any = None

        def _exit(code: int) -> None:
            if shell is not None:
                shell.quit(code)

        guard = LifecycleGuard(on_exit=_exit)
        guard.adopt(server=server)

        try:
            app, shell = _create_shell(sys.argv[:1], self._platform, guard.on_will_quit)
            self._presence.attach(shell)

            server.register_channel(LAUNCH_CHANNEL, LaunchChannel(LaunchService(shell)))
            server.register_channel(ASKPASS_CHANNEL, AskpassChannel(AskpassService(shell)))
            server.register_channel(LIFECYCLE_CHANNEL, LifecycleChannel(guard))
            server.start()
            if not server.wait_until_ready(timeout=self._config.ipc.ready_timeout):
                raise BindFailed(f"IPC server on {server.address} did not start serving")

            self._start_helpers(server, guard)

            guard.install_fault_handlers()
            shell.ready(self._user_env)

            first_window = plan_window_open(
                self._cli,
                arguments=tuple(self._argv),
                user_env=self._user_env,
                first_launch=True,
            )
            if first_window is not None:
                shell.open(first_window)

            code = app.exec()
            logger.info("Qt event loop exited with code %s", code)
            return code
        except BootstrapError as exc:
            return quit_with(exc)
        finally:
            guard.uninstall_fault_handlers()
            guard.dispose()

    def _start_helpers(self, server: BoundServer, guard: LifecycleGuard) -> None:
        config = self._config
        shared = shared_endpoint(
            config.ipc.product_id, __version__, environ=self._environ, platform=self._platform
        )
        export_instance_hooks(
            self._environ,
            pid=os.getpid(),
            main_hook=format_hook(server.address),
            shared_hook=format_hook(shared),
        )

        if config.helper.enabled:
            helper = spawn_shared_process(
                self._environ, graceful_timeout=config.helper.terminate_timeout
            )
            if helper is not None:
                guard.adopt(helper=helper)

        if config.instance_lock.enabled:
            lock = InstanceLock(product_id=config.ipc.product_id, environ=self._environ)
            if lock.try_acquire():
                guard.adopt(instance_lock=lock)

    # -------------------- entry ----------------------------------------------

    def run(self) -> int:
        try:
            server = asyncio.run(self.acquire_instance())
        except BootstrapError as exc:
            return quit_with(exc)
        return self.run_primary(server)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if args[:1] == [SHARED_PROCESS_FLAG]:
        from .shared_process import main as shared_process_main

        return shared_process_main()

    program_start = time.time()
    try:
        cli = parse_args(args, program_start=program_start)
    except CliUsageError as exc:
        setup_logging()
        logger.error("Invalid command line: %s", exc)
        return EXIT_FATAL

    setup_logging("DEBUG" if cli.verbose else None)
    logger.debug("Workbench %s starting with %s", __version__, args)
    try:
        return WorkbenchApplication(cli, args).run()
    except Exception as exc:  # noqa: BLE001
        logger.exception("[uncaught exception in main]: %s", exc)
        write_crash_log("[main] FATAL exception during start-up", exc)
        return EXIT_FATAL


def run() -> None:
    """Console-script entrypoint."""
    raise SystemExit(main())


if __name__ == "__main__":
    run()
