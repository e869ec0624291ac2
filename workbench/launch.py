"""Launch channel: how a running instance receives redundant launches.

- :class:`LaunchService` interprets a forwarded :class:`LaunchRequest` and
  asks the window layer to open or focus a window.
- :class:`LaunchChannel` exposes the service on the bound server as the
  ``launch`` channel with a single ``start`` command.
- :class:`LaunchChannelClient` is the forwarding side of that channel.
- :func:`plan_window_open` is shared with the first window opened at
  start-up so both paths interpret arguments identically.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .cli import CliArgs, parse_args
from .ipc.channels import Channel, ChannelClient, UnknownCommandError
from .ipc.models import LaunchRequest
from .utils.logger import get_logger

logger = get_logger(__name__)

LAUNCH_CHANNEL = "launch"


@dataclass(frozen=True)
class OpenConfiguration:
    """What the window layer should open for one launch."""

    cli: CliArgs
    arguments: tuple[str, ...] = ()
    paths_to_open: tuple[str, ...] = ()
    force_new_window: bool = False
    prefer_new_window: bool = False
    force_empty: bool = False
    diff_mode: bool = False
    goto_line_mode: bool = False
    user_env: Mapping[str, str] = field(default_factory=dict)


class WindowOpener:
    """Window management capability offered to the coordination core."""

    def open(self, config: OpenConfiguration) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def focus_last_active(self, cli: CliArgs) -> None:  # pragma: no cover - interface
        raise NotImplementedError


def plan_window_open(
    cli: CliArgs,
    *,
    arguments: tuple[str, ...] = (),
    user_env: Optional[Mapping[str, str]] = None,
    first_launch: bool = False,
) -> Optional[OpenConfiguration]:
    """
    Decide how to honour a launch.

    Returns ``None`` when the last active window should simply be focused,
    which only happens for forwarded launches without paths.
    """
    env = dict(user_env or {})
    paths = tuple(cli.path_arguments)

    if not paths and cli.open_new_window:
        return OpenConfiguration(
            cli=cli,
            arguments=arguments,
            force_new_window=True,
            force_empty=True,
            user_env=env,
        )

    if not paths:
        if not first_launch:
            return None
        return OpenConfiguration(cli=cli, arguments=arguments, user_env=env)

    return OpenConfiguration(
        cli=cli,
        arguments=arguments,
        paths_to_open=paths,
        force_new_window=cli.open_new_window,
        prefer_new_window=not first_launch and not cli.open_in_same_window,
        diff_mode=cli.diff_mode,
        goto_line_mode=cli.goto_line_mode,
        user_env=env,
    )


class LaunchService:
    """Receives launches forwarded by redundant processes."""

    def __init__(self, windows: WindowOpener) -> None:
        self._windows = windows

    async def start(self, request: LaunchRequest) -> None:
        arguments = tuple(request.arguments)
        cli = parse_args(arguments, add_help=False)
        logger.info("Received data from other instance: %s", list(arguments))

        config = plan_window_open(
            cli, arguments=arguments, user_env=request.environment
        )
        if config is None:
            self._windows.focus_last_active(cli)
        else:
            self._windows.open(config)


class LaunchChannel(Channel):
    def __init__(self, service: LaunchService) -> None:
        self._service = service

    async def call(self, command: str, arg: Any) -> Any:
        if command == "start":
            await self._service.start(LaunchRequest.model_validate(arg))
            return None
        raise UnknownCommandError(f"Unknown launch command: {command}")


class LaunchChannelClient:
    def __init__(self, client: ChannelClient) -> None:
        self._client = client

    async def start(self, request: LaunchRequest) -> None:
        await self._client.call(LAUNCH_CHANNEL, "start", request.model_dump(mode="json"))
