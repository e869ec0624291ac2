"""Tests for launch planning and the launch channel"""

from typing import Any, List

import pytest

from workbench.cli import parse_args
from workbench.ipc.channels import UnknownCommandError
from workbench.ipc.models import LaunchRequest
from workbench.launch import (
    LAUNCH_CHANNEL,
    LaunchChannel,
    LaunchChannelClient,
    LaunchService,
    OpenConfiguration,
    WindowOpener,
    plan_window_open,
)


class RecordingOpener(WindowOpener):
    def __init__(self) -> None:
        self.opened: List[OpenConfiguration] = []
        self.focused: List[Any] = []

    def open(self, config: OpenConfiguration) -> None:
        self.opened.append(config)

    def focus_last_active(self, cli) -> None:
        self.focused.append(cli)


def test_new_window_flag_without_paths_opens_empty_window() -> None:
    config = plan_window_open(parse_args(["-n"]))

    assert config is not None
    assert config.force_new_window is True
    assert config.force_empty is True
    assert config.paths_to_open == ()


def test_forwarded_launch_without_paths_focuses() -> None:
    assert plan_window_open(parse_args([])) is None


def test_first_launch_without_paths_opens_default_window() -> None:
    config = plan_window_open(parse_args([]), first_launch=True)

    assert config is not None
    assert config.force_new_window is False
    assert config.force_empty is False


def test_paths_honour_reuse_window_and_diff() -> None:
    reuse = plan_window_open(parse_args(["-r", "a.txt"]))
    diff = plan_window_open(parse_args(["--diff", "a.txt", "b.txt"]), user_env={"X": "1"})

    assert reuse is not None and reuse.prefer_new_window is False
    assert diff is not None
    assert diff.diff_mode is True
    assert diff.paths_to_open == ("a.txt", "b.txt")
    assert dict(diff.user_env) == {"X": "1"}


def test_first_launch_with_paths_does_not_prefer_new_window() -> None:
    config = plan_window_open(parse_args(["a.txt"]), first_launch=True)

    assert config is not None
    assert config.prefer_new_window is False


@pytest.mark.asyncio
async def test_launch_channel_start_opens_paths() -> None:
    opener = RecordingOpener()
    channel = LaunchChannel(LaunchService(opener))

    await channel.call("start", {"arguments": ["-g", "main.py:12"], "environment": {}})

    assert len(opener.opened) == 1
    assert opener.opened[0].goto_line_mode is True
    assert opener.opened[0].paths_to_open == ("main.py:12",)


@pytest.mark.asyncio
async def test_launch_channel_rejects_unknown_command_and_bad_payload() -> None:
    channel = LaunchChannel(LaunchService(RecordingOpener()))

    with pytest.raises(UnknownCommandError):
        await channel.call("stop", None)
    with pytest.raises(ValueError):
        await channel.call("start", {"arguments": "not-a-list"})


@pytest.mark.asyncio
async def test_launch_channel_client_posts_request() -> None:
    calls = []

    class FakeChannelClient:
        async def call(self, channel, command, arg=None):
            calls.append((channel, command, arg))

    request = LaunchRequest(arguments=["a.txt"], environment={"A": "1"})
    await LaunchChannelClient(FakeChannelClient()).start(request)  # type: ignore[arg-type]

    assert calls == [
        (LAUNCH_CHANNEL, "start", {"arguments": ["a.txt"], "environment": {"A": "1"}})
    ]
