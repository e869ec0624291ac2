"""Tests for forwarding a launch to a running instance over a real socket.

A BoundServer is started in-process (uvicorn in a background thread) with
the real launch channel; connect_and_forward() then talks to it exactly like
a second process would.
"""

import socket
import threading
from typing import List

import pytest

from workbench.bootstrap import InstanceBootstrap
from workbench.errors import LaunchHandedOff, TestSessionConflict
from workbench.ipc.cleaner import remove_stale_handle
from workbench.ipc.client import connect_and_forward
from workbench.ipc.endpoint import EndpointAddress
from workbench.ipc.models import LaunchRequest
from workbench.ipc.results import Bound, ConnectionRefused, OtherError, Sent
from workbench.ipc.server import BoundServer, bind_endpoint
from workbench.launch import LAUNCH_CHANNEL, LaunchChannel, LaunchService, OpenConfiguration, WindowOpener

pytestmark = pytest.mark.skipif(
    not hasattr(socket, "AF_UNIX"), reason="AF_UNIX sockets are not available"
)


class RecordingOpener(WindowOpener):
    def __init__(self) -> None:
        self.opened: List[OpenConfiguration] = []
        self.focused = 0
        self._lock = threading.Lock()

    def open(self, config: OpenConfiguration) -> None:
        with self._lock:
            self.opened.append(config)

    def focus_last_active(self, cli) -> None:
        with self._lock:
            self.focused += 1


def _serve(address: EndpointAddress, opener: WindowOpener) -> BoundServer:
    result = bind_endpoint(address, version="1.4.0")
    assert isinstance(result, Bound)
    server = result.server
    server.register_channel(LAUNCH_CHANNEL, LaunchChannel(LaunchService(opener)))
    server.start()
    assert server.wait_until_ready(timeout=10.0)
    return server


def _leave_stale_handle(address: EndpointAddress) -> None:
    dead = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    dead.bind(str(address.path))
    dead.close()


@pytest.mark.asyncio
async def test_diff_launch_is_handled_once_with_exact_arguments(
    socket_address: EndpointAddress,
) -> None:
    opener = RecordingOpener()
    server = _serve(socket_address, opener)
    request = LaunchRequest(
        arguments=["--diff", "a.txt", "b.txt"], environment={"LANG": "C.UTF-8"}
    )
    try:
        result = await connect_and_forward(socket_address, request, timeout=5.0)
    finally:
        server.dispose()

    assert isinstance(result, Sent)
    assert len(opener.opened) == 1
    config = opener.opened[0]
    assert config.arguments == ("--diff", "a.txt", "b.txt")
    assert config.paths_to_open == ("a.txt", "b.txt")
    assert config.diff_mode is True
    assert config.prefer_new_window is True
    assert config.user_env == {"LANG": "C.UTF-8"}
    assert opener.focused == 0


@pytest.mark.asyncio
async def test_launch_without_paths_focuses_last_window(socket_address: EndpointAddress) -> None:
    opener = RecordingOpener()
    server = _serve(socket_address, opener)
    try:
        result = await connect_and_forward(socket_address, LaunchRequest(), timeout=5.0)
    finally:
        server.dispose()

    assert isinstance(result, Sent)
    assert opener.opened == []
    assert opener.focused == 1


@pytest.mark.asyncio
async def test_test_session_never_hands_off(socket_address: EndpointAddress) -> None:
    opener = RecordingOpener()
    server = _serve(socket_address, opener)
    try:
        result = await connect_and_forward(
            socket_address, LaunchRequest(arguments=["x.txt"]), testing=True, timeout=5.0
        )
    finally:
        server.dispose()

    assert isinstance(result, OtherError)
    assert isinstance(result.cause, TestSessionConflict)
    assert opener.opened == []


@pytest.mark.asyncio
async def test_stale_socket_file_refuses_connection(socket_address: EndpointAddress) -> None:
    _leave_stale_handle(socket_address)

    result = await connect_and_forward(socket_address, LaunchRequest(), timeout=5.0)

    assert isinstance(result, ConnectionRefused)


@pytest.mark.asyncio
async def test_missing_socket_file_is_other_error(socket_address: EndpointAddress) -> None:
    result = await connect_and_forward(socket_address, LaunchRequest(), timeout=5.0)

    assert isinstance(result, OtherError)


@pytest.mark.asyncio
async def test_bootstrap_recovers_from_stale_handle(socket_address: EndpointAddress) -> None:
    _leave_stale_handle(socket_address)

    bootstrap = InstanceBootstrap(
        socket_address,
        LaunchRequest(arguments=["a.txt"]),
        binder=bind_endpoint,
        forwarder=connect_and_forward,
        cleaner=remove_stale_handle,
    )
    server = await bootstrap.run()
    try:
        assert isinstance(server, BoundServer)
        assert server.address == socket_address
    finally:
        server.dispose()


@pytest.mark.asyncio
async def test_second_bootstrap_hands_off_to_first(socket_address: EndpointAddress) -> None:
    opener = RecordingOpener()
    server = _serve(socket_address, opener)
    bootstrap = InstanceBootstrap(
        socket_address,
        LaunchRequest(arguments=["notes.md"]),
        binder=bind_endpoint,
        forwarder=connect_and_forward,
        cleaner=remove_stale_handle,
    )
    try:
        with pytest.raises(LaunchHandedOff):
            await bootstrap.run()
    finally:
        server.dispose()

    assert [c.paths_to_open for c in opener.opened] == [("notes.md",)]
