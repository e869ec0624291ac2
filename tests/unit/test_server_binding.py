"""Tests for binding the local endpoint and owning it through BoundServer"""

import socket
import threading
from pathlib import Path

import pytest

from workbench.ipc.channels import Channel
from workbench.ipc.endpoint import EndpointAddress
from workbench.ipc.results import AddressInUse, Bound, OtherError
from workbench.ipc.server import bind_endpoint

requires_unix_sockets = pytest.mark.skipif(
    not hasattr(socket, "AF_UNIX"), reason="AF_UNIX sockets are not available"
)


class NullChannel(Channel):
    async def call(self, command, arg):
        return None


@requires_unix_sockets
def test_second_bind_reports_address_in_use(socket_address: EndpointAddress) -> None:
    first = bind_endpoint(socket_address)
    assert isinstance(first, Bound)
    try:
        second = bind_endpoint(socket_address)
        assert isinstance(second, AddressInUse)
    finally:
        first.server.dispose()


@requires_unix_sockets
def test_exactly_one_of_racing_binds_wins(socket_address: EndpointAddress) -> None:
    barrier = threading.Barrier(2)
    results = []

    def _race() -> None:
        barrier.wait()
        results.append(bind_endpoint(socket_address))

    threads = [threading.Thread(target=_race) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    bound = [r for r in results if isinstance(r, Bound)]
    in_use = [r for r in results if isinstance(r, AddressInUse)]
    try:
        assert len(bound) == 1
        assert len(in_use) == 1
    finally:
        for r in bound:
            r.server.dispose()


@requires_unix_sockets
def test_leftover_socket_file_is_reported_as_in_use(socket_address: EndpointAddress) -> None:
    # A process that died without cleaning up leaves its socket file behind.
    dead = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    dead.bind(str(socket_address.path))
    dead.close()
    assert socket_address.path.exists()

    assert isinstance(bind_endpoint(socket_address), AddressInUse)


@requires_unix_sockets
def test_bind_in_unwritable_location_is_other_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")

    result = bind_endpoint(EndpointAddress(path=blocker / "main.sock"))

    assert isinstance(result, OtherError)
    assert isinstance(result.cause, OSError)


def test_tcp_port_conflict_is_address_in_use() -> None:
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    holder.bind(("127.0.0.1", 0))
    holder.listen(1)
    try:
        port = holder.getsockname()[1]
        assert isinstance(bind_endpoint(EndpointAddress(port=port)), AddressInUse)
    finally:
        holder.close()


@requires_unix_sockets
def test_channels_must_be_registered_before_start(socket_address: EndpointAddress) -> None:
    result = bind_endpoint(socket_address, version="9.9.9")
    assert isinstance(result, Bound)
    server = result.server
    try:
        server.register_channel("null", NullChannel())
        server.start()
        assert server.wait_until_ready(timeout=10.0)
        assert server.serving
        assert server.channel_names() == ["null"]

        with pytest.raises(RuntimeError):
            server.register_channel("late", NullChannel())
    finally:
        server.dispose()


@requires_unix_sockets
def test_dispose_is_idempotent_and_removes_socket_file(socket_address: EndpointAddress) -> None:
    result = bind_endpoint(socket_address)
    assert isinstance(result, Bound)
    server = result.server
    server.start()
    assert server.wait_until_ready(timeout=10.0)

    server.dispose()
    server.dispose()

    assert server.disposed
    assert not socket_address.path.exists()
    with pytest.raises(RuntimeError):
        server.register_channel("null", NullChannel())

    # The endpoint is free again.
    again = bind_endpoint(socket_address)
    assert isinstance(again, Bound)
    again.server.dispose()


@requires_unix_sockets
def test_dispose_before_start_closes_socket(socket_address: EndpointAddress) -> None:
    result = bind_endpoint(socket_address)
    assert isinstance(result, Bound)

    result.server.dispose()

    assert not socket_address.path.exists()
    again = bind_endpoint(socket_address)
    assert isinstance(again, Bound)
    again.server.dispose()
