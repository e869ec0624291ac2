"""Shared helper process.

Started by the primary instance after it has bound the main endpoint. It
owns the shared endpoint (``WORKBENCH_SHARED_IPC_HOOK``), answers a ``ping``
channel so windows can check it is alive, and exits when its parent goes
away, which it notices as EOF on stdin.

    python -m workbench.shared_process
"""

from __future__ import annotations

import os
import sys
from typing import Any, Optional

from . import __version__
from .ipc.channels import Channel, UnknownCommandError
from .ipc.cleaner import remove_stale_handle
from .ipc.endpoint import EndpointAddress, parse_hook
from .ipc.results import AddressInUse, Bound, OtherError
from .ipc.server import BoundServer, bind_endpoint
from .utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

PING_CHANNEL = "ping"


class PingChannel(Channel):
    async def call(self, command: str, arg: Any) -> Any:
        if command == "ping":
            return {"pid": os.getpid(), "parent": os.environ.get("WORKBENCH_PID")}
        raise UnknownCommandError(f"Unknown ping command: {command}")


def bind_shared_endpoint(address: EndpointAddress) -> Optional[BoundServer]:
    """
    Bind the shared endpoint, clearing a leftover socket file once.

    Only the single primary instance starts a shared process, so a conflict
    here can only be a handle left by a previous crash.
    """
    result = bind_endpoint(address, version=__version__)
    if isinstance(result, AddressInUse):
        cleaned = remove_stale_handle(address)
        if isinstance(cleaned, OtherError):
            logger.error("Cannot remove stale shared handle %s: %s", address, cleaned.cause)
            return None
        result = bind_endpoint(address, version=__version__)

    if isinstance(result, Bound):
        return result.server
    if isinstance(result, OtherError):
        logger.error("Shared process cannot bind %s: %s", address, result.cause)
    else:
        logger.error("Shared endpoint %s is still in use", address)
    return None


def wait_for_parent_exit() -> None:
    """Block until stdin reaches EOF (the parent closed it or died)."""
    stream = sys.stdin.buffer if sys.stdin is not None else None
    if stream is None:
        return
    while stream.read(4096):
        pass


def main() -> int:
    setup_logging()
    hook = os.environ.get("WORKBENCH_SHARED_IPC_HOOK")
    if not hook:
        logger.error("WORKBENCH_SHARED_IPC_HOOK is not set; refusing to start")
        return 1

    server = bind_shared_endpoint(parse_hook(hook))
    if server is None:
        return 1

    try:
        server.register_channel(PING_CHANNEL, PingChannel())
        server.start()
        if not server.wait_until_ready():
            return 1
        logger.info("Shared process ready on %s", server.address)
        wait_for_parent_exit()
    finally:
        server.dispose()

    logger.info("Shared process exiting")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
