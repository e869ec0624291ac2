"""Client role of the single-instance protocol: forwarding a launch"""

from __future__ import annotations

import httpx

from .channels import ChannelCallError, ChannelClient, make_transport
from .endpoint import EndpointAddress
from .models import LaunchRequest
from .results import ConnectionRefused, ForwardResult, OtherError, Sent, find_connection_refused
from ..errors import TestSessionConflict
from ..launch import LaunchChannelClient
from ..utils.logger import get_logger

logger = get_logger(__name__)


async def connect_and_forward(
    address: EndpointAddress,
    request: LaunchRequest,
    *,
    testing: bool = False,
    timeout: float = 10.0,
) -> ForwardResult:
    """
    Hand ``request`` to the instance listening on ``address``.

    The HTTP client is closed on every exit path. A refused connection
    anywhere in the transport's cause chain is reported as
    ``ConnectionRefused``: the endpoint exists but nobody listens on it.

    When ``testing`` is set the connection is still made and closed, but
    the launch is never handed off and ``OtherError(TestSessionConflict)`` is
    returned whatever the remote would have done.
    """
    try:
        async with httpx.AsyncClient(
            transport=make_transport(address),
            base_url=address.base_url,
            timeout=timeout,
        ) as http:
            client = ChannelClient(http)
            health = await client.ping()
            logger.debug("Connected to running instance (pid %s)", health.pid)

            if testing:
                conflict = TestSessionConflict()
                logger.error("%s", conflict)
                return OtherError(conflict)

            logger.info("Sending env to running instance...")
            await LaunchChannelClient(client).start(request)
    except httpx.TransportError as exc:
        refused = find_connection_refused(exc)
        if refused is not None:
            return ConnectionRefused(refused)
        return OtherError(exc)
    except (httpx.HTTPError, ChannelCallError, ValueError) as exc:
        return OtherError(exc)

    return Sent()
