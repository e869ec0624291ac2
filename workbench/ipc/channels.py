"""Named channels served on the local endpoint.

A channel is an object with an async ``call(command, arg)`` method. All
channels of one server share a single HTTP ingress,
``POST /channels/{channel}/{command}``, which validates the body, looks the
channel up in the registry and returns a :class:`ChannelReply` as the
acknowledgement. Clients use :class:`ChannelClient`, a thin wrapper over an
``httpx.AsyncClient`` bound to the endpoint.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, Optional

import httpx
from fastapi import FastAPI, HTTPException

from .endpoint import EndpointAddress
from .models import ChannelCall, ChannelReply, HealthResponse
from ..utils.logger import get_logger

logger = get_logger(__name__)


class UnknownCommandError(Exception):
    """Raised by a channel for a command it does not implement."""


class ChannelCallError(Exception):
    """Raised by :class:`ChannelClient` when the remote reports a failure."""

    def __init__(self, channel: str, command: str, status_code: int, detail: str) -> None:
        super().__init__(f"{channel}.{command} failed with {status_code}: {detail}")
        self.channel = channel
        self.command = command
        self.status_code = status_code
        self.detail = detail


class Channel(ABC):
    """Server side of a named channel"""

    @abstractmethod
    async def call(self, command: str, arg: Any) -> Any:
        """Handle ``command`` with ``arg`` and return a JSON-serialisable result."""


class ChannelRegistry:
    """Name -> channel mapping; frozen once the server starts serving."""

    def __init__(self) -> None:
        self._channels: Dict[str, Channel] = {}
        self._frozen = False

    def register(self, name: str, channel: Channel) -> None:
        if self._frozen:
            raise RuntimeError(
                f"Cannot register channel {name!r}: the server is already serving"
            )
        if name in self._channels:
            raise ValueError(f"Channel {name!r} is already registered")
        self._channels[name] = channel
        logger.debug("Registered channel %s", name)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Optional[Channel]:
        return self._channels.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._channels

    def __iter__(self) -> Iterator[str]:
        return iter(self._channels)


def create_channel_app(registry: ChannelRegistry, version: Optional[str] = None) -> FastAPI:
    """Build the ASGI application serving ``registry``."""
    app = FastAPI(
        title="Workbench IPC",
        version=version or "0.0.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.registry = registry

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(pid=os.getpid(), version=version)

    @app.post("/channels/{channel}/{command}", response_model=ChannelReply)
    async def call_channel(channel: str, command: str, body: ChannelCall) -> ChannelReply:
        handler = registry.get(channel)
        if handler is None:
            raise HTTPException(status_code=404, detail=f"Unknown channel: {channel}")
        try:
            result = await handler.call(command, body.arg)
        except UnknownCommandError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            # pydantic.ValidationError is a ValueError
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return ChannelReply(result=result)

    return app


def make_transport(address: EndpointAddress) -> httpx.AsyncHTTPTransport:
    """HTTP transport connecting to ``address``."""
    if address.path is not None:
        return httpx.AsyncHTTPTransport(uds=str(address.path))
    return httpx.AsyncHTTPTransport()


class ChannelClient:
    """Client side of the channel ingress"""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def ping(self) -> HealthResponse:
        resp = await self._http.get("/health")
        resp.raise_for_status()
        return HealthResponse.model_validate(resp.json())

    async def call(self, channel: str, command: str, arg: Any = None) -> Any:
        resp = await self._http.post(
            f"/channels/{channel}/{command}",
            json=ChannelCall(arg=arg).model_dump(mode="json"),
        )
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise ChannelCallError(channel, command, resp.status_code, str(detail))
        return ChannelReply.model_validate(resp.json()).result
