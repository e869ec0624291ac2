"""Credential-prompt channel.

Child processes such as git are pointed at a small askpass helper which calls
the ``askpass`` channel of the running instance; the instance asks the user
through a :class:`CredentialPrompter` and sends the answer back.
"""

import asyncio
from typing import Any

from .ipc.channels import Channel, UnknownCommandError
from .ipc.models import AskpassRequest, Credentials
from .utils.logger import get_logger

logger = get_logger(__name__)

ASKPASS_CHANNEL = "askpass"


class CredentialPrompter:
    """Asks the user for credentials."""

    def prompt(self, request: AskpassRequest) -> Credentials:  # pragma: no cover - interface
        raise NotImplementedError


class AskpassService:
    def __init__(self, prompter: CredentialPrompter) -> None:
        self._prompter = prompter

    async def askpass(self, request: AskpassRequest) -> Credentials:
        logger.info("Credential request %s for %s", request.id, request.host)
        # Prompters may block on the user; keep the serving loop responsive.
        return await asyncio.to_thread(self._prompter.prompt, request)


class AskpassChannel(Channel):
    def __init__(self, service: AskpassService) -> None:
        self._service = service

    async def call(self, command: str, arg: Any) -> Any:
        if command == "askpass":
            credentials = await self._service.askpass(AskpassRequest.model_validate(arg))
            return credentials.model_dump()
        raise UnknownCommandError(f"Unknown askpass command: {command}")
