from __future__ import annotations

"""
Start-up state machine that makes this process the single instance or hands
its launch to the instance that already is.

    Start -> Binding -> Bound
                     -> AddressInUse -> Forwarding -> Terminating (sent)
                                                   -> StaleDetected -> Cleaning -> Binding (once)
                                                   -> Fatal

Each step starts only after the previous result is known. A refused
connection means the socket file outlived its owner; it is removed and
binding is retried exactly once per process. A second failure of any kind is
fatal, so a handle that cannot be fixed never causes a retry loop.

The binder, forwarder and cleaner are injected so the composition root can
bind the real transport and tests can script every branch.
"""

from enum import Enum, auto
from typing import Awaitable, Callable, Optional, Protocol

from .errors import (
    BindFailed,
    BootstrapError,
    ForwardFailed,
    HandleRemovalFailed,
    LaunchHandedOff,
    RetryExhausted,
)
from .ipc.endpoint import EndpointAddress
from .ipc.models import LaunchRequest
from .ipc.results import (
    AddressInUse,
    BindResult,
    Bound,
    CleanupResult,
    ConnectionRefused,
    ForwardResult,
    OtherError,
    Sent,
)
from .ipc.server import BoundServer
from .utils.logger import get_logger

logger = get_logger(__name__)

Binder = Callable[[EndpointAddress], BindResult]
Forwarder = Callable[[EndpointAddress, LaunchRequest], Awaitable[ForwardResult]]
Cleaner = Callable[[EndpointAddress], CleanupResult]


class BootstrapState(Enum):
    START = auto()
    BINDING = auto()
    BOUND = auto()
    ADDRESS_IN_USE = auto()
    FORWARDING = auto()
    TERMINATING = auto()
    STALE_DETECTED = auto()
    CLEANING = auto()
    FATAL = auto()


class PresenceHook(Protocol):
    def show(self) -> None: ...

    def hide(self) -> None: ...


class RetryBudget:
    """One stale-handle cleanup cycle per process lifetime."""

    def __init__(self) -> None:
        self._available = True

    @property
    def available(self) -> bool:
        return self._available

    def consume(self) -> bool:
        """Use the budget; False if it was already spent."""
        if not self._available:
            return False
        self._available = False
        return True


class InstanceBootstrap:
    """Drives bind / forward / clean / retry for one process start."""

    def __init__(
        self,
        address: EndpointAddress,
        request: LaunchRequest,
        *,
        binder: Binder,
        forwarder: Forwarder,
        cleaner: Cleaner,
        cleanup_stale_handles: bool = True,
        presence: Optional[PresenceHook] = None,
        retry_budget: Optional[RetryBudget] = None,
    ) -> None:
        self._address = address
        self._request = request
        self._binder = binder
        self._forwarder = forwarder
        self._cleaner = cleaner
        self._cleanup_stale_handles = cleanup_stale_handles
        self._presence = presence
        self._budget = retry_budget or RetryBudget()
        self.history: list[BootstrapState] = []

    @property
    def state(self) -> Optional[BootstrapState]:
        return self.history[-1] if self.history else None

    def _enter(self, state: BootstrapState) -> None:
        self.history.append(state)
        logger.debug("Bootstrap state -> %s", state.name)

    def _fail(self, error: BootstrapError, cause: Optional[BaseException] = None) -> BootstrapError:
        self._enter(BootstrapState.FATAL)
        if cause is not None and error.__cause__ is None:
            error.__cause__ = cause
        return error

    async def run(self) -> BoundServer:
        """
        Return the bound server, or raise a :class:`BootstrapError`.

        A successful hand-off is raised as :class:`LaunchHandedOff` so the
        rest of start-up is skipped; its exit code is 0.
        """
        self._enter(BootstrapState.START)

        while True:
            self._enter(BootstrapState.BINDING)
            bind_result = self._binder(self._address)

            if isinstance(bind_result, Bound):
                self._enter(BootstrapState.BOUND)
                if self._presence is not None:
                    # The dock may have been hidden by a previous attempt.
                    self._presence.show()
                return bind_result.server

            if isinstance(bind_result, OtherError):
                raise self._fail(
                    BindFailed(f"Unable to bind {self._address}: {bind_result.cause}"),
                    bind_result.cause,
                )

            if not isinstance(bind_result, AddressInUse):
                raise self._fail(BindFailed(f"Unexpected bind result: {bind_result!r}"))

            if not self._budget.available:
                raise self._fail(
                    RetryExhausted(
                        f"Endpoint {self._address} still in use after removing a stale handle"
                    )
                )

            self._enter(BootstrapState.ADDRESS_IN_USE)
            if self._presence is not None:
                # Second instance: no dock presence.
                self._presence.hide()

            self._enter(BootstrapState.FORWARDING)
            forward_result = await self._forwarder(self._address, self._request)

            if isinstance(forward_result, Sent):
                self._enter(BootstrapState.TERMINATING)
                raise LaunchHandedOff()

            if isinstance(forward_result, OtherError):
                cause = forward_result.cause
                if isinstance(cause, BootstrapError):
                    raise self._fail(cause)
                raise self._fail(
                    ForwardFailed(f"Unable to reach running instance at {self._address}: {cause}"),
                    cause,
                )

            if not isinstance(forward_result, ConnectionRefused):
                raise self._fail(ForwardFailed(f"Unexpected forward result: {forward_result!r}"))

            self._enter(BootstrapState.STALE_DETECTED)
            if not self._cleanup_stale_handles:
                raise self._fail(
                    ForwardFailed(
                        f"Connection to {self._address} refused; stale handle cleanup is disabled"
                    ),
                    forward_result.cause,
                )

            if not self._budget.consume():
                raise self._fail(RetryExhausted(f"Stale handle at {self._address} persists"))

            # Left behind by an instance that died without cleaning up.
            self._enter(BootstrapState.CLEANING)
            clean_result = self._cleaner(self._address)
            if isinstance(clean_result, OtherError):
                logger.error(
                    "Fatal error deleting obsolete instance handle %s: %s",
                    self._address,
                    clean_result.cause,
                )
                raise self._fail(
                    HandleRemovalFailed(
                        f"Unable to remove stale handle {self._address}: {clean_result.cause}"
                    ),
                    clean_result.cause,
                )
