"""Tagged outcomes of bind, connect and cleanup attempts.

The orchestrator branches on these with ``isinstance``; an expected
condition such as a conflicting listener is a value, not an exception.
"""

from __future__ import annotations

import errno
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterator, Union

if TYPE_CHECKING:
    from .server import BoundServer


@dataclass(frozen=True)
class Bound:
    server: "BoundServer"


@dataclass(frozen=True)
class AddressInUse:
    pass


@dataclass(frozen=True)
class ConnectionRefused:
    cause: BaseException | None = field(default=None, compare=False)


@dataclass(frozen=True)
class OtherError:
    cause: BaseException = field(compare=False)


@dataclass(frozen=True)
class Sent:
    pass


@dataclass(frozen=True)
class Removed:
    pass


BindResult = Union[Bound, AddressInUse, OtherError]
ForwardResult = Union[Sent, ConnectionRefused, OtherError]
CleanupResult = Union[Removed, OtherError]

_ADDRESS_IN_USE_CODES = {errno.EADDRINUSE, 10048}  # 10048: WSAEADDRINUSE


def iter_exc_chain(exc: BaseException, *, max_depth: int = 10) -> Iterator[BaseException]:
    """Yield ``exc`` and its causes/contexts, most recent first."""
    cur: BaseException | None = exc
    depth = 0
    while cur is not None and depth < max_depth:
        yield cur
        nxt = cur.__cause__ or cur.__context__
        if nxt is cur:
            break
        cur = nxt
        depth += 1


def is_address_in_use(exc: BaseException) -> bool:
    return isinstance(exc, OSError) and exc.errno in _ADDRESS_IN_USE_CODES


def find_connection_refused(exc: BaseException) -> ConnectionRefusedError | None:
    """Return the ConnectionRefusedError behind a transport error, if any."""
    for e in iter_exc_chain(exc):
        if isinstance(e, ConnectionRefusedError):
            return e
    return None
