"""Removal of stale endpoint handles"""

from .endpoint import EndpointAddress
from .results import CleanupResult, OtherError, Removed
from ..utils.logger import get_logger

logger = get_logger(__name__)


def remove_stale_handle(address: EndpointAddress) -> CleanupResult:
    """
    Delete the filesystem object backing ``address``.

    A handle that is already gone counts as removed. Loopback TCP endpoints
    leave nothing behind, so there is nothing to delete for them.
    """
    if address.path is None:
        return Removed()

    try:
        address.path.unlink()
    except FileNotFoundError:
        logger.debug("Stale handle %s already gone", address.path)
        return Removed()
    except OSError as exc:
        return OtherError(exc)

    logger.info("Removed stale instance handle %s", address.path)
    return Removed()
