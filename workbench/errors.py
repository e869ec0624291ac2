"""Start-up error taxonomy.

Only the composition root turns these into process exit codes. The two
expected conditions of the single-instance protocol, "address in use" and
"connection refused", are result tags in :mod:`workbench.ipc.results` and are
never raised.
"""

from __future__ import annotations

EXIT_OK = 0
EXIT_FATAL = 1


class BootstrapError(Exception):
    """Base class for conditions that end the start-up sequence."""

    exit_code: int = EXIT_FATAL
    benign: bool = False


class LaunchHandedOff(BootstrapError):
    """The launch was delivered to the running instance; this process exits."""

    exit_code = EXIT_OK
    benign = True

    def __init__(self, message: str = "Sent env to running instance. Terminating...") -> None:
        super().__init__(message)


class BindFailed(BootstrapError):
    """Binding the endpoint failed for a reason other than a live conflict."""


class ForwardFailed(BootstrapError):
    """The running instance could not be reached or refused the launch."""


class TestSessionConflict(ForwardFailed):
    """An automated test session must not hand off to another instance."""

    __test__ = False

    def __init__(
        self,
        message: str = (
            "Running tests from the command line is currently only supported "
            "if no other instance of Workbench is running."
        ),
    ) -> None:
        super().__init__(message)


class HandleRemovalFailed(BootstrapError):
    """A stale endpoint handle exists but could not be removed."""


class RetryExhausted(BootstrapError):
    """The single stale-handle cleanup cycle did not yield a bound endpoint."""
