"""Command-line parsing.

The same parser interprets this process's own arguments and the raw
argument list forwarded by a redundant launch, so both sides agree on what a
launch means.
"""

from __future__ import annotations

import argparse
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence

from . import PRODUCT_NAME, __version__


class CliUsageError(ValueError):
    """Raised for malformed command-line arguments."""


@dataclass(frozen=True)
class CliArgs:
    """Parsed launch arguments."""

    path_arguments: list[str] = field(default_factory=list)
    open_new_window: bool = False
    open_in_same_window: bool = False
    diff_mode: bool = False
    goto_line_mode: bool = False
    verbose: bool = False
    tests_path: Optional[str] = None
    program_start: float = 0.0

    @property
    def is_testing_from_cli(self) -> bool:
        """True when this process runs an automated test session."""
        return bool(self.tests_path)


def build_parser(*, add_help: bool = True) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        add_help=add_help,
        prog=PRODUCT_NAME.lower(),
        description=f"{PRODUCT_NAME} {__version__}",
        exit_on_error=False,
    )
    parser.add_argument("paths", nargs="*", help="Files or folders to open")
    parser.add_argument(
        "-n", "--new-window", action="store_true", help="Force a new window"
    )
    parser.add_argument(
        "-r",
        "--reuse-window",
        action="store_true",
        help="Force opening in the last active window",
    )
    parser.add_argument(
        "-d", "--diff", action="store_true", help="Open a diff editor for two files"
    )
    parser.add_argument(
        "-g",
        "--goto",
        action="store_true",
        help="Treat paths as file:line[:column]",
    )
    parser.add_argument("--verbose", action="store_true", help="Verbose logging")
    parser.add_argument(
        "--tests-path",
        metavar="PATH",
        default=None,
        help="Run the automated test suite at PATH (requires a sole instance)",
    )
    return parser


def parse_args(
    argv: Sequence[str],
    *,
    program_start: Optional[float] = None,
    add_help: bool = True,
) -> CliArgs:
    """
    Parse ``argv`` (without the program name).

    Unknown options are ignored so that a newer instance can forward flags
    an older running instance does not know about. Diff mode only applies
    to exactly two paths. Forwarded arguments are parsed with
    ``add_help=False`` so that a stray ``-h`` cannot end the receiving process.
    """
    parser = build_parser(add_help=add_help)
    try:
        ns, _unknown = parser.parse_known_intermixed_args(list(argv))
    except argparse.ArgumentError as exc:
        raise CliUsageError(str(exc)) from exc
    paths = [p for p in ns.paths if p]

    return CliArgs(
        path_arguments=paths,
        open_new_window=ns.new_window,
        open_in_same_window=ns.reuse_window,
        diff_mode=ns.diff and len(paths) == 2,
        goto_line_mode=ns.goto,
        verbose=ns.verbose,
        tests_path=ns.tests_path,
        program_start=program_start if program_start is not None else time.time(),
    )
