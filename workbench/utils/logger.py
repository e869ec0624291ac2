"""Logging configuration and utilities"""
import logging
import os
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..config import get_config


def setup_logging(level: Optional[str] = None, format_str: Optional[str] = None) -> None:
    """
    Setup logging configuration for the application

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_str: Log format string
    """
    config = get_config()

    log_level = level or config.logging.level
    log_format = format_str or config.logging.format

    # Convert string level to logging constant
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=numeric_level,
        format=log_format,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ],
        force=True,
    )

    # Set level for third-party loggers to WARNING to reduce noise
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def get_log_dir() -> Path:
    """Per-user directory for runtime log files."""
    if os.name == "nt":
        base = os.environ.get("LOCALAPPDATA")
        root = Path(base) if base else Path.home() / "AppData" / "Local"
        return root / "Workbench" / "logs"

    state_home = os.environ.get("XDG_STATE_HOME")
    root = Path(state_home) if state_home else Path.home() / ".local" / "state"
    return root / "workbench"


def write_crash_log(message: str, exc: BaseException | None = None) -> None:
    """
    Append a fatal start-up failure to workbench-runtime-error.log.

    This deliberately does not depend on the logging configuration so that
    failures before or during logging setup still leave a trace. It must
    never raise.
    """
    try:
        log_dir = get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        with (log_dir / "workbench-runtime-error.log").open("a", encoding="utf-8") as f:
            f.write(f"[{datetime.now().isoformat()}] {message}\n")
            if exc is not None:
                f.write(f"Exception: {exc!r}\n")
                f.write("".join(traceback.format_exception(exc)))
            f.write("\n")
    except Exception:
        # Never let crash logging break shutdown.
        pass
