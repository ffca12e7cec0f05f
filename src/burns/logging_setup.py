"""Root logger configuration for the command line."""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

DEFAULT_LOG_LEVEL = "INFO"


def configure_logging(level: str | None = None) -> None:
    """Send log records to stderr through rich; `level` beats BURNS_LOG_LEVEL."""

    resolved = (level or os.getenv("BURNS_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper()
    numeric_level = logging.getLevelName(resolved)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {resolved}")

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        log_time_format="[%X]",
    )
    logging.basicConfig(
        level=numeric_level,
        format="%(threadName)s %(message)s",
        handlers=[handler],
        force=True,
    )
