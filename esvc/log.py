"""Logging setup for embedding applications and tests."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

from .config import EngineConfig


def configure_logging(
    level: str | int = "WARNING",
    *,
    console: Console | None = None,
) -> logging.Logger:
    """
    Route the `esvc` logger hierarchy through a rich handler on stderr.

    Safe to call more than once; the previous handler is replaced.
    """
    logger = logging.getLogger("esvc")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger


def configure_from(config: EngineConfig, *, console: Console | None = None) -> logging.Logger:
    return configure_logging(config.log_level, console=console)
