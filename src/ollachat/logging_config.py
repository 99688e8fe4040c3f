"""Centralised logging configuration.

Usage:
    from ollachat.logging_config import setup_logging

    # At process startup:
    setup_logging("info")

All ``logging.getLogger(__name__)`` calls inside the package propagate to the
``ollachat`` logger configured here.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

from .config import LogLevel

PACKAGE_LOGGER = "ollachat"


def setup_logging(level: str | int = "warning", console: Console | None = None) -> logging.Logger:
    """Attach a Rich handler to the package logger.

    Safe to call more than once; the previous handler is replaced so repeated
    CLI invocations in one process do not duplicate output.

    Args:
        level: Level name ("debug", "info", "warning", "error") or numeric level
        console: Console to write to (defaults to stderr)

    Returns:
        The configured package logger
    """
    numeric = LogLevel.from_string(level) if isinstance(level, str) else level

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_ollachat_handler", False):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s - %(message)s"))
    handler._ollachat_handler = True  # type: ignore[attr-defined]

    logger.addHandler(handler)
    logger.setLevel(numeric)
    logger.propagate = False
    return logger
