"""Centralized logging configuration for the terminal front end."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

# Log records go to stderr; stdout carries results only.
log_console = Console(stderr=True)


def configure_logging(level: str = "WARNING") -> None:
    """Route all log records through a single rich handler on the root logger."""
    handler = RichHandler(console=log_console, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter(fmt="%(name)s - %(message)s", datefmt="%H:%M:%S"))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)

    root_logger.addHandler(handler)

    # aiohttp is chatty at DEBUG about connection reuse.
    logging.getLogger("aiohttp").setLevel(max(root_logger.level, logging.INFO))
