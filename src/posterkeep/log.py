"""Logging setup for the posterkeep CLI."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "posterkeep"
FILE_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    console: Console | None = None,
) -> logging.Logger:
    """Route posterkeep log records to the terminal through rich.

    Args:
        verbose: Show debug records.
        quiet: Show only errors.
        console: Console to render to; a stderr console is used if omitted.

    Returns:
        The package logger.
    """
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setLevel(level)
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def add_file_handler(path: Path, level: int = logging.INFO) -> logging.FileHandler:
    """Also append posterkeep log records to a file.

    Returns:
        The handler, so the caller can remove and close it when done.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    logger = logging.getLogger(LOGGER_NAME)
    logger.addHandler(handler)
    if logger.level == logging.NOTSET or logger.level > level:
        logger.setLevel(level)
    return handler


def remove_handler(handler: logging.Handler) -> None:
    """Detach and close a handler added by `add_file_handler`."""
    logging.getLogger(LOGGER_NAME).removeHandler(handler)
    handler.close()
