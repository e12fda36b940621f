"""Logging setup for the command-line tool."""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

from .config import DEFAULT_LOG_LEVEL, DEFAULT_VERBOSE_LOG_LEVEL, LOG_ENV, LOG_VERBOSE_ENV

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def resolve_level(verbose: bool) -> int:
    """Pick the level from the verbose or the default environment filter.

    Unrecognised values fall back to the built-in default for that filter.
    """
    env_name, default = (LOG_VERBOSE_ENV, DEFAULT_VERBOSE_LOG_LEVEL) if verbose else (LOG_ENV, DEFAULT_LOG_LEVEL)
    name = os.environ.get(env_name, default).strip().upper()
    if name not in _LEVELS:
        name = default
    return getattr(logging, name)


def configure_logging(verbose: bool = False) -> None:
    level = resolve_level(verbose)

    # Clear any existing handlers to avoid duplicates
    logging.root.handlers.clear()

    handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)
    handler.setLevel(level)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
    )
