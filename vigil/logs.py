"""Logging setup: one explicitly built handler instead of module-level globals.

Components take an optional ``log`` argument and fall back to their module
logger, so a caller can route one prober's output somewhere else without
touching global state.
"""

from __future__ import annotations

import logging
import sys
from typing import IO

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logging(
    level: str | int = "INFO",
    stream: IO[str] | None = None,
    rich: bool = True,
    name: str = "vigil",
) -> logging.Logger:
    """Configure and return the ``vigil`` logger.

    ``stream`` is the sink (stderr by default). With ``rich`` the records go
    through a ``RichHandler`` for coloured output, otherwise through a plain
    ``StreamHandler`` with ``LOG_FORMAT``.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    sink = stream or sys.stderr
    handler: logging.Handler
    if rich:
        handler = RichHandler(
            console=Console(file=sink),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="%b %d %H:%M:%S"))
    else:
        handler = logging.StreamHandler(sink)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logger = logging.getLogger(name)
    for old in list(logger.handlers):
        logger.removeHandler(old)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
