"""Loguru sink setup for the dispatcher process."""
from __future__ import annotations

import sys

from loguru import logger


def configure_logging(level: str = "INFO", *, serialize: bool = False) -> None:
    """Replace loguru's default sink with one stderr sink at `level`.

    Structured fields bound via `logger.bind(...)` end up in `extra`; with
    `serialize=True` every record is emitted as one JSON line.
    """
    logger.remove()
    if serialize:
        logger.add(sys.stderr, level=level.upper(), serialize=True)
        return
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level: <8} | {extra} | {message}",
    )
