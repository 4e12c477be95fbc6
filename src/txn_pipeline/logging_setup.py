from __future__ import annotations

import sys

from loguru import logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "{extra[role]}:{extra[worker]} | {name}:{line} - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """Install the single stderr sink used by the CLI."""
    logger.remove()
    logger.configure(extra={"role": "main", "worker": "-"})
    if json:
        logger.add(sys.stderr, level=level.upper(), serialize=True)
    else:
        logger.add(sys.stderr, level=level.upper(), format=_FORMAT)
