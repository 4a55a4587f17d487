"""Configure log output for the CLI and server.

Server, client and CLI code log through loguru; the rule engine uses the
standard ``logging`` module, so both are pointed at stderr at one level.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "{message}"
)
STDLIB_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Send records at *level* and above to stderr."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
    logging.basicConfig(level=level.upper(), format=STDLIB_FORMAT, stream=sys.stderr, force=True)
