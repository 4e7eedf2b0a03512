"""Loguru sink setup for the player and scripts.

The library modules only log through loguru's global ``logger``; sinks are
configured by the application, never on import.
"""

import sys
from typing import Optional

from loguru import logger

from .config import WHEP_LOG_LEVEL

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def configure_logging(level: Optional[str] = None) -> None:
    """Replace loguru's default sink with a stderr sink at ``level``."""
    logger.remove()
    logger.add(sys.stderr, level=(level or WHEP_LOG_LEVEL).upper(), format=LOG_FORMAT)
