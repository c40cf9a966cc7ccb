"""
Standardized logging for biosync.

Every module does:

    from biosync.logging_utils import get_logger
    logger = get_logger(__name__)

configure_logging() is safe to call repeatedly; it installs a single stream
handler on the package logger. Level comes from BIOSYNC_LOG_LEVEL (default INFO).
"""

import logging
import os
import sys
from typing import Optional

PACKAGE_LOGGER = "biosync"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return a named logger (thin wrapper so call sites stay uniform)."""
    return logging.getLogger(name)


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure the package logger.

    Args:
        level: Level name (e.g. "DEBUG"). Falls back to BIOSYNC_LOG_LEVEL, then INFO.
    """
    global _configured

    level_name = (level or os.getenv("BIOSYNC_LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger(PACKAGE_LOGGER)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _configured = True
