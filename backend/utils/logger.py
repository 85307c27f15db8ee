"""Process-wide logging setup shared by every engine module."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from backend.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler once; later calls only adjust the level."""

    global _configured
    resolved_level = (level or get_settings().log_level).upper()
    if _configured:
        logging.getLogger().setLevel(resolved_level)
        return

    logging.basicConfig(level=resolved_level, format=LOG_FORMAT, stream=sys.stdout)
    # requests' connection pool logs every connection at DEBUG.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the requested module with logging configured."""
    if not _configured:
        configure_logging()
    return logging.getLogger(name)
