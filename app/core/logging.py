"""
Logging Setup
Configures the root logger for the API process and the worker script.
"""

import logging
from typing import Optional

from app.core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once; later calls only adjust the level."""
    level_name = (level or settings.LOG_LEVEL or "INFO").upper()
    if settings.DEBUG and level is None:
        level_name = "DEBUG"

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )
    logging.getLogger().setLevel(getattr(logging, level_name, logging.INFO))

    # Provider SDK and HTTP client are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)
