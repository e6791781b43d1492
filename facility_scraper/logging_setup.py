"""
Logging configuration for the scraper CLI.
Modules log through logging.getLogger(__name__); only the CLI installs a handler.
"""

import logging
import sys
from typing import Optional

LOGGER_NAME = "facility_scraper"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO", name: str = LOGGER_NAME, stream=None) -> logging.Logger:
    """
    Send the package's log records to stdout.

    Calling it again only changes the level; the handler is installed once.

    Args:
        level: Level name, case-insensitive (e.g. "info", "DEBUG")
        name: Logger to configure
        stream: Output stream, stdout if None

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level.upper())

    existing: Optional[logging.Handler] = next(
        (h for h in logger.handlers if getattr(h, "_facility_scraper", False)), None
    )
    if existing is None:
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._facility_scraper = True
        logger.addHandler(handler)

    return logger
