"""Logging setup for hosts embedding PaperTrail."""

import logging
from typing import Optional

from papertrail.config import PaperTrailSettings, settings as default_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(config: Optional[PaperTrailSettings] = None) -> logging.Logger:
    """Configure root logging from settings and return the package logger."""
    config = config or default_settings
    level = logging.DEBUG if config.debug else getattr(logging, config.log_level.upper())
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger = logging.getLogger("papertrail")
    logger.setLevel(level)
    return logger
