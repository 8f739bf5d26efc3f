"""
Logging Configuration
Applies the engine's log format and levels for a host process.
"""

import logging
from typing import Optional

from fin_analytics.config import Settings, settings as default_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure root logging for the analytics engine.

    Debug mode forces DEBUG level; otherwise the configured log_level is used.
    SQLAlchemy engine query logging is kept at WARNING.

    Args:
        settings: Settings to read levels from (defaults to module settings)
    """
    settings = settings or default_settings
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )

    # Disable SQLAlchemy engine query logging
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
