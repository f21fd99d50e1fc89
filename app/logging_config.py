"""
Logging setup for processes embedding the save-flow engine.

Modules log through ``logging.getLogger(__name__)``; this only configures
the root handler once per process.
"""

import logging

from app.config import Settings, settings as default_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings | None = None) -> int:
    """Configure root logging and return the level that was applied."""
    settings = settings or default_settings
    level = logging.DEBUG if settings.DEBUG and not settings.is_production else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.sqlalchemy_echo else logging.WARNING
    )
    return level
