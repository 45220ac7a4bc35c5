"""
Incentive Engine - Logging Setup

Applies the application-wide log format for worker processes.
"""

import logging

from app.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: int = None) -> None:
    """Configure root logging once per process."""
    if level is None:
        level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # SQL echo is controlled by settings.debug on the engine itself
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
