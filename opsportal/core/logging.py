from __future__ import annotations

import logging

from opsportal.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Configure the root logger once; module loggers inherit the level and format.
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    root.setLevel(level)
    # SQL echo is controlled by settings.db_echo; keep engine chatter out of app logs.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
