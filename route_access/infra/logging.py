from __future__ import annotations

import logging
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DATABASE_LOG_LEVEL = os.getenv("DATABASE_LOG_LEVEL", "WARNING").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_CONFIGURED_FLAG = "_route_access_configured"


def setup_logging() -> None:
    """Install a single root stream handler and apply the configured levels.

    Safe to call more than once; the handler is only replaced the first time.
    SQLAlchemy loggers default to WARNING and follow ``DATABASE_LOG_LEVEL``.
    """
    root_logger = logging.getLogger()
    if not getattr(root_logger, _CONFIGURED_FLAG, False) or not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.handlers = [handler]
        setattr(root_logger, _CONFIGURED_FLAG, True)

    root_logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

    db_level = getattr(logging, DATABASE_LOG_LEVEL, logging.WARNING)
    for name in ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool"):
        logging.getLogger(name).setLevel(db_level)
