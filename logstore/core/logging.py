# logstore/core/logging.py
"""
Process-wide logging configuration.

Used by both the HTTP app and the CLI. Ingestion of several files runs on
`ingest-*` worker threads, so the thread name is part of every line to keep
the per-file reports apart.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty below DEBUG only: SQL statements and pool checkouts.
_SQL_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")


def configure_logging(level: str = "INFO") -> logging.Handler:
    """
    Route all logging to stdout at `level` and return the installed handler.

    Replaces existing root handlers, so calling it twice does not duplicate
    lines. SQLAlchemy's engine and pool loggers follow `level` when it is
    DEBUG and stay at WARNING otherwise.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    sql_level = logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
    for name in _SQL_LOGGERS:
        logging.getLogger(name).setLevel(sql_level)

    return handler
