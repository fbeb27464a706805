"""
Logging setup shared by the API process and the import pipeline.

All modules log through ``logging.getLogger(__name__)``; this module only
decides where those records go and how they are formatted.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional


_is_configured = False


def configure_logging(level: Optional[str] = None, sql_echo: bool = False) -> None:
    """
    Install a single console handler on the root logger (once per process).

    Args:
        level: Optional log level override (e.g., "DEBUG", "INFO").
        sql_echo: When True, let SQLAlchemy engine statements through at INFO.
    """
    global _is_configured

    if _is_configured:
        return

    log_level = (level or "INFO").upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": log_level,
                }
            },
            "root": {
                "handlers": ["console"],
                "level": log_level,
            },
            "loggers": {
                "sqlalchemy.engine": {
                    "level": "INFO" if sql_echo else "WARNING",
                },
            },
        }
    )

    logging.getLogger("member_import").setLevel(log_level)

    _is_configured = True
