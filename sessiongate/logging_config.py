"""Logging configuration helpers for the SessionGate service."""

from __future__ import annotations

import logging
import os
from logging.config import dictConfig
from typing import Optional

from .config import LOG_LEVEL


def configure_logging(level: Optional[str] = None) -> None:
    """Apply a consistent logging configuration for the service."""
    log_level = (level or LOG_LEVEL).upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": log_level,
                },
            },
            "root": {"handlers": ["console"], "level": log_level},
            # Ensure uvicorn loggers inherit our formatting.
            "loggers": {
                "uvicorn": {"handlers": ["console"], "level": log_level, "propagate": False},
                "uvicorn.error": {
                    "handlers": ["console"],
                    "level": log_level,
                    "propagate": False,
                },
                "uvicorn.access": {
                    "handlers": ["console"],
                    "level": os.getenv("UVICORN_ACCESS_LOG_LEVEL", "INFO").upper(),
                    "propagate": False,
                },
                "sessiongate.auth": {"level": os.getenv("SESSIONGATE_AUTH_LOG_LEVEL", log_level).upper()},
                "sqlalchemy.engine": {"level": os.getenv("SESSIONGATE_SQL_LOG_LEVEL", "WARNING").upper()},
            },
        }
    )

    logging.getLogger(__name__).debug("Logging configured at %s level", log_level)
