"""
Logging setup for the ingestion service.

All modules log through ``logging.getLogger(__name__)``; this module wires
those loggers to a single console handler the first time the application
(or a test session) asks for it.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional


LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "botocore", "urllib3")

_is_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure the root and ``app`` loggers once per process.

    Args:
        level: Optional log level override (e.g., "DEBUG", "INFO").
    """
    global _is_configured

    if _is_configured:
        return

    log_level = (level or "INFO").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        log_level = "INFO"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": LOG_FORMAT,
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
        }
    )

    logging.getLogger("app").setLevel(log_level)

    # Client libraries log every request at INFO.
    quiet_level = max(logging.getLevelName(log_level), logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    _is_configured = True
