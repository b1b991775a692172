"""Logging configuration.

Modules log through the standard library (``logging.getLogger(__name__)``).
This module wires the root handler once at startup: JSON lines through
python-json-logger when ``LOG_FORMAT=json``, plain text otherwise.
"""

import logging.config

from src.config.settings import settings

PLAIN_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def build_logging_config(level: str, log_format: str) -> dict:
    """Return a ``dictConfig`` mapping for the given level and format."""
    if log_format == "json":
        formatter = {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "fmt": JSON_FORMAT,
            "rename_fields": {"levelname": "level", "asctime": "timestamp", "name": "logger"},
        }
    else:
        formatter = {"format": PLAIN_FORMAT}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            }
        },
        "root": {"handlers": ["console"], "level": level.upper()},
        "loggers": {
            # SQL echo is controlled by DB_ECHO, keep the engine logger quiet otherwise
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    }


def configure_logging() -> None:
    """Configure root logging from settings."""
    logging.config.dictConfig(build_logging_config(settings.log_level, settings.log_format))
