"""
Logging setup for the OD workflow API.

Console-only; the JSONL audit mirror (app.utils.audit_sink) is the durable record.
"""
import logging
import logging.config
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "app": {"level": LOG_LEVEL},
        "backend": {"level": LOG_LEVEL},
        "sqlalchemy.engine": {"level": "WARNING"},
    },
    "root": {"level": LOG_LEVEL, "handlers": ["console"]},
}

_configured = False


def setup_logging() -> None:
    global _configured
    if _configured:
        return
    logging.config.dictConfig(LOGGING_CONFIG)
    _configured = True
