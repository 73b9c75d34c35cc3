"""Uvicorn ``dictConfig`` that renders through the same structlog pipeline."""

import logging
import os

import structlog

from dvs.utils.logger import foreign_pre_chain, make_renderer

# uvicorn's own names say little about what the lines are
UVICORN_RENAMES = {
    "uvicorn.error": "uvicorn.server",
    "uvicorn.access": "uvicorn.http",
}


def get_uvicorn_log_level() -> int:
    level = logging.getLevelName(os.getenv("UVICORN_LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


class RenameLoggerProcessor:
    """Rewrite uvicorn logger names using ``UVICORN_RENAMES``."""

    def __call__(self, logger, name, event_dict):
        renamed = UVICORN_RENAMES.get(event_dict.get("logger"))
        if renamed:
            event_dict["logger"] = renamed
        return event_dict


def _logger(level) -> dict:
    return {"handlers": ["default"], "level": level, "propagate": False}


def get_logging_config() -> dict:
    """Config for ``uvicorn.run(log_config=...)``.

    ``uvicorn.access`` is held at WARNING because the app middleware already
    logs each request with its duration.
    """
    uvicorn_level = get_uvicorn_log_level()
    pre_chain = [
        *foreign_pre_chain(),
        RenameLoggerProcessor(),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.UnicodeDecoder(),
    ]
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processor": make_renderer(),
                "foreign_pre_chain": pre_chain,
            },
        },
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": _logger(uvicorn_level),
            "uvicorn.error": _logger(uvicorn_level),
            "uvicorn.access": _logger(logging.WARNING),
            "httpx": _logger(logging.WARNING),
            "httpcore": _logger(logging.WARNING),
        },
    }
