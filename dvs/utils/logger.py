"""Structured logging for dvs.

Every module logs through ``get_logger("dvs.<area>")``. Output format is
picked once at import time from the environment:

- ``LOG_FORMAT``: ``pretty`` (console, default) or ``json`` (one object per line)
- ``LOG_COLORS``: colorize pretty output (default on)
- ``DVS_LOG_LEVEL``: level of the ``dvs`` logger tree (default ``INFO``)

Library loggers (httpx, dulwich, uvicorn) go through the same formatter so
a push or an object server run produces one uniform stream.
"""

import logging
import os

import structlog
from structlog.types import FilteringBoundLogger, Processor

TRUTHY = ("true", "1", "yes", "on")

# Chatty at INFO during every transfer or repo discovery
QUIET_LOGGERS = ("httpx", "httpcore", "dulwich")


def log_format() -> str:
    return os.getenv("LOG_FORMAT", "pretty").lower()


def log_colors() -> bool:
    return os.getenv("LOG_COLORS", "true").lower() in TRUTHY


def dvs_log_level() -> int:
    name = os.getenv("DVS_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def make_renderer() -> Processor:
    """Final processor for the configured ``LOG_FORMAT``."""
    if log_format() == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=log_colors())


def foreign_pre_chain() -> list[Processor]:
    """Processors applied to records coming from plain stdlib loggers."""
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def configure_structlog():
    """Route stdlib logging and structlog through one ProcessorFormatter."""
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=make_renderer(),
            foreign_pre_chain=foreign_pre_chain(),
        )
    )
    logging.root.handlers = [handler]
    logging.root.setLevel(logging.INFO)
    logging.captureWarnings(True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("dvs").setLevel(dvs_log_level())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *foreign_pre_chain(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_structlog()


def request_log(
    logger: FilteringBoundLogger,
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    **kwargs,
):
    """Log one object server request; server errors are logged as errors."""
    log = logger.error if status_code >= 500 else logger.info
    log(
        f"{method} {path} - {status_code}",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
        **kwargs,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    """Logger named ``name``; ``dvs.*`` names follow ``DVS_LOG_LEVEL``."""
    return structlog.get_logger(name)


api_logger = get_logger("dvs.api")
