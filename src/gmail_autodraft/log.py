"""Structured logging setup."""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.stdlib import LoggerFactory

_NOISY_LOGGERS = ("googleapiclient.discovery_cache", "urllib3", "google_auth_httplib2")


def setup_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR).
        json_logs: Render one JSON object per line instead of console output.
    """
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structured logger, usually ``get_logger(__name__)``."""
    return structlog.get_logger(name)
