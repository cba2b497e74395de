"""
HOMEBASE - Structured Logging Configuration
============================================
Configure structlog for the API, the CLI and the security services.
"""

import logging
import sys
from typing import Optional, TextIO

import structlog

from homebase.config import settings


def configure_logging(stream: Optional[TextIO] = None) -> None:
    """
    Configure structured logging for the application.

    Events go through the standard library to `stream` (stdout by default).
    The CLI passes stderr so its stdout carries only command output.
    """
    stream = stream or sys.stdout

    is_dev = settings.debug or settings.environment in ("development", "test")

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if is_dev:
        # Development: pretty console output
        renderers = [structlog.dev.ConsoleRenderer(colors=stream.isatty())]
    else:
        # Production: JSON output for log aggregation
        renderers = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=logging.DEBUG if settings.debug else logging.INFO,
    )
