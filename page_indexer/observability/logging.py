"""
Structured Logging - structlog configuration

Logs go to stderr so command output on stdout stays machine-readable.
JSON in production, colored console output otherwise.
"""

import logging
import sys

import structlog

from ..core.config import settings


def setup_logging(level: str = None):
    """
    Configure structured logging.

    Args:
        level: Optional override for ``settings.log_level``.
    """
    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.environment == "production":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, (level or settings.log_level).upper(), logging.WARNING),
        force=True,
    )


def get_logger(name: str = None):
    """Get a structlog logger"""
    return structlog.get_logger(name or "page_indexer")
