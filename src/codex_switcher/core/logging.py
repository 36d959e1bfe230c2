"""structlog setup shared by the CLI entry points."""

import logging
import sys

import structlog


def setup_logging(log_level: str = "WARNING") -> None:
    """Configure structlog to render to stderr with a level filter.

    Logs go to stderr so command output on stdout (e.g. ``export``) stays
    machine-readable.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.WARNING

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def reset_logging() -> None:
    """Restore structlog defaults (useful for testing)."""
    structlog.reset_defaults()
