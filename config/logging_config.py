"""Structured JSON logging configuration using structlog."""

import logging
import sys

import structlog

_configured_level: str | None = None


def configure_logging(component: str, level: str | None = None) -> structlog.BoundLogger:
    """Configure structlog with JSON output and return a bound logger for the component.

    structlog is reconfigured only when the level changes; otherwise the call
    just binds a new component name, so every module can ask for its own logger.
    """
    global _configured_level

    if _configured_level is None or (level is not None and level.upper() != _configured_level):
        _configured_level = (level or "INFO").upper()
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.dev.set_exc_info,
                structlog.processors.format_exc_info,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(
                getattr(logging, _configured_level, logging.INFO)
            ),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
            cache_logger_on_first_use=False,
        )
    return structlog.get_logger(component=component)
