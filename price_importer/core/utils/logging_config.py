"""Structured logging configuration for the Price Importer.

Uses structlog with context variables, ISO timestamps, and console rendering
for development (JSON rendering when ``log_json`` is set). Provides
get_logger() for named loggers and configure_logging() for one-time setup.
"""

import logging

import structlog

_configured = False


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog processors once.

    Safe to call multiple times -- only the first invocation takes effect.

    Args:
        level: Minimum level name (``"DEBUG"``, ``"INFO"``, ...).
        json_logs: Render one JSON object per line instead of console output.
    """
    global _configured
    if _configured:
        return

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    min_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a bound logger with the given name.

    Loggers are lazy proxies, so a later configure_logging() call from the
    launch script still applies to loggers created at import time.

    Args:
        name: Logger name, typically the module or component name.

    Returns:
        A structlog BoundLogger instance bound with the given name.
    """
    return structlog.get_logger(logger_name=name)
