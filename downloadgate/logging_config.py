"""
Structured logging configuration using structlog.

JSON output in production, pretty console output in development. Logs go to
stdout; the process manager handles persistence.

Raw download tokens and holder identities must never reach the logs. Services
log token ids and prefixes only; ``redact_sensitive_fields`` is a last line
that masks the known sensitive keys if one slips into an event.
"""

import logging
import sys

import structlog

from downloadgate.config import settings

SENSITIVE_KEYS = frozenset({"token", "raw_token", "holder_identity", "email", "authorization"})


def redact_sensitive_fields(logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor replacing sensitive values with a marker."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog and stdlib logging integration.

    Call this once at application startup.
    """
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    level = getattr(logging, settings.log_level.upper())

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            # Correlation id bound by the request middleware
            structlog.contextvars.merge_contextvars,
            redact_sensitive_fields,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdlib logging for APScheduler, SQLAlchemy, uvicorn
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.INFO)
