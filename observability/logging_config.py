"""
Structured Logging Configuration
================================

structlog on top of the stdlib logging tree. Events are key/value pairs;
renderer is JSON in production and the console renderer elsewhere.
"""

import logging
import os
import sys
from typing import Any, MutableMapping, Optional, TextIO

import structlog
from structlog.types import Processor

SENSITIVE_KEYS = frozenset({"api_key", "gateway_api_key", "password", "clickhouse_password", "authorization"})

# Libraries whose INFO output drowns the pipeline's own events.
NOISY_LOGGERS = ("httpx", "httpcore", "opentelemetry")


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask credential values that end up in an event."""
    for key in event_dict:
        if key.lower() in SENSITIVE_KEYS and event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def _processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (default: LOG_LEVEL env or INFO)
        json_format: Render JSON (default: LOG_FORMAT=json, or ENVIRONMENT=production)
        stream: Output stream (default: stdout)
    """
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_format is None:
        json_format = (
            os.getenv("LOG_FORMAT", "").lower() == "json"
            or os.getenv("ENVIRONMENT", "development") == "production"
        )

    shared = _processors()
    if json_format:
        shared.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream is None and sys.stdout.isatty())

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, log_level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> Any:
    """Structured logger for a module (usually ``__name__``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """
    Bind key/value pairs to every event logged from the current context.

    Each asyncio task runs in a copy of its parent's context, so bindings
    made inside a task stay in that task.
    """
    structlog.contextvars.bind_contextvars(**kwargs)
