"""
Centralized logging configuration for tfgate.

structlog renders JSON in production and colored console output in development.
Standard library loggers (uvicorn, sqlalchemy) are routed through the same
processor chain so every line carries the request ID bound by the HTTP middleware.
"""

import logging
import sys
from datetime import UTC, datetime
from typing import Any

import structlog
from structlog.types import EventDict, Processor

# Loggers that are too chatty at INFO
_NOISY_LOGGERS = ("httpx", "asyncio", "sqlalchemy.engine")


def _app_context(app_name: str) -> Processor:
    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict["app"] = app_name
        return event_dict

    return add_app_context


def utc_timestamper(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO8601 UTC timestamp (millisecond precision) to log events."""
    now = datetime.now(UTC)
    event_dict["timestamp"] = now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
    return event_dict


def level_first(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Put level and timestamp at the front of JSON output."""
    ordered: EventDict = {}
    for key in ("level", "timestamp"):
        if key in event_dict:
            ordered[key] = event_dict.pop(key)
    ordered.update(event_dict)
    return ordered


def configure_logging(
    json_logs: bool = True,
    log_level: str = "INFO",
    app_name: str = "tfgate-api",
) -> None:
    """Configure structlog and the stdlib root logger."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        utc_timestamper,
        structlog.processors.StackInfoRenderer(),
        _app_context(app_name),
    ]

    if json_logs:
        renderer: list[Processor] = [
            structlog.processors.format_exc_info,
            level_first,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderer],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
