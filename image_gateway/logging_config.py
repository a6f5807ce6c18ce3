"""
Structured logging configuration for the gateway.

Configures structlog to emit one JSON object per line on **stdout**.  Every
record carries ``timestamp`` (ISO 8601 UTC), ``level``, ``event``,
``service_name`` and, while a request is being served, the request's
``correlation_id`` (bound by ``CorrelationIdMiddleware`` through
contextvars).

Standard library loggers (Uvicorn, httpx, the multipart parser) are routed
through the same pipeline, so their records are JSON as well.
"""

import logging
import sys

import structlog

SERVICE_NAME = "image-generation-gateway"

# Third-party loggers that log every request or every multipart part at
# INFO/DEBUG; capped so they do not drown the gateway's own events.
_NOISY_THIRD_PARTY_LOGGER_NAMES = ("httpx", "httpcore", "python_multipart", "multipart")


def _add_service_name(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    event_dict["service_name"] = SERVICE_NAME
    return event_dict


def _uppercase_level(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Normalise the log level to uppercase (e.g. INFO, ERROR)."""
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog and the root logger for JSON output to stdout.

    Called once at startup, before any record is emitted.  Unknown level
    names fall back to INFO.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service_name,
        structlog.stdlib.add_log_level,
        _uppercase_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for logger_name in _NOISY_THIRD_PARTY_LOGGER_NAMES:
        logging.getLogger(logger_name).setLevel(max(level, logging.WARNING))
