"""
Structured logging configuration using structlog.

Standardized log format:
{
    "ts": "2026-10-18T04:30:00.123456Z",
    "level": "info",
    "service": "tokenfeed",
    "correlation_id": "uuid-v4",
    "event": "backfill.completed",
    "module": "tokenfeed.services.backfill",
    "func_name": "scan",
    "lineno": 42,
    ...additional context...
}
"""
import structlog
import logging
from typing import Any

_SERVICE_NAME = "tokenfeed"


def add_service_name(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Add service name to all log entries."""
    event_dict["service"] = _SERVICE_NAME
    return event_dict


def setup_logging(json_output: bool = True, service_name: str = "tokenfeed", level: int = logging.INFO):
    """
    Configure structured logging with standardized fields.

    Args:
        json_output: If True, output JSON logs. If False, use console format.
        service_name: Name of the service stamped on every entry.
        level: Minimum level that gets rendered.
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service_name

    shared_processors = [
        # correlation_id and session bindings
        structlog.contextvars.merge_contextvars,
        add_service_name,
        structlog.processors.TimeStamper(fmt="iso", key="ts"),
        structlog.processors.add_log_level,
        structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            }
        ),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors = shared_processors + [structlog.processors.JSONRenderer()]
    else:
        processors = shared_processors + [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=level,
    )

    # web3 and uvicorn log through stdlib; keep them quiet
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").handlers = []
    logging.getLogger("uvicorn.access").handlers = []


def get_logger():
    """Get a configured structlog logger."""
    return structlog.get_logger()
