"""Structured logging for the dispatcher and its HTTP surface.

structlog with a stdlib bridge, so uvicorn and FastAPI records go through the
same renderer: JSON lines in production, ConsoleRenderer when debugging. Every
entry carries the service name and, inside a request, its correlation id.
Dispatcher code binds job_id/kind via structlog contextvars while an executor
runs, so executor logs are attributable to their job.
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id


def add_correlation_id(logger, method, event_dict):
    """Inject correlation_id from asgi-correlation-id context into every log entry."""
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def service_name_adder(service: str):
    def add_service_name(logger, method, event_dict):
        event_dict.setdefault("service", service)
        return event_dict

    return add_service_name


def configure_structlog(log_level: str = "INFO", json_logs: bool = True, service: str = "llm-dispatch") -> None:
    """Configure structlog and route stdlib logging through it.

    Call this before the dispatcher modules log anything; structlog caches the
    processor chain on first use.

    Args:
        log_level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
        json_logs: True for JSON output (production), False for ConsoleRenderer (dev)
        service: Value of the `service` field on every entry
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        service_name_adder(service),
        add_correlation_id,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        render_chain = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        render_chain = [structlog.dev.ConsoleRenderer()]

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structlog": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    *render_chain,
                ],
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "structlog",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["default"], "level": log_level.upper()},
        "loggers": {
            "uvicorn.access": {"level": "WARNING"},
            "asyncio": {"level": "WARNING"},
        },
    })

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
