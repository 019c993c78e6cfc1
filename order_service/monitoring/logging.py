"""
Structured logging for the API and the workers.

structlog builds the event dict and hands it to the standard library, where a
single python-json-logger handler renders structlog events and third-party
records (uvicorn, aio-pika, httpx) alike, one JSON object per line.

Per-request and per-message fields travel as structlog context variables:
the request middleware binds ``request_id``, the event pipeline binds
``routing_key`` and ``order_id`` while a message is being applied.
"""
import logging
import sys
from typing import Any, MutableMapping

import structlog
from pythonjsonlogger import jsonlogger

from order_service.config import get_settings

# Libraries that log every connection or request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "aio_pika", "aiormq", "sqlalchemy.engine")

JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def add_service_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Stamp every event with the service name and environment."""
    settings = get_settings()
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("environment", settings.app_env)
    return event_dict


def build_json_handler() -> logging.Handler:
    """Stdout handler emitting JSON with ``@timestamp``/``level``/``logger`` keys."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            JSON_FORMAT,
            rename_fields={
                "asctime": "@timestamp",
                "levelname": "level",
                "name": "logger",
            },
        )
    )
    return handler


def setup_logging() -> None:
    """
    Configure structlog and the root logger.

    Safe to call more than once; existing root handlers are replaced.
    """
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_service_context,
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(build_json_handler())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
