"""Logging configuration using structlog."""

import logging
import sys
from typing import Any

import structlog

from workproof.core.config import get_settings

# Library loggers that are noisy at INFO during a sync pass.
_QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "aiosqlite")


def _service_context(service: str, env: str):
    def processor(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service)
        event_dict.setdefault("env", env)
        return event_dict

    return processor


def setup_logging() -> None:
    """Configure structlog for the API process and the sync CLI."""
    settings = get_settings()

    log_level = settings.app.log_level.value

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level),
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, getattr(logging, log_level)))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _service_context(settings.observability.service_name, settings.app.env.value),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer()
            if settings.observability.log_record_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
