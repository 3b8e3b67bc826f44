import logging
from typing import Any

import structlog

from clearledger.config import settings

PII_LOG_KEYS = frozenset({"email", "contact_email", "first_name", "last_name", "access_token"})


def drop_subject_pii(_logger, _method_name: str, event_dict: dict) -> dict:
    """Student names and contact details never reach log sinks."""
    for key in PII_LOG_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def configure_logging() -> None:
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=log_level)

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        drop_subject_pii,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if settings.log_json else structlog.dev.ConsoleRenderer(),
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def bind_principal_context(*, subject_id: int, organization_id: int | None, role: str) -> None:
    structlog.contextvars.bind_contextvars(subject_id=subject_id, organization_id=organization_id, role=role)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str):
    return structlog.get_logger(name)
