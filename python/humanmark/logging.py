"""Structured logging for humanmark, built on structlog.

Every entry is enriched from ContextVars bound by the request-id and actor
middleware (or by configure_task_logging inside Celery tasks):
- request_id, path, method
- user_id: acting forum user, when known
- task_name, task_id

Values under credential-bearing keys (see humanmark.services.redact) are
masked before rendering. safe_kv catches these at the call site in tests;
the masking processor is what protects production output.

Usage:
    from humanmark.logging import get_logger

    logger = get_logger(__name__)
    logger.info("flow_created", flow_id=42, context="post")
"""

import logging
import sys
from contextvars import ContextVar

import structlog

from humanmark.services.redact import FORBIDDEN_KEYS

REDACTED = "[REDACTED]"

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
path_var: ContextVar[str | None] = ContextVar("path", default=None)
method_var: ContextVar[str | None] = ContextVar("method", default=None)
task_name_var: ContextVar[str | None] = ContextVar("task_name", default=None)
task_id_var: ContextVar[str | None] = ContextVar("task_id", default=None)

_CONTEXT_FIELDS: tuple[tuple[str, ContextVar], ...] = (
    ("request_id", request_id_var),
    ("user_id", user_id_var),
    ("path", path_var),
    ("method", method_var),
    ("task_name", task_name_var),
    ("task_id", task_id_var),
)

# Chatty third-party loggers kept at WARNING
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "celery.beat")


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Inject bound context into the event. Explicit fields win."""
    for key, var in _CONTEXT_FIELDS:
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def mask_forbidden_fields(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Replace values logged under credential-bearing keys."""
    for key in FORBIDDEN_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def configure_logging(json_format: bool = True, debug: bool = False) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        json_format: JSON lines when True, the dev console renderer otherwise.
        debug: Lower the root level to DEBUG (HUMANMARK_DEBUG_MODE).
    """
    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        mask_forbidden_fields,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_context(
    request_id: str | None,
    user_id: str | None = None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Bind request context for the current async context."""
    request_id_var.set(request_id)
    if user_id is not None:
        user_id_var.set(user_id)
    if path is not None:
        path_var.set(path)
    if method is not None:
        method_var.set(method)


def set_user_context(user_id: str | None) -> None:
    """Attach the acting user once the actor middleware has resolved it."""
    user_id_var.set(user_id)


def clear_request_context() -> None:
    for var in (request_id_var, user_id_var, path_var, method_var):
        var.set(None)


def get_request_id() -> str | None:
    return request_id_var.get()


def configure_task_logging(
    request_id: str | None = None,
    task_name: str | None = None,
    task_id: str | None = None,
) -> None:
    """Bind Celery task context; call first thing in every task.

    request_id is the id of the HTTP request that enqueued the task, if any.
    """
    request_id_var.set(request_id)
    task_name_var.set(task_name)
    task_id_var.set(task_id)


def clear_task_context() -> None:
    for var in (request_id_var, task_name_var, task_id_var, user_id_var):
        var.set(None)
