"""
Structured logging configuration.

Every workflow state transition (token issued, token redeemed, email sent,
member linked, access granted, RSVP recorded, sweep completed) is one
structlog event. Events carry the ``request_id`` correlation id bound by
``RequestLoggingMiddleware``, or by ``task_log_context`` for Celery runs.

Usage:
    from app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("token_issued", purpose="email_verify", email=redact_email(email))
"""

import logging
import sys
import time
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog
from pythonjsonlogger import jsonlogger

from app.config import settings

# Event keys whose values are bearer secrets or embed one (links carry tokens)
SECRET_KEYS = frozenset(
    {"token", "secret", "claim_token", "claim_link", "action_link", "verify_url", "password"}
)
REDACTED = "[REDACTED]"

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def drop_secrets(logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: blank out values under ``SECRET_KEYS``."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def _use_json() -> bool:
    return settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production"


def setup_logging() -> None:
    """Configure stdlib logging and structlog for the API process or a worker."""
    use_json = _use_json()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    )

    renderer = structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            drop_secrets,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                ],
            ),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if use_json:
        _route_stdlib_through_json()

    if settings.ENVIRONMENT == "production":
        # httpx logs full request URLs, which include magic-link redirect tokens
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def _route_stdlib_through_json() -> None:
    """uvicorn logs through its own handlers; give them the same JSON shape."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
    )
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.addHandler(handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Bind a correlation id to every log event emitted in the current context.

    Returns the id so callers can echo it (e.g. in an ``X-Request-ID`` header).
    """
    correlation_id = correlation_id or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(request_id=correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    structlog.contextvars.unbind_contextvars("request_id")


@contextmanager
def task_log_context(logger: structlog.stdlib.BoundLogger, task_name: str) -> Iterator[dict]:
    """
    Give one Celery task run its own correlation id and log how it ended.

    Keys added to the yielded dict are attached to the success event:

        with task_log_context(logger, "run_reverification_sweep") as summary:
            report = ...
            summary["sent"] = report.sent_count
    """
    bind_correlation_id()
    structlog.contextvars.bind_contextvars(task_name=task_name)
    summary: dict = {}
    started = time.monotonic()
    try:
        yield summary
    except Exception as exc:
        logger.error(
            "celery_task_failed",
            duration_ms=int((time.monotonic() - started) * 1000),
            error=type(exc).__name__,
        )
        raise
    else:
        logger.info(
            "celery_task_succeeded",
            duration_ms=int((time.monotonic() - started) * 1000),
            **summary,
        )
    finally:
        structlog.contextvars.unbind_contextvars("request_id", "task_name")
