"""Structured logging configuration for FileTrace.

Modules log through stdlib ``logging.getLogger(__name__)``; this module
routes those records through structlog so every line carries the level,
logger name, ISO timestamp and the current request ID.

Usage::

    from filetrace.observability.logging import configure_logging

    configure_logging(level="INFO", json_output=True)  # once at startup
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog

# Request-scoped correlation ID, set by RequestIdMiddleware.
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

_configured = False


def _add_request_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict["request_id"] = rid
    return event_dict


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = True,
    force: bool = False,
) -> None:
    """Configure structlog and the stdlib root logger.

    Idempotent unless ``force`` is set.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: JSON lines when True, console rendering otherwise.
        force: Reconfigure even if already configured.
    """
    global _configured
    if _configured and not force:
        return
    _configured = True

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # ``foreign_pre_chain`` enriches records from plain stdlib loggers.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
