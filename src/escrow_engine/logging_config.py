"""Structured logging for the escrow engine (structlog over stdlib logging).

Event names are dotted (``escrow.funded``, ``dispute.escalated``,
``sweep.item_failed``) and every field is a keyword, so the same call renders
as a colored console line in development and a JSON object in production.

Ledger values (Decimal amounts, UUIDs, status enums, datetimes) are rendered
as plain strings before the renderer sees them, so a JSON log line carries
``"amount": "100.000000"`` rather than a repr.

Request-scoped fields (request_id, actor_id) are bound through contextvars
by the API middleware and merged into every line logged while the request
is being handled, including lines from services and collaborators.

Usage:
    from escrow_engine.logging_config import setup_logging, get_logger
    setup_logging(log_level="INFO", json_logs=not settings.is_development)
    logger = get_logger(__name__)
    logger.info("escrow.created", transaction_id=str(tx.id), amount=str(tx.amount))
"""

from __future__ import annotations

import enum
import logging
import sys
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import structlog

_QUIET_LOGGERS = (
    "uvicorn.access",
    "sqlalchemy.engine",
    "aiosqlite",
    "httpx",
    "httpcore",
    "apscheduler",
    "LiteLLM",
)


def _render_ledger_values(
    _logger: Any, _method: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    for key, value in event_dict.items():
        if isinstance(value, enum.Enum):
            event_dict[key] = value.value
        elif isinstance(value, Decimal | uuid.UUID):
            event_dict[key] = str(value)
        elif isinstance(value, datetime | date):
            event_dict[key] = value.isoformat()
    return event_dict


def setup_logging(log_level: str = "DEBUG", json_logs: bool = False) -> None:
    """Configure structlog and route stdlib logging through the same renderer.

    Args:
        log_level: Standard Python log level string (DEBUG, INFO, WARNING, etc.)
        json_logs: JSON lines (production) instead of colored console output.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _render_ledger_values,
    ]

    renderer: structlog.types.Processor
    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

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

    # Lines from uvicorn, SQLAlchemy etc. get the same timestamp and renderer.
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.DEBUG))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, usually ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def bind_request_context(**fields: object) -> None:
    """Bind fields (request_id, actor_id, ...) to every log line in this context."""
    structlog.contextvars.bind_contextvars(**{k: v for k, v in fields.items() if v is not None})


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
