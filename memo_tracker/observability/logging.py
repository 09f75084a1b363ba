"""JSON logs for the memo service.

Two kinds of callers share one handler: structlog loggers (middleware,
refresher) and plain stdlib loggers with `extra=` fields (db session,
memo service). Both come out as one JSON object per line on stdout, tagged
with `service` and whatever request context the middleware has bound.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.typing import EventDict, WrappedLogger


SERVICE_NAME = "memo-tracker"

_CONFIGURED = False


def _add_service(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def resolve_level(level: int | str) -> int:
    """Map LOG_LEVEL ("debug", "WARNING", 10) to a stdlib level; unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install the JSON handler. Only the first call has any effect."""

    global _CONFIGURED
    if _CONFIGURED:
        return

    level = resolve_level(level)

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            # stdlib records: lift `extra=` into the event.
            foreign_pre_chain=[*shared, structlog.stdlib.ExtraAdder()],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in ("uvicorn", "uvicorn.error"):
        server_logger = logging.getLogger(name)
        server_logger.handlers = [handler]
        server_logger.propagate = False
        server_logger.setLevel(level)

    # RequestTimingMiddleware writes the access line (with request_id and route).
    logging.getLogger("uvicorn.access").disabled = True
    # SQL echo only when asked for explicitly.
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))

    _CONFIGURED = True
