"""Structured logging helpers shared by services, routers and scripts."""

from __future__ import annotations

from contextvars import ContextVar
import logging
from typing import Any

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def get_request_id() -> str | None:
    return _request_id_ctx.get()


def set_request_id(value: str | None) -> None:
    _request_id_ctx.set(value)


def structured_log(
    logger: logging.Logger,
    level: str,
    event: str,
    /,
    **fields: Any,
) -> None:
    """Emit a structured log entry.

    The event name is the log message; the formatters in logging_config.py
    read it back through record.getMessage(), so it is not repeated in extra.

    Usage:
        structured_log(logger, "info", "search_jobs.started", user_id=42, job_id=7)
    """
    log_method = getattr(logger, level.lower())
    log_method(event, extra=fields)
