from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import sys
from typing import Any

from app.logging_utils import get_request_id

DEFAULT_REDACT_FIELDS = {
    "api_token",
    "authorization",
    "client_secret",
    "cookie",
    "payment_session_secret",
    "stripe_signature",
    "token",
    "webhook_secret",
}
REDACTED = "[REDACTED]"

_STANDARD_RECORD_FIELDS = set(logging.makeLogRecord({}).__dict__.keys()) | {"message", "asctime"}
_NOISY_RECORD_FIELDS = {"color_message"}
_CONSOLE_HEADLINE_FIELDS = ("method", "path", "status_code", "duration_ms")
_CONSOLE_SHORT_KEYS = {
    "user_id": "user",
    "job_id": "job",
    "provider_run_id": "run",
    "purchase_id": "purchase",
    "payment_session_id": "session",
}
_SHORT_LEVELS = {
    "debug": "DBG",
    "info": "INF",
    "warning": "WRN",
    "error": "ERR",
    "critical": "CRT",
}


def parse_redact_fields(raw: str | None) -> set[str]:
    extra_fields = {field.strip().lower() for field in (raw or "").split(",") if field.strip()}
    return DEFAULT_REDACT_FIELDS | extra_fields


def configure_logging(
    *,
    level: str,
    log_format: str,
    redact_fields: set[str],
    include_uvicorn_access: bool,
) -> None:
    resolved_level = _resolve_level(level)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(resolved_level)
    handler.addFilter(RequestContextFilter())
    if log_format.strip().lower() == "json":
        handler.setFormatter(JsonLogFormatter(redact_fields=redact_fields))
    else:
        handler.setFormatter(ConsoleLogFormatter(redact_fields=redact_fields))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(resolved_level)
    root_logger.addHandler(handler)

    # uvicorn installs its own handlers; send everything through the root one.
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        framework_logger = logging.getLogger(logger_name)
        framework_logger.handlers.clear()
        framework_logger.propagate = True
        framework_logger.setLevel(resolved_level)
    if not include_uvicorn_access:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    # httpx logs every provider request at INFO.
    logging.getLogger("httpx").setLevel(max(resolved_level, logging.WARNING))


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, redact_fields: set[str]) -> None:
        super().__init__()
        self._redact_fields = {field.lower() for field in redact_fields}

    def build_payload(self, record: logging.LogRecord) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "timestamp": _format_timestamp(record.created),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": getattr(record, "event", record.getMessage()),
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            payload["request_id"] = request_id
        for key, value in _extra_fields(record).items():
            payload[key] = self._redact(key, value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return payload

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(self.build_payload(record), ensure_ascii=True, default=str)

    def _redact(self, key: str, value: Any) -> Any:
        if key.lower() in self._redact_fields:
            return REDACTED
        if isinstance(value, dict):
            return {nested_key: self._redact(nested_key, nested) for nested_key, nested in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._redact(key, item) for item in value]
        return value


class ConsoleLogFormatter(logging.Formatter):
    """One line per record: `ts | LVL | logger | event | rid=.. | key=value ...`."""

    def __init__(self, *, redact_fields: set[str]) -> None:
        super().__init__()
        self._payload_builder = JsonLogFormatter(redact_fields=redact_fields)

    def format(self, record: logging.LogRecord) -> str:
        payload = self._payload_builder.build_payload(record)
        parts: list[str] = [
            payload.pop("timestamp"),
            _SHORT_LEVELS.get(payload["level"], payload["level"][:3].upper()),
            payload.pop("logger"),
            str(payload.pop("event")),
        ]
        payload.pop("level")

        request_id = payload.pop("request_id", None)
        if request_id:
            parts.append(f"rid={request_id}")
        method, path, status_code, duration_ms = (payload.pop(key, None) for key in _CONSOLE_HEADLINE_FIELDS)
        if method and path:
            parts.append(f"{method} {path}")
        if status_code is not None:
            parts.append(str(status_code))
        if duration_ms is not None:
            parts.append(f"{duration_ms}ms")

        exception = payload.pop("exception", None)
        for key in sorted(payload):
            parts.append(f"{_CONSOLE_SHORT_KEYS.get(key, key)}={payload[key]}")
        if exception:
            parts.append(f"exception={exception}")
        return " | ".join(str(part) for part in parts if part)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_RECORD_FIELDS
        and key not in _NOISY_RECORD_FIELDS
        and not key.startswith("_")
    }


def _resolve_level(level: str) -> int:
    return logging.getLevelNamesMapping().get(level.strip().upper(), logging.INFO)


def _format_timestamp(created_ts: float) -> str:
    return datetime.fromtimestamp(created_ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%SZ")
