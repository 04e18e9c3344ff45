from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import sys
from typing import Any, TextIO

from feedsync.logging_context import get_run_id

DEFAULT_REDACT_FIELDS = {
    "authorization",
    "x-base-user-id",
    "x-tenant-key",
    "tenant_key",
    "user_identity",
}
REDACTED = "[REDACTED]"

_STANDARD_RECORD_FIELDS = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}
_TRANSPORT_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")

# Console lines lead with where a run is before the remaining fields.
_CONSOLE_LEADING_KEYS = ("run_kind", "page", "pages_consumed", "total_written")
_CONSOLE_SHORT_KEYS = {
    "run_kind": "kind",
    "pages_consumed": "pages",
    "total_written": "written",
}
_LEVEL_TAGS = {
    logging.DEBUG: "DBG",
    logging.INFO: "INF",
    logging.WARNING: "WRN",
    logging.ERROR: "ERR",
    logging.CRITICAL: "CRT",
}


def parse_redact_fields(raw: str | None) -> set[str]:
    extra = {name.strip().lower() for name in (raw or "").split(",") if name.strip()}
    return DEFAULT_REDACT_FIELDS | extra


def configure_logging(
    *,
    level: str,
    log_format: str,
    redact_fields: set[str],
    stream: TextIO | None = None,
) -> None:
    """Install one root handler.

    Logs go to stderr by default; stdout carries the CLI's run summary.
    """
    resolved_level = logging.getLevelNamesMapping().get(level.strip().upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(resolved_level)

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    handler.setLevel(resolved_level)
    handler.addFilter(RunContextFilter())
    formatter_cls = JsonLogFormatter if log_format.strip().lower() == "json" else ConsoleLogFormatter
    handler.setFormatter(formatter_cls(redact_fields=redact_fields))
    root_logger.addHandler(handler)

    for logger_name in _TRANSPORT_LOGGERS:
        logging.getLogger(logger_name).setLevel(max(resolved_level, logging.WARNING))


class RunContextFilter(logging.Filter):
    """Stamps the active collection run onto records logged inside it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "run_id", None):
            run_id = get_run_id()
            if run_id:
                record.run_id = run_id
        return True


class Redactor:
    def __init__(self, fields: set[str]) -> None:
        self._fields = {name.lower() for name in fields}

    def __call__(self, key: str, value: Any) -> Any:
        if key.lower() in self._fields:
            return REDACTED
        if isinstance(value, dict):
            return {inner_key: self(inner_key, inner) for inner_key, inner in value.items()}
        if isinstance(value, (list, tuple)):
            return [self(key, item) for item in value]
        return value


def _record_payload(record: logging.LogRecord, redact: Redactor) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%SZ"),
        "level": record.levelname.lower(),
        "logger": record.name,
        "event": record.getMessage(),
    }
    for key, value in record.__dict__.items():
        if key in _STANDARD_RECORD_FIELDS or key.startswith("_"):
            continue
        payload[key] = redact(key, value)
    return payload


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, redact_fields: set[str]) -> None:
        super().__init__()
        self._redact = Redactor(redact_fields)

    def format(self, record: logging.LogRecord) -> str:
        payload = _record_payload(record, self._redact)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


class ConsoleLogFormatter(logging.Formatter):
    """``timestamp | LVL | logger | event | run=<id> | kind=... | key=value``"""

    def __init__(self, *, redact_fields: set[str]) -> None:
        super().__init__()
        self._redact = Redactor(redact_fields)

    def format(self, record: logging.LogRecord) -> str:
        payload = _record_payload(record, self._redact)
        parts = [
            payload.pop("timestamp"),
            _LEVEL_TAGS.get(record.levelno, record.levelname[:3].upper()),
            payload.pop("logger"),
            payload.pop("event"),
        ]
        payload.pop("level")
        run_id = payload.pop("run_id", None)
        if run_id:
            parts.append(f"run={run_id}")

        leading = [key for key in _CONSOLE_LEADING_KEYS if key in payload]
        trailing = sorted(key for key in payload if key not in _CONSOLE_LEADING_KEYS)
        for key in leading + trailing:
            parts.append(f"{_CONSOLE_SHORT_KEYS.get(key, key)}={payload[key]}")

        if record.exc_info:
            parts.append(f"exception={self.formatException(record.exc_info)}")
        return " | ".join(str(part) for part in parts if part != "")
