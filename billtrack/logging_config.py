from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import contextvars
from datetime import datetime, timezone
import json
import logging
import os
from typing import Any
import uuid


REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 64

# Extra attributes the JSON formatter copies from `logger.info(..., extra=...)`.
_JSON_EXTRA_FIELDS = ("account_id", "accounts_processed", "created_count", "skipped_count")

_request_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class _RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx.get("-")
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", "-"),
            "message": record.getMessage(),
        }
        for field in _JSON_EXTRA_FIELDS:
            if hasattr(record, field):
                payload[field] = getattr(record, field)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def new_request_id(incoming: str | None = None) -> str:
    value = (incoming or "").strip()
    if value and len(value) <= MAX_REQUEST_ID_LENGTH:
        return value
    return uuid.uuid4().hex


def current_request_id() -> str:
    return _request_id_ctx.get("-")


@contextmanager
def request_id_scope(incoming: str | None = None) -> Iterator[str]:
    """Bind a request id for log records emitted inside the block."""
    token = _request_id_ctx.set(new_request_id(incoming))
    try:
        yield _request_id_ctx.get()
    finally:
        _request_id_ctx.reset(token)


def _build_formatter(format_type: str) -> logging.Formatter:
    if format_type == "json":
        return JsonFormatter()
    return logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] [req=%(request_id)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    format_type = os.getenv("LOG_FORMAT", "text").strip().lower()

    handler = logging.StreamHandler()
    handler.setFormatter(_build_formatter(format_type))
    handler.addFilter(_RequestIdFilter())
    logging.basicConfig(level=level, handlers=[handler], force=True)

    # SQL echo is controlled by the engine, not the root level.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
