from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from app.context import get_actor_id, get_correlation_id
from app.core.config import Settings, get_settings


_BASE_RECORD_KEYS = set(logging.makeLogRecord({}).__dict__.keys())
_KNOWN_FIELDS = {
    "method",
    "path",
    "status_code",
    "duration_ms",
    "event_name",
    "project_id",
    "from_stage",
    "to_stage",
    "outcome",
    "forced",
    "side_effect",
    "lead_id",
    "deal_id",
    "contract_id",
    "user_id",
    "strategy",
    "error",
}
_MAX_ERROR_LENGTH = 500


def _attach_context(record: logging.LogRecord) -> None:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    if not getattr(record, "actor_id", None):
        record.actor_id = get_actor_id()


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        _attach_context(record)
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    _attach_context(record)
    return record


def _known_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {
        key: value
        for key, value in record.__dict__.items()
        if key in _KNOWN_FIELDS and key not in _BASE_RECORD_KEYS
    }
    error_value = fields.get("error")
    if isinstance(error_value, str):
        fields["error"] = error_value[:_MAX_ERROR_LENGTH]
    return fields


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; only whitelisted ``extra`` keys are emitted under ``fields``."""

    def format(self, record: logging.LogRecord) -> str:
        fields = _known_fields(record)
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "actor_id": getattr(record, "actor_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


class TextLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = " ".join(f"{key}={value}" for key, value in sorted(_known_fields(record).items()))
        line = (
            f"{datetime.now(timezone.utc).isoformat()} {record.levelname:<7} {record.name} "
            f"[{getattr(record, 'correlation_id', None) or '-'}] {record.getMessage()}"
        )
        if fields:
            line = f"{line} {fields}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(settings: Settings | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_opsdesk_configured", False):
        return

    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(TextLogFormatter() if settings.log_format == "text" else JsonLogFormatter())
    handler.addFilter(RequestContextFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    root_logger._opsdesk_configured = True  # type: ignore[attr-defined]
