from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from tiffin.context import get_caused_by, get_correlation_id


_BASE_RECORD_KEYS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}
_CONTEXT_KEYS = ("correlation_id", "caused_by")
_ERROR_TEXT_LIMIT = 500

# Only these keys from ``extra`` reach the JSON line.
_KNOWN_FIELDS = frozenset(
    {
        # http
        "method",
        "path",
        "status_code",
        "duration_ms",
        # unit of work / events
        "operation",
        "attempt",
        "error",
        "error_kind",
        "event_name",
        "handler_count",
        # ledger
        "customer_id",
        "order_id",
        "billing_id",
        "billing_month",
        "payment_id",
        "credit_id",
        "refund_id",
        "status",
        "amount",
        "total_amount",
        "excess_amount",
    }
)


def _stamp_context(record: logging.LogRecord) -> logging.LogRecord:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    if not getattr(record, "caused_by", None):
        record.caused_by = get_caused_by()
    return record


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        _stamp_context(record)
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    return _stamp_context(_DEFAULT_RECORD_FACTORY(*args, **kwargs))


def _json_default(value: Any) -> str:
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: envelope keys at the top, ledger fields under ``fields``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
        }
        caused_by = getattr(record, "caused_by", None)
        if caused_by:
            payload["caused_by"] = caused_by

        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key in _KNOWN_FIELDS and key not in _BASE_RECORD_KEYS and key not in _CONTEXT_KEYS
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_ERROR_TEXT_LIMIT]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload["fields"] = fields
        return json.dumps(payload, default=_json_default)


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_tiffin_configured", False):
        return

    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    root_logger._tiffin_configured = True  # type: ignore[attr-defined]
