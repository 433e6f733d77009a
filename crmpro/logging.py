from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from crmpro.context import get_correlation_id
from crmpro.core.config import Settings, get_settings

# Structured fields copied from ``extra=`` into the "fields" object.
# ``module`` is a LogRecord attribute, so the CRM module travels as ``crm_module``.
STRUCTURED_FIELDS = frozenset(
    {
        "resource_type",
        "resource_id",
        "resource_count",
        "crm_module",
        "role",
        "user_id",
        "path",
        "state",
        "event_kind",
        "reason",
        "attempt",
        "topic",
        "error",
    }
)
MAX_ERROR_LENGTH = 500


class CorrelationIdFilter(logging.Filter):
    """Stamps records with the correlation id of the current request or task."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = {key: value for key, value in vars(record).items() if key in STRUCTURED_FIELDS}
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        return json.dumps(
            {
                "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "correlation_id": getattr(record, "correlation_id", None),
                "fields": fields,
            },
            default=str,
        )


def configure_logging(settings: Settings | None = None) -> None:
    """Route the root logger to one JSON stdout handler; later calls are no-ops."""

    root = logging.getLogger()
    if getattr(root, "_crmpro_configured", False):
        return

    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root.handlers[:] = [handler]
    root.setLevel(level)
    root._crmpro_configured = True  # type: ignore[attr-defined]
