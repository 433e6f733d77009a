from __future__ import annotations

import json
import logging
from collections.abc import Generator

import pytest

from crmpro.context import get_log_context, reset_correlation_id, set_correlation_id
from crmpro.core.config import get_settings
from crmpro.logging import CorrelationIdFilter, JsonLogFormatter, configure_logging


@pytest.fixture()
def restore_root_logger(monkeypatch: pytest.MonkeyPatch) -> Generator[logging.Logger, None, None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    factory = logging.getLogRecordFactory()
    monkeypatch.setenv("LOG_LEVEL", "warning")
    get_settings.cache_clear()
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.setLogRecordFactory(factory)
    if hasattr(root, "_crmpro_configured"):
        del root._crmpro_configured  # type: ignore[attr-defined]
    get_settings.cache_clear()


def _record(**extra: object) -> logging.LogRecord:
    record = logging.makeLogRecord({"name": "crmpro.cache.realtime", "levelname": "WARNING", "msg": "cache.load_failed"})
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_known_fields_only() -> None:
    record = _record(resource_type="candidates", crm_module="candidates", secret="hunter2", correlation_id="corr-1")

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "cache.load_failed"
    assert payload["level"] == "WARNING"
    assert payload["correlation_id"] == "corr-1"
    assert payload["fields"] == {"resource_type": "candidates", "crm_module": "candidates"}


def test_formatter_truncates_long_errors() -> None:
    payload = json.loads(JsonLogFormatter().format(_record(error="x" * 2000)))

    assert len(payload["fields"]["error"]) == 500


def test_filter_attaches_current_correlation_id() -> None:
    record = _record()
    token = set_correlation_id("corr-7")
    try:
        assert CorrelationIdFilter().filter(record) is True
        assert get_log_context() == {"correlation_id": "corr-7"}
    finally:
        reset_correlation_id(token)

    assert record.correlation_id == "corr-7"


def test_configure_logging_uses_settings_level(restore_root_logger: logging.Logger) -> None:
    configure_logging()
    configure_logging()

    assert restore_root_logger.level == logging.WARNING
    json_handlers = [handler for handler in restore_root_logger.handlers if isinstance(handler.formatter, JsonLogFormatter)]
    assert len(json_handlers) == 1
