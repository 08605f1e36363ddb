"""
Unit tests for JSON logging.
"""

import importlib
import json
import sys
import logging
import tempfile
from pathlib import Path

import pytest

from ..logging_manager import JsonFormatter, LoggingManager, get_logger


@pytest.fixture(autouse=True)
def reset_logging():
    LoggingManager.reset()
    yield
    LoggingManager.reset()


def make_record(msg="fetched %s", args=("vo12.html",), level=logging.INFO, **extra):
    record = logging.LogRecord("portalsync.sync.transport", level, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:

    def test_basic_fields(self):
        data = json.loads(JsonFormatter().format(make_record()))
        assert data["severity"] == "INFO"
        assert data["name"] == "portalsync.sync.transport"
        assert data["message"] == "fetched vo12.html"
        assert "timestamp" in data
        assert "details" not in data

    def test_details(self):
        record = make_record(details={"url": "https://portal.example.com/", "attempt": 2})
        data = json.loads(JsonFormatter().format(record))
        assert data["details"] == {"url": "https://portal.example.com/", "attempt": 2}

    def test_fetch_context_fields(self):
        record = make_record(source_id="https://portal.example.com/vo020.asp", attempt=3)
        data = json.loads(JsonFormatter().format(record))
        assert data["source_id"] == "https://portal.example.com/vo020.asp"
        assert data["attempt"] == 3

    def test_exc_info(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
        data = json.loads(JsonFormatter().format(record))
        assert "RuntimeError: boom" in data["exc_info"]


class TestLoggingManager:

    def test_singleton(self):
        assert LoggingManager() is LoggingManager(log_level="DEBUG")

    def test_file_handler(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "sync.log"
            manager = LoggingManager(log_level="debug", log_file=str(log_file))
            assert manager.logger.level == logging.DEBUG

            get_logger("portalsync.test").warning("retrying", extra={"details": {"attempts_left": 1}})
            for handler in manager.logger.handlers:
                handler.flush()

            line = json.loads(log_file.read_text(encoding="utf-8").strip())
            assert line["message"] == "retrying"
            assert line["details"] == {"attempts_left": 1}
            LoggingManager.reset()

    def test_configure_replaces_handlers(self):
        first = LoggingManager()
        assert first.logger.level == logging.INFO

        second = LoggingManager.configure(log_level="WARNING")
        assert second is not first
        assert second.logger.level == logging.WARNING
        assert len(second.logger.handlers) == 1

    def test_importing_sync_modules_leaves_logging_unconfigured(self, monkeypatch):
        import portalsync.sync as sync_package
        monkeypatch.setattr(sync_package, "reconciler", sync_package.reconciler)
        monkeypatch.delitem(sys.modules, "portalsync.sync.reconciler")

        module = importlib.import_module("portalsync.sync.reconciler")

        assert LoggingManager._instance is None
        assert module.logger is logging.getLogger("portalsync.sync.reconciler")
