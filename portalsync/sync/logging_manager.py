"""
JSON logging for the fetch-and-sync engine.

Every record becomes one JSON object per line so fetch, retry and store
events can be filtered in a log collector. `severity` is the key cloud log
collectors read the level from.

Context can be attached with `extra=`:
- `source_id`: URL or store path the record is about
- `attempt`: retry attempt number
- `details`: any JSON-serializable mapping
"""

import json
import logging
import sys
from typing import Optional

PACKAGE_LOGGER = "portalsync"
CONTEXT_FIELDS = ("source_id", "attempt", "details")


class JsonFormatter(logging.Formatter):
    """Formats a record as a single JSON line."""

    def format(self, record):
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "severity": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _json_handler(handler: logging.Handler, level: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    return handler


class LoggingManager:
    """
    Owns the handlers of the `portalsync` logger.

    The first instance configures stdout (and optionally a file) output;
    later constructions return the same instance unchanged. Use
    `configure()` to apply new settings to an already running process.
    """
    _instance = None

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, log_level: str = "INFO", log_file: Optional[str] = None):
        if self._initialized:
            return

        self.log_level = log_level.upper()
        self.log_file = log_file
        self.logger = logging.getLogger(PACKAGE_LOGGER)
        self.logger.setLevel(self.log_level)
        # records stop here; the root logger must not print them a second time
        self.logger.propagate = False

        self._close_handlers()
        self.logger.addHandler(_json_handler(logging.StreamHandler(sys.stdout), self.log_level))
        if self.log_file:
            self.logger.addHandler(_json_handler(logging.FileHandler(self.log_file, encoding="utf-8"), self.log_level))

        self._initialized = True

    def _close_handlers(self) -> None:
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)

    @classmethod
    def configure(cls, log_level: str = "INFO", log_file: Optional[str] = None) -> 'LoggingManager':
        """Replace the current handlers with ones built from these settings."""
        cls.reset()
        return cls(log_level=log_level, log_file=log_file)

    @classmethod
    def reset(cls) -> None:
        if cls._instance is not None:
            cls._instance._close_handlers()
            cls._instance._initialized = False
        cls._instance = None

    @staticmethod
    def get_logger(name: str) -> logging.Logger:
        if LoggingManager._instance is None:
            LoggingManager()
        return logging.getLogger(name)


def get_logger(name: str) -> logging.Logger:
    return LoggingManager.get_logger(name)
