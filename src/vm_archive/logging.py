"""
Structured logging for VM archive operations.

Every line is one JSON object. Fields bound with ``StructuredLogger.bound``
(the operation and identity of the current run) are added to every line
logged inside that block, so the lines of one archive or restore can be
grepped out of a shared log.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator


# Attributes every LogRecord carries; anything else came in through ``extra``
RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

_run_context: ContextVar[Dict[str, Any]] = ContextVar("vm_archive_run_context", default={})


class StructuredLogger:
    """
    A logger that outputs one timestamped JSON object per line.
    """

    def __init__(self, name: str, level: int = logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.logger.propagate = False

        # Clear existing handlers to avoid duplicate logs
        if self.logger.handlers:
            self.logger.handlers.clear()

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(self.JsonFormatter())
        self.logger.addHandler(handler)

    class JsonFormatter(logging.Formatter):
        def format(self, record: logging.LogRecord) -> str:
            log_entry: Dict[str, Any] = {
                "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            log_entry.update(
                (key, value) for key, value in record.__dict__.items() if key not in RESERVED_ATTRS
            )
            if record.exc_info:
                log_entry["exception"] = self.formatException(record.exc_info)

            return json.dumps(log_entry, default=str)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)

    @staticmethod
    def context() -> Dict[str, Any]:
        """Fields currently bound to every line."""
        return dict(_run_context.get())

    def bind(self, **fields: Any) -> None:
        """Add ``fields`` to the current context until the enclosing ``bound`` exits."""
        _run_context.set({**_run_context.get(), **fields})

    @contextmanager
    def bound(self, **fields: Any) -> Iterator[None]:
        """Bind ``fields`` for the duration of the block, then restore the previous context."""
        token = _run_context.set({**_run_context.get(), **fields})
        try:
            yield
        finally:
            _run_context.reset(token)

    def _log(self, level: int, message: str, exc_info: bool, fields: Dict[str, Any]) -> None:
        extra = {**_run_context.get(), **fields}
        self.logger.log(level, message, exc_info=exc_info, extra=extra)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, False, kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, exc_info, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, False, kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, False, kwargs)

    def critical(self, message: str, exc_info: bool = True, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, message, exc_info, kwargs)


# Global logger instance
logger = StructuredLogger("vm_archive")
