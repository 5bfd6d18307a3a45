"""
Structured JSON logging for the ledger kernel.

Each record is one JSON line with:
    - ts, level, logger, message
    - the posting context bound with ``LogContext.bind``
    - the ``extra=`` fields passed at the call site
    - for LedgerKernelError, ``exc_code``, ``exc_retryable`` and every
      structured attribute of the error as ``exc_<name>``

Loggers live under the ``ledger_kernel`` namespace, which does not
propagate to the root logger.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Iterator
from uuid import UUID

from ledger_kernel.exceptions import LedgerKernelError

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "organization_id",
    "actor_id",
    "smart_code",
    "transaction_id",
    "trace_id",
)

# Always replaced, never mutated in place
_context: ContextVar[dict[str, str]] = ContextVar("ledger_log_context", default={})


class LogContext:
    """Posting context stamped onto every record logged inside ``bind``."""

    @staticmethod
    def current() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """
        Add context fields for the duration of the block.

        None values and names outside CONTEXT_FIELDS are ignored; values
        are stored as strings.  The previous context is restored on exit.
        """
        bound = {
            name: str(value)
            for name, value in fields.items()
            if name in CONTEXT_FIELDS and value is not None
        }
        token = _context.set({**_context.get(), **bound})
        try:
            yield
        finally:
            _context.reset(token)

    @staticmethod
    def clear() -> None:
        _context.set({})


_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.makeLogRecord({}))
) | {"message", "asctime", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    if isinstance(exc, LedgerKernelError):
        fields["exc_code"] = exc.code
        fields["exc_retryable"] = exc.retryable
        for name, value in vars(exc).items():
            if not name.startswith("_"):
                fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Renders a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRIBUTES and name not in entry:
                entry[name] = value

        if record.exc_info and record.exc_info[1] is not None:
            entry.update(_exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default)


_ROOT_LOGGER = "ledger_kernel"


def get_logger(name: str) -> logging.Logger:
    """Logger ``ledger_kernel.<name>``."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


_lock = threading.Lock()
_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Install one JSON handler on the ``ledger_kernel`` logger.

    Only the first call takes effect until ``reset_logging``.  ``handler``
    wins over ``stream``; the default writes to stderr.
    """
    global _installed
    with _lock:
        if _installed is not None:
            return
        root = logging.getLogger(_ROOT_LOGGER)
        root.setLevel(level)
        root.propagate = False
        _installed = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        _installed.setFormatter(StructuredFormatter())
        root.addHandler(_installed)


def reset_logging() -> None:
    """Remove the handler installed by ``configure_logging``."""
    global _installed
    with _lock:
        if _installed is not None:
            logging.getLogger(_ROOT_LOGGER).removeHandler(_installed)
            _installed = None
