"""
Structured JSON logging for the calculation audit engine.

Every line written under the ``calc_audit`` logger is one JSON object:
timestamp, level, logger, message, the audit context bound by the service
currently running, any ``extra=`` fields, and an ``error`` object when an
exception is attached. Engine errors contribute their ``code`` and the
structured attributes they carry (offending ids, statuses, formats).

Audit context is the set of ids an auditor filters on. Services bind it
around each operation with ``LogContext.bind``; nested binds shadow the
outer value and restore it on exit.
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import IO, Any
from uuid import UUID

LOGGER_ROOT = "calc_audit"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "company_id",
    "actor_id",
    "record_id",
    "amendment_id",
    "report_id",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("calc_audit_log_context", default=_EMPTY)


def _normalize(fields: Mapping[str, Any]) -> dict[str, str]:
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
    return {name: str(value) for name, value in fields.items() if value is not None}


class LogContext:
    """Audit ids attached to every log line emitted in the current context."""

    @staticmethod
    def set(**fields: Any) -> None:
        """Merge fields into the current context; ``None`` values are ignored."""
        merged = {**_context.get(), **_normalize(fields)}
        _context.set(MappingProxyType(merged))

    @staticmethod
    def get_all() -> dict[str, str]:
        current = _context.get()
        return {name: current[name] for name in CONTEXT_FIELDS if name in current}

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Shadow fields for the duration of the block."""
        token = _context.set(MappingProxyType({**_context.get(), **_normalize(fields)}))
        try:
            yield
        finally:
            _context.reset(token)


# Attributes every LogRecord has; anything else on a record came from ``extra=``.
_RECORD_BUILTINS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return repr(value)


def _describe_error(exc: BaseException) -> dict[str, Any]:
    error: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        error["code"] = code
    details = {
        name: value
        for name, value in vars(exc).items()
        if not name.startswith("_") and name != "code"
    }
    if details:
        error["details"] = details
    return error


_ENVELOPE = ("ts", "level", "logger", "message")


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line.

    Per-event ``extra`` fields override bound context of the same name, so an
    event about a different id (a superseded amendment, say) keeps its own.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(LogContext.get_all())
        for name, value in vars(record).items():
            if name not in _RECORD_BUILTINS and name not in _ENVELOPE:
                entry[name] = value

        if record.exc_info and record.exc_info[1] is not None:
            error = _describe_error(record.exc_info[1])
            error["traceback"] = self.formatException(record.exc_info)
            entry["error"] = error

        return json.dumps(entry, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Child of the ``calc_audit`` logger."""
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


class _EngineHandler(logging.StreamHandler):
    """Marks the handler ``configure_logging`` installed so reset can find it."""


_installed: logging.Handler | None = None
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: IO[str] | None = None,
    handler: logging.Handler | None = None,
) -> logging.Handler:
    """
    Install the JSON handler on the ``calc_audit`` logger.

    Only the first call installs anything; later calls return the handler
    already in place so bootstrap can run more than once per process.
    """
    global _installed
    with _lock:
        if _installed is not None:
            return _installed

        installed = handler if handler is not None else _EngineHandler(stream or sys.stderr)
        installed.setFormatter(StructuredFormatter())

        root = logging.getLogger(LOGGER_ROOT)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(installed)
        _installed = installed
        return installed


def reset_logging() -> None:
    """Remove the installed handler and allow ``configure_logging`` to run again."""
    global _installed
    with _lock:
        root = logging.getLogger(LOGGER_ROOT)
        if _installed is not None:
            root.removeHandler(_installed)
            _installed = None
        root.setLevel(logging.WARNING)
