"""
Structured JSON logging for the equipment kernel.

Every record under the ``equipment_kernel`` logger is written as one JSON
object per line.  Fields bound with ``LogContext.bind()`` (the operation
name from the TransactionCoordinator, the actor, receipt and serial from
the public facade) are merged into each line, followed by the record's
``extra`` data.
"""

__all__ = [
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
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"equipment_log_{name}", default=None)
    for name in ("operation", "actor_code", "receipt_id", "serial_number")
}


class LogContext:
    """
    Request-scoped log fields.

    Values live in ContextVars, so concurrent threads (and tasks) each see
    their own.  ``bind()`` is the only writer; it restores the previous
    values on exit, which keeps nested binds correct.
    """

    FIELDS = tuple(_CONTEXT_FIELDS)

    @staticmethod
    def get_all() -> dict[str, str]:
        """Return all bound fields."""
        return {
            name: value
            for name, var in _CONTEXT_FIELDS.items()
            if (value := var.get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _CONTEXT_FIELDS.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """
        Bind fields for the duration of the block.

        None values are skipped so callers can pass optional identifiers
        straight through.  Values are stored as strings.

        Raises:
            ValueError: for a field name LogContext does not carry.
        """
        unknown = sorted(set(fields) - set(_CONTEXT_FIELDS))
        if unknown:
            raise ValueError(f"Unknown log context fields: {unknown}")
        tokens = [
            (_CONTEXT_FIELDS[name], _CONTEXT_FIELDS[name].set(str(value)))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class _JSONEncoder(json.JSONEncoder):
    """Serialize the kernel's value types; anything else falls back to str()."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (UUID, Decimal)):
            return str(obj)
        if isinstance(obj, (set, frozenset, tuple)):
            return list(obj)
        return str(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
            # EquipmentKernelError subclasses carry their identifiers as attributes.
            for k, v in vars(exc).items():
                if not k.startswith("_") and k not in ("args", "code"):
                    payload[f"exc_{k}"] = v
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "equipment_kernel"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the equipment_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the equipment_kernel logger (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    kernel_logger.addHandler(h)


def reset_logging() -> None:
    """Drop the handlers installed by configure_logging(). Test helper."""
    global _configured
    with _lock:
        _configured = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
