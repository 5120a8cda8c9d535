"""
Structured JSON logging for the approval core.

Every kernel logger lives under the ``erp_kernel`` namespace and writes one
JSON object per line.  Request-scoped fields (the acting principal, the
document being decided) are carried by ``LogContext`` and merged into every
record emitted while they are bound.
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TextIO

ROOT_LOGGER = "erp_kernel"

_CONTEXT_FIELDS = frozenset({
    "correlation_id",
    "actor_id",
    "entity_type",
    "entity_id",
    "trace_id",
})

_bound: ContextVar[Mapping[str, str]] = ContextVar("erp_log_context", default={})


def _checked(fields: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - _CONTEXT_FIELDS
    if unknown:
        raise TypeError(f"unknown log context field(s): {', '.join(sorted(unknown))}")
    return {k: v for k, v in fields.items() if v is not None}


class LogContext:
    """
    Request-scoped log fields.

    The bound fields are a snapshot per context.  ``set`` and ``bind``
    replace it and never mutate it in place.
    """

    @staticmethod
    def set(**fields: str | None) -> None:
        """Overlay the non-None fields onto the current context."""
        _bound.set({**_bound.get(), **_checked(fields)})

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_bound.get())

    @staticmethod
    def clear() -> None:
        _bound.set({})

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[type["LogContext"]]:
        """Bind fields (stringified) for the block, restoring the previous set."""
        overlay = {k: str(v) for k, v in _checked(fields).items()}
        token = _bound.set({**_bound.get(), **overlay})
        try:
            yield LogContext
        finally:
            _bound.reset(token)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    # UUID, Decimal and anything else unknown fall back to str().
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Type, message and public attributes (kernel errors carry a code)."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, bound context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_setup_lock = threading.Lock()
_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Install the JSON handler on the ``erp_kernel`` logger.

    Only the first call has an effect until ``reset_logging``.  Records do
    not propagate to the root logger.
    """
    global _installed
    with _setup_lock:
        if _installed is not None:
            return
        target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())
        kernel = logging.getLogger(ROOT_LOGGER)
        kernel.setLevel(level)
        kernel.propagate = False
        kernel.addHandler(target)
        _installed = target


def reset_logging() -> None:
    """Remove every handler from the kernel logger (used between tests)."""
    global _installed
    with _setup_lock:
        kernel = logging.getLogger(ROOT_LOGGER)
        kernel.handlers.clear()
        kernel.setLevel(logging.WARNING)
        _installed = None
