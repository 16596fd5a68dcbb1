"""
Structured JSON logging for the patronage dividend engine.

Every record is one JSON line carrying the message key, level, logger and
timestamp, the request-scoped fields held in ``LogContext`` (correlation
id, tenant, distribution, actor) and whatever the caller passed through
``extra=``.  Engine errors attached via ``exc_info`` contribute their code
and structured attributes as ``exc_*`` fields.
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
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

_ROOT_LOGGER = "patronage_kernel"


class LogContext:
    """
    Request-scoped log fields, isolated per thread and per asyncio task.

    The fields live together in one ``ContextVar`` so worker threads started
    with ``contextvars.copy_context()`` see the caller's tenant and actor.
    """

    FIELDS = ("correlation_id", "tenant_id", "distribution_id", "actor")

    _fields: ContextVar[dict[str, str]] = ContextVar("patronage_log_fields", default={})

    @classmethod
    def _merged(cls, values: dict[str, Any]) -> dict[str, str]:
        unknown = set(values) - set(cls.FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        merged = dict(cls._fields.get())
        merged.update({k: str(v) for k, v in values.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **values: Any) -> None:
        """Set the given fields; ``None`` leaves a field untouched."""
        cls._fields.set(cls._merged(values))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(cls._fields.get())

    @classmethod
    def clear(cls) -> None:
        cls._fields.set({})

    @classmethod
    @contextmanager
    def bind(cls, **values: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block, then restore."""
        token = cls._fields.set(cls._merged(values))
        try:
            yield cls
        finally:
            cls._fields.reset(token)


# Attributes every LogRecord carries; anything else came from ``extra=``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
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
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
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

        return json.dumps(payload, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """Return ``patronage_kernel.<name>``."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


_state_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``patronage_kernel`` logger.

    Safe to call repeatedly: only the first call installs a handler, later
    calls are no-ops until ``reset_logging()``.
    """
    global _installed_handler
    with _state_lock:
        if _installed_handler is not None:
            return
        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())

        root = logging.getLogger(_ROOT_LOGGER)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(handler)
        _installed_handler = handler


def reset_logging() -> None:
    """Detach the installed handler (test support)."""
    global _installed_handler
    with _state_lock:
        root = logging.getLogger(_ROOT_LOGGER)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
        _installed_handler = None
