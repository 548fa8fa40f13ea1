"""
Structured JSON logging for the billing engine.

Every record is emitted as one JSON line carrying the message, any
``extra`` fields passed at the call site and the fields bound in
``LogContext`` (keeper run id, cycle, bill, acting account).
"""

import json
import logging
import sys
import threading
from contextvars import ContextVar
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional


class LogContext:
    """Context holder for log fields scoped to one operation or keeper run."""

    _run_id: ContextVar[Optional[str]] = ContextVar("log_run_id", default=None)
    _cycle_id: ContextVar[Optional[int]] = ContextVar("log_cycle_id", default=None)
    _bill_id: ContextVar[Optional[int]] = ContextVar("log_bill_id", default=None)
    _actor: ContextVar[Optional[str]] = ContextVar("log_actor", default=None)

    _FIELD_NAMES = ("run_id", "cycle_id", "bill_id", "actor")

    @classmethod
    def set(
        cls,
        run_id: Optional[str] = None,
        cycle_id: Optional[int] = None,
        bill_id: Optional[int] = None,
        actor: Optional[str] = None
    ) -> None:
        """Set context fields. Only non-None values are updated."""
        if run_id is not None:
            cls._run_id.set(run_id)
        if cycle_id is not None:
            cls._cycle_id.set(cycle_id)
        if bill_id is not None:
            cls._bill_id.set(bill_id)
        if actor is not None:
            cls._actor.set(actor)

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        """Return all non-None context fields as a dict."""
        fields = {}
        for name in cls._FIELD_NAMES:
            value = getattr(cls, f"_{name}").get()
            if value is not None:
                fields[name] = value
        return fields

    @classmethod
    def clear(cls) -> None:
        for name in cls._FIELD_NAMES:
            getattr(cls, f"_{name}").set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_BoundContext":
        """Context manager that sets fields on entry and restores them on exit."""
        return _BoundContext(**fields)


class _BoundContext:

    def __init__(self, **fields: Any):
        self._fields = fields
        self._tokens: Dict[str, Any] = {}

    def __enter__(self) -> type:
        for key, value in self._fields.items():
            var = getattr(LogContext, f"_{key}", None)
            if var is None:
                raise KeyError(f"Unknown log context field: {key}")
            if value is not None:
                self._tokens[key] = var.set(value)
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        for key, token in self._tokens.items():
            getattr(LogContext, f"_{key}").reset(token)


_STDLIB_KEYS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class _JSONEncoder(json.JSONEncoder):

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
            # Structured fields of BillGuardError subclasses
            for key, value in vars(exc).items():
                if not key.startswith("_") and key not in ("args", "code"):
                    payload[f"exc_{key}"] = value
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder, default=str)


_LOGGER_PREFIX = "bill_guard"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the bill_guard namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    level: int = logging.INFO,
    stream: Any = None,
    handler: Optional[logging.Handler] = None
) -> None:
    """Configure the bill_guard logger hierarchy. Later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)

    handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(handler)


def reset_logging() -> None:
    """Reset logging configuration. Intended for tests."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
