"""
Structured JSON logging for the billing packages.

Responsibility:
    One JSON object per log line, carrying the conversion-scoped identifiers
    (correlation, quote, contract, invoice, actor) alongside whatever the
    call site passes in ``extra``.

Architecture position:
    Kernel -- every engine and service module obtains its logger through
    get_logger(), so all output hangs off the ``billing_kernel`` logger.

Invariants enforced:
    - Scoped identifiers live in a single ContextVar; threads and tasks see
      only the values they bound themselves.
    - Leaving a bind() block restores exactly what was visible on entry.
    - configure_logging() attaches at most one handler until reset_logging().
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
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "billing_kernel"

CONTEXT_FIELDS = ("correlation_id", "quote_id", "contract_id", "invoice_id", "actor_id")

_EMPTY: Mapping[str, str] = MappingProxyType({})
_scope: ContextVar[Mapping[str, str]] = ContextVar("billing_log_scope", default=_EMPTY)


def _merged(current: Mapping[str, str], fields: dict[str, str | None]) -> Mapping[str, str]:
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
    updated = dict(current)
    updated.update((k, v) for k, v in fields.items() if v is not None)
    return MappingProxyType(updated)


class LogContext:
    """Identifiers stamped onto every record emitted in the current scope."""

    @staticmethod
    def set(**fields: str | None) -> None:
        """Overwrite the named fields for the rest of the current scope; None leaves a field as is."""
        _scope.set(_merged(_scope.get(), fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_scope.get())

    @staticmethod
    def clear() -> None:
        _scope.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[type["LogContext"]]:
        """
        Layer fields over the current scope for the duration of a block.

        Usage:
            with LogContext.bind(quote_id=quote.id, actor_id=user_id):
                ...
        """
        token = _scope.set(_merged(_scope.get(), fields))
        try:
            yield LogContext
        finally:
            _scope.reset(token)


def _to_json(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class StructuredFormatter(logging.Formatter):
    """Renders a LogRecord as a compact JSON document."""

    def format(self, record: logging.LogRecord) -> str:
        doc: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_scope.get(),
        }
        doc.update(
            (key, value) for key, value in vars(record).items()
            if key not in _RESERVED and key not in doc
        )
        if record.exc_info and record.exc_info[1] is not None:
            doc.update(self._exception_fields(record.exc_info[1]))
            doc["traceback"] = self.formatException(record.exc_info)
        return json.dumps(doc, default=_to_json)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        # BillingEngineError subclasses keep their structured details as public attributes.
        fields: dict[str, Any] = {"exc_type": type(exc).__name__, "exc_message": str(exc)}
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        fields.update(
            (f"exc_{name}", value) for name, value in vars(exc).items()
            if not name.startswith("_") and name not in ("args", "code")
        )
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger named ``billing_kernel.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_setup_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Route billing_kernel records through a StructuredFormatter.

    The first call wins; later calls are ignored until reset_logging().
    Records do not propagate to the root logger.
    """
    global _handler
    with _setup_lock:
        if _handler is not None:
            return
        _handler = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())
        base = logging.getLogger(_LOGGER_PREFIX)
        base.setLevel(level)
        base.propagate = False
        base.addHandler(_handler)


def reset_logging() -> None:
    """Detach the configured handler so tests can reconfigure."""
    global _handler
    with _setup_lock:
        base = logging.getLogger(_LOGGER_PREFIX)
        base.handlers.clear()
        base.setLevel(logging.WARNING)
        base.propagate = True
        _handler = None
