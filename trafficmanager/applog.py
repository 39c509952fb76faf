"""Structured application logging with correlation ids."""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Mapping
from typing import Any

CORRELATION_ID_KEY = "correlation_id"
LOGGER_NAME = "trafficmanager"

_DEV_FIELDS = frozenset(
    {CORRELATION_ID_KEY, "method", "path", "status_code", "duration_ms", "error"}
)
_DEV_ENVIRONMENTS = frozenset({"", "development", "dev"})


def is_development() -> bool:
    """True when APP_ENV is unset, empty, ``development`` or ``dev``."""
    return os.environ.get("APP_ENV", "") in _DEV_ENVIRONMENTS


class Logger:
    """A logger carrying structured fields; every ``with_*`` call returns a new logger."""

    __slots__ = ("_logger", "_fields")

    def __init__(self, name: str = LOGGER_NAME, fields: Mapping[str, Any] | None = None):
        self._logger = logging.getLogger(name)
        self._fields = dict(fields or {})

    @property
    def fields(self) -> dict[str, Any]:
        """A copy of the fields attached to this logger."""
        return dict(self._fields)

    def _derive(self, extra: Mapping[str, Any]) -> Logger:
        derived = Logger.__new__(Logger)
        derived._logger = self._logger
        derived._fields = {**self._fields, **extra}
        return derived

    def with_field(self, key: str, value: Any) -> Logger:
        """Attach one field; in development only tracing fields are kept."""
        if is_development() and key not in _DEV_FIELDS:
            return self
        return self._derive({key: value})

    def with_fields(self, fields: Mapping[str, Any]) -> Logger:
        """Attach several fields; in development irrelevant ones are dropped."""
        if is_development():
            relevant = {
                key: value
                for key, value in fields.items()
                if key in _DEV_FIELDS or key.startswith("user_")
            }
            if not relevant:
                return self
            return self._derive(relevant)
        return self._derive(fields)

    def with_error(self, err: BaseException) -> Logger:
        """Attach an error under the ``error`` field."""
        return self._derive({"error": str(err)})

    def with_context(self, context: Mapping[str, Any] | None) -> Logger:
        """Attach the correlation id held in ``context``, if any."""
        if context is None:
            return self
        correlation_id = context.get(CORRELATION_ID_KEY)
        if isinstance(correlation_id, str):
            return self.with_field(CORRELATION_ID_KEY, correlation_id)
        return self

    def _emit(self, level: int, msg: Any, args: tuple) -> str:
        message = str(msg) % args if args else str(msg)
        text = message
        if self._fields:
            rendered = " ".join(f"{key}={value}" for key, value in sorted(self._fields.items()))
            text = f"{message} {rendered}"
        self._logger.log(level, "%s", text, extra={"fields": dict(self._fields)})
        return message

    def debug(self, msg: Any, *args: Any) -> None:
        self._emit(logging.DEBUG, msg, args)

    def info(self, msg: Any, *args: Any) -> None:
        self._emit(logging.INFO, msg, args)

    def warning(self, msg: Any, *args: Any) -> None:
        self._emit(logging.WARNING, msg, args)

    def error(self, msg: Any, *args: Any) -> None:
        self._emit(logging.ERROR, msg, args)

    def fatal(self, msg: Any, *args: Any) -> None:
        """Log at critical level and exit with status 1."""
        self._emit(logging.CRITICAL, msg, args)
        raise SystemExit(1)

    def panic(self, msg: Any, *args: Any) -> None:
        """Log at critical level and raise ``RuntimeError`` with the message."""
        message = self._emit(logging.CRITICAL, msg, args)
        raise RuntimeError(message)


default_logger = Logger()
_test_handler: logging.Handler | None = None


def setup_test_logger() -> None:
    """Configure compact, debug-level console logging and reset the default logger."""
    global default_logger, _test_handler
    base = logging.getLogger(LOGGER_NAME)
    if _test_handler is None:
        _test_handler = logging.StreamHandler()
        _test_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(message)s"))
    if _test_handler not in base.handlers:
        base.addHandler(_test_handler)
    base.setLevel(logging.DEBUG)
    default_logger = Logger()


def with_correlation_id(
    context: Mapping[str, Any] | None,
) -> tuple[dict[str, Any], str]:
    """Return a copy of ``context`` holding a fresh correlation id, and that id."""
    correlation_id = str(uuid.uuid4())
    updated = dict(context or {})
    updated[CORRELATION_ID_KEY] = correlation_id
    return updated, correlation_id


def get_correlation_id(context: Mapping[str, Any] | None) -> str:
    """Return the correlation id held in ``context``, or an empty string."""
    if not context:
        return ""
    correlation_id = context.get(CORRELATION_ID_KEY)
    return correlation_id if isinstance(correlation_id, str) else ""


def for_context(context: Mapping[str, Any] | None) -> Logger:
    """The default logger carrying the correlation id of ``context``."""
    return default_logger.with_context(context)