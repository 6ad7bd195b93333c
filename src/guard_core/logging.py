"""Structured logging for circuit breakers.

Breakers log three events: ``circuit_breaker.state_changed``,
``circuit_breaker.call_rejected`` and ``circuit_breaker.listener_failed``.
Each breaker binds its own name once, so every event carries ``breaker=``
whether the logger is a structlog logger or a stdlib one.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping, MutableMapping
from typing import Any, Literal, Protocol

import structlog
from structlog.typing import EventDict

_LOG_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_StdlibLogger = logging.Logger | logging.LoggerAdapter[logging.Logger]


class StructuredLogger(Protocol):
    """Structlog-style logger with keyword fields and ``bind``."""

    def bind(self, **fields: object) -> StructuredLogger:
        """Return a logger that adds ``fields`` to every event."""

    def info(self, event: str, **kwargs: object) -> None:
        """Log an informational event."""

    def warning(self, event: str, **kwargs: object) -> None:
        """Log a warning event."""

    def exception(self, event: str, **kwargs: object) -> None:
        """Log an exception event."""


LoggerLike = StructuredLogger | _StdlibLogger


class _BoundFieldsAdapter(logging.LoggerAdapter[logging.Logger]):
    """Stdlib adapter that merges bound fields with per-call ``extra``."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        bound: Mapping[str, object] = self.extra or {}
        kwargs["extra"] = {**bound, **kwargs.get("extra", {})}
        return msg, kwargs


def bind_breaker_logger(logger: LoggerLike, *, breaker: str) -> LoggerLike:
    """Return ``logger`` with the breaker name bound to every event."""
    if isinstance(logger, logging.LoggerAdapter):
        bound: dict[str, object] = dict(logger.extra or {})
        bound["breaker"] = breaker
        return _BoundFieldsAdapter(logger.logger, bound)
    if isinstance(logger, logging.Logger):
        return _BoundFieldsAdapter(logger, {"breaker": breaker})
    return logger.bind(breaker=breaker)


def _log(
    logger: LoggerLike,
    level: Literal["info", "warning", "exception"],
    event: str,
    **fields: object,
) -> None:
    method = getattr(logger, level)
    if isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        method(event, extra=fields)
        return
    method(event, **fields)


def log_info(logger: LoggerLike, event: str, **fields: object) -> None:
    _log(logger, "info", event, **fields)


def log_warning(logger: LoggerLike, event: str, **fields: object) -> None:
    _log(logger, "warning", event, **fields)


def log_exception(logger: LoggerLike, event: str, **fields: object) -> None:
    _log(logger, "exception", event, **fields)


def get_log_level_value(level: str) -> int:
    """Return stdlib log level constant for a normalized level string."""
    normalized = level.strip().upper()
    try:
        return _LOG_LEVELS[normalized]
    except KeyError as error:
        choices = ", ".join(sorted(_LOG_LEVELS))
        raise ValueError(f"log_level must be one of: {choices}") from error


def add_transition(_: object, __: str, event_dict: EventDict) -> EventDict:
    """Add ``transition="old->new"`` to state change events.

    Gives dashboards one field to group breaker transitions on.
    """
    old_state = event_dict.get("old_state")
    new_state = event_dict.get("new_state")
    if old_state is not None and new_state is not None:
        event_dict["transition"] = f"{old_state}->{new_state}"
    return event_dict


def configure_structlog(*, log_level: str) -> structlog.stdlib.BoundLogger:
    """Route breaker events from structlog and stdlib loggers to stderr.

    Stdlib records keep their ``extra=`` fields, so breakers given a plain
    ``logging.Logger`` render the same fields as structlog ones. Output is a
    console rendering on a TTY and JSON lines otherwise. Calling this again
    replaces the previous handler.
    """
    level_value = get_log_level_value(log_level)
    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer()
        if sys.stderr.isatty()
        else structlog.processors.JSONRenderer()
    )
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.ExtraAdder(),
            add_transition,
            timestamper,
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    logging.basicConfig(handlers=[handler], level=level_value, force=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_transition,
            timestamper,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return structlog.stdlib.get_logger("guard_core")
