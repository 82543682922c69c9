"""JSON log lines and per-session log context.

Modules log event names (``connection.lost``) with structured fields in
``extra``. ``JsonFormatter`` lifts those fields to top-level keys and
``SessionLogger`` stamps the owning session's ``client_id`` and connection
``state`` onto each record, so interleaved sessions stay distinguishable.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import TYPE_CHECKING, Any, MutableMapping, Union

import orjson

if TYPE_CHECKING:
    from .connection import Connection

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Return the ``extra`` fields attached to ``record``."""
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per record; ``extra`` fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(record_fields(record))

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)

        return orjson.dumps(payload, default=repr).decode()


class SessionLogger(logging.LoggerAdapter):
    """Logger adapter adding the session's ``client_id`` and current ``state``.

    Fields passed in ``extra`` at the call site win over the stamped ones.
    """

    def __init__(self, logger: logging.Logger, connection: "Connection") -> None:
        super().__init__(logger, {})
        self._connection = connection

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        context = {
            "client_id": self._connection.client_id,
            "state": self._connection.state.value,
        }
        context.update(kwargs.get("extra") or {})
        kwargs["extra"] = context
        return msg, kwargs


LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


def configure_logging(level: str = "INFO", *, name: str = "vendlive") -> logging.Logger:
    """Send JSON lines for every logger to stderr; return the logger called ``name``."""
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "SessionLogger", "LoggerLike", "configure_logging", "record_fields"]
