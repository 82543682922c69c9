from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConnectionEvent:
    """Payload delivered to connection listeners."""

    connected: bool
    error: Optional[BaseException] = None


ConnectionListener = Callable[[ConnectionEvent], None]
ErrorListener = Callable[[BaseException], None]


class EventHub:
    """Connection-state and error listener sets for one session.

    Listeners are called synchronously in registration order. A listener that
    raises is logged and skipped; it never breaks the caller.
    """

    def __init__(self) -> None:
        # dicts keep registration order and behave as sets
        self._connection: dict[ConnectionListener, None] = {}
        self._error: dict[ErrorListener, None] = {}

    def add_connection_listener(self, listener: ConnectionListener) -> None:
        self._connection[listener] = None

    def remove_connection_listener(self, listener: ConnectionListener) -> None:
        self._connection.pop(listener, None)

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error[listener] = None

    def remove_error_listener(self, listener: ErrorListener) -> None:
        self._error.pop(listener, None)

    def emit_connection(self, event: ConnectionEvent) -> None:
        logger.debug("events.connection", extra={"connected": event.connected})
        for listener in list(self._connection):
            try:
                listener(event)
            except Exception:
                logger.exception("events.listener.error", extra={"stream": "connection"})

    def emit_error(self, error: BaseException) -> None:
        logger.error("session.error", extra={"error_type": type(error).__name__, "error": str(error)})
        for listener in list(self._error):
            try:
                listener(error)
            except Exception:
                logger.exception("events.listener.error", extra={"stream": "error"})

    def clear(self) -> None:
        self._connection.clear()
        self._error.clear()


__all__ = ["ConnectionEvent", "ConnectionListener", "ErrorListener", "EventHub"]
