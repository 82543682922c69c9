from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Optional

from vendlive.errors import HandlerError

from .events import EventHub
from .logging import LoggerLike
from .registry import SubscriptionRegistry
from .subscription import SubscriptionEntry

_log = logging.getLogger(__name__)


class Dispatcher:
    """Fan out inbound messages to every matching subscription handler.

    Handlers run one after another in registration order. A handler that raises
    or exceeds ``handler_timeout`` is reported as ``HandlerError`` and the
    remaining handlers still receive the message.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        events: EventHub,
        *,
        handler_timeout: Optional[float] = 30.0,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._registry = registry
        self._events = events
        self._handler_timeout = handler_timeout
        self._logger = logger or _log

    async def dispatch(self, topic: str, payload: Any) -> int:
        """Deliver ``payload`` to all handlers matching ``topic``; return how many matched."""
        entries = self._registry.matching(topic)
        if not entries:
            self._logger.debug("dispatcher.unmatched", extra={"topic": topic})
            return 0

        for entry in entries:
            await self._deliver(entry, topic, payload)
        return len(entries)

    async def _deliver(self, entry: SubscriptionEntry, topic: str, payload: Any) -> None:
        try:
            result = entry.handler(topic, payload)
            if inspect.isawaitable(result):
                if self._handler_timeout:
                    await asyncio.wait_for(result, timeout=self._handler_timeout)
                else:
                    await result
        except asyncio.TimeoutError as exc:
            self._report(entry, topic, "handler_timeout", exc)
        except Exception as exc:
            self._report(entry, topic, str(exc) or type(exc).__name__, exc)

    def _report(self, entry: SubscriptionEntry, topic: str, error: str, cause: BaseException) -> None:
        self._logger.error(
            "dispatcher.handler.error",
            extra={"pattern": entry.pattern, "topic": topic, "error": error},
            exc_info=cause,
        )
        failure = HandlerError(entry.pattern, topic, error)
        failure.__cause__ = cause
        self._events.emit_error(failure)


__all__ = ["Dispatcher"]
