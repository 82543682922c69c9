from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

Handler = Callable[[str, Any], Union[Awaitable[None], None]]
"""Subscription handler: called with ``(topic, payload)``.

May be a plain function or a coroutine function; coroutines are awaited by the
dispatcher. Exceptions are isolated and reported as ``HandlerError``.
"""


@dataclass(frozen=True, slots=True)
class SubscriptionEntry:
    """Describe a subscription binding pattern -> handler."""

    pattern: str
    handler: Handler
    qos: int = 0


__all__ = ["Handler", "SubscriptionEntry"]
