"""Ordered buffer of outbound messages accepted while disconnected."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Iterator, Optional

from vendlive.errors import OfflineQueueFullError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QueuedMessage:
    """A publish waiting for connectivity."""

    topic: str
    payload: bytes
    qos: int = 0
    retained: bool = False
    enqueued_at: float = field(default_factory=time.time)


class OverflowPolicy(str, Enum):
    """What a bounded queue does when it is full."""

    DROP_OLDEST = "drop_oldest"
    REJECT_NEWEST = "reject_newest"


class OfflineQueue:
    """FIFO of ``QueuedMessage`` drained strictly in insertion order.

    Unbounded by default. With ``maxsize > 0`` the overflow policy decides
    whether the head is evicted (``drop_oldest``) or the new message is refused
    with ``OfflineQueueFullError`` (``reject_newest``).
    """

    def __init__(
        self,
        *,
        maxsize: int = 0,
        overflow: OverflowPolicy | str = OverflowPolicy.DROP_OLDEST,
    ) -> None:
        if maxsize < 0:
            raise ValueError("maxsize must be >= 0")
        self._items: deque[QueuedMessage] = deque()
        self._maxsize = maxsize
        self._overflow = OverflowPolicy(overflow)
        self.dropped = 0
        self._closed = False

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[QueuedMessage]:
        return iter(list(self._items))

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def overflow(self) -> OverflowPolicy:
        return self._overflow

    def enqueue(self, message: QueuedMessage) -> Optional[QueuedMessage]:
        """Append ``message``; return the evicted head when ``drop_oldest`` kicks in.

        Raises:
            OfflineQueueFullError: If the queue is full under ``reject_newest``.
        """
        evicted: Optional[QueuedMessage] = None
        if self._maxsize and len(self._items) >= self._maxsize:
            if self._overflow is OverflowPolicy.REJECT_NEWEST:
                self._log_overflow("reject_newest", message.topic)
                raise OfflineQueueFullError(message.topic, self._maxsize)
            evicted = self._items.popleft()
            self.dropped += 1
            self._log_overflow("drop_oldest", evicted.topic)

        self._items.append(message)
        logger.debug("offline_queue.enqueue", extra={"topic": message.topic, "size": len(self._items)})
        return evicted

    def requeue_front(self, message: QueuedMessage) -> None:
        """Put ``message`` back at the head (used when a send is rejected)."""
        if self._closed:
            return
        self._items.appendleft(message)

    async def drain(self, send: Callable[[QueuedMessage], Awaitable[None]]) -> int:
        """Hand messages to ``send`` in order until empty; return how many were sent.

        Messages appended while draining are sent by this same call. If ``send``
        raises, the failed message goes back to the head, the remainder keeps its
        order, and the exception propagates. A closed queue takes nothing back.
        """
        sent = 0
        while self._items:
            message = self._items.popleft()
            try:
                await send(message)
            except BaseException:
                self.requeue_front(message)
                raise
            sent += 1
        if sent:
            logger.info("offline_queue.drained", extra={"sent": sent})
        return sent

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Drop every message; sends still unwinding can no longer requeue."""
        self._closed = True
        self._items.clear()

    def _log_overflow(self, mode: str, topic: str) -> None:
        logger.warning(
            "offline_queue.overflow",
            extra={"mode": mode, "topic": topic, "size": len(self._items), "maxsize": self._maxsize},
        )


__all__ = ["QueuedMessage", "OverflowPolicy", "OfflineQueue"]
