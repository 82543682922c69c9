from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterator, Optional

from vendlive.domain.topics import topic_matches, validate_pattern, validate_qos

from .subscription import Handler, SubscriptionEntry

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    """Pattern -> handler table replayed to the transport after reconnection.

    Holds at most one entry per exact pattern string. Iteration and matching
    follow registration order, so dispatch order is deterministic.
    """

    def __init__(self) -> None:
        self._entries: dict[str, SubscriptionEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, pattern: object) -> bool:
        return pattern in self._entries

    def __iter__(self) -> Iterator[SubscriptionEntry]:
        return iter(list(self._entries.values()))

    @property
    def patterns(self) -> list[str]:
        return list(self._entries)

    def get(self, pattern: str) -> Optional[SubscriptionEntry]:
        return self._entries.get(pattern)

    def add(self, pattern: str, handler: Handler, qos: int = 0) -> SubscriptionEntry:
        """Validate and store a subscription, replacing any entry for ``pattern``.

        Raises:
            InvalidPatternError: If the pattern is malformed.
            ValueError: If ``qos`` is not 0, 1 or 2.
        """
        validate_pattern(pattern)
        validate_qos(qos)
        if not callable(handler):
            raise TypeError(f"Handler for {pattern!r} must be callable")

        entry = SubscriptionEntry(pattern=pattern, handler=handler, qos=qos)
        replaced = pattern in self._entries
        self._entries[pattern] = entry
        logger.debug("registry.add", extra={"pattern": pattern, "qos": qos, "replaced": replaced})
        return entry

    def remove(self, pattern: str) -> Optional[SubscriptionEntry]:
        """Remove and return the entry for ``pattern``; unknown patterns are a no-op."""
        entry = self._entries.pop(pattern, None)
        if entry is not None:
            logger.debug("registry.remove", extra={"pattern": pattern})
        return entry

    def matching(self, topic: str) -> list[SubscriptionEntry]:
        """Snapshot of every entry whose pattern matches ``topic``."""
        return [entry for entry in self._entries.values() if topic_matches(topic, entry.pattern)]

    async def replay_all(
        self,
        issue: Callable[[SubscriptionEntry], Awaitable[None]],
        on_error: Callable[[SubscriptionEntry, Exception], None],
    ) -> int:
        """Re-issue every stored subscription; return the number that failed.

        Entries are independent, so they are issued concurrently. A failing entry
        is reported through ``on_error`` and does not abort the others.
        """
        entries = list(self._entries.values())
        if not entries:
            return 0

        results = await asyncio.gather(*(issue(entry) for entry in entries), return_exceptions=True)
        failures = 0
        for entry, result in zip(entries, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                failures += 1
                on_error(entry, result)
        logger.info("registry.replay", extra={"count": len(entries), "failures": failures})
        return failures

    def clear(self) -> None:
        self._entries.clear()


__all__ = ["SubscriptionRegistry"]
