"""Exception taxonomy for the live-update session.

Errors local to one subscription or handler are reported through the session's
error listeners. Session-wide failures (``ConnectError``,
``ReconnectExhaustedError``) are also raised from the call that triggered them.
"""

from __future__ import annotations

from typing import Optional


class SessionError(RuntimeError):
    """Base class for every error raised by vendlive."""


class InvalidPatternError(SessionError, ValueError):
    """Malformed subscription pattern (e.g. ``#`` not in the final segment)."""

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"Invalid topic pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class InvalidTopicError(InvalidPatternError):
    """Malformed publish topic (wildcards are not allowed when publishing)."""


class ConnectError(SessionError, ConnectionError):
    """The transport rejected or timed out a connection attempt."""


class TransportError(SessionError):
    """A subscribe, unsubscribe or publish failed at the transport while connected."""

    def __init__(self, action: str, topic: str, message: str) -> None:
        super().__init__(f"{action} failed for {topic!r}: {message}")
        self.action = action
        self.topic = topic


class ReconnectExhaustedError(SessionError):
    """Automatic reconnection gave up after the configured number of attempts."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None) -> None:
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Reconnect gave up after {attempts} attempt(s){detail}")
        self.attempts = attempts
        self.last_error = last_error


class HandlerError(SessionError):
    """A subscription handler raised (or timed out) while processing a message."""

    def __init__(self, pattern: str, topic: str, message: str) -> None:
        super().__init__(f"Handler for {pattern!r} failed on {topic!r}: {message}")
        self.pattern = pattern
        self.topic = topic


class SessionDisposedError(SessionError):
    """The session was disposed; no further operations are accepted."""


class OfflineQueueFullError(SessionError):
    """The bounded offline queue refused a message (``reject_newest`` policy)."""

    def __init__(self, topic: str, maxsize: int) -> None:
        super().__init__(f"Offline queue full ({maxsize} messages); rejected publish to {topic!r}")
        self.topic = topic
        self.maxsize = maxsize


__all__ = [
    "SessionError",
    "InvalidPatternError",
    "InvalidTopicError",
    "ConnectError",
    "TransportError",
    "ReconnectExhaustedError",
    "HandlerError",
    "SessionDisposedError",
    "OfflineQueueFullError",
]
