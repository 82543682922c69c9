from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol


@dataclass(frozen=True, slots=True)
class WillMessage:
    """Last-will message the broker publishes if the client vanishes."""

    topic: str
    payload: bytes
    qos: int = 1
    retain: bool = True


@dataclass(frozen=True, slots=True)
class ConnectOptions:
    """Options handed to ``Transport.connect`` for a single attempt."""

    client_id: str
    username: Optional[str] = None
    password: Optional[str] = None
    keepalive: int = 30
    clean_session: bool = True
    will: Optional[WillMessage] = None

    def __repr__(self) -> str:
        password_str = "***REDACTED***" if self.password else None
        return (
            f"ConnectOptions(client_id={self.client_id!r}, username={self.username!r}, "
            f"password={password_str!r}, keepalive={self.keepalive}, "
            f"clean_session={self.clean_session}, will={self.will!r})"
        )


@dataclass(frozen=True, slots=True)
class ConnectionLost:
    """Connection-lost notification from the transport.

    ``intentional`` is True when the broker link was closed on purpose (a clean
    DISCONNECT); only unsolicited losses trigger automatic reconnection.
    """

    intentional: bool = False
    error: Optional[BaseException] = None


MessageCallback = Callable[[str, bytes], Awaitable[None]]
ConnectionLostCallback = Callable[[ConnectionLost], None]


class Transport(Protocol):
    """Lower-level broker client the session drives.

    Every coroutine raises on failure; ``connect`` raising means the attempt
    was rejected. Inbound frames are delivered through the bound
    ``on_message`` coroutine, awaited one at a time in delivery order.
    """

    def bind(self, on_message: MessageCallback, on_connection_lost: ConnectionLostCallback) -> None: ...

    def unbind(self) -> None: ...

    async def connect(self, options: ConnectOptions) -> None: ...

    async def subscribe(self, pattern: str, qos: int) -> None: ...

    async def unsubscribe(self, pattern: str) -> None: ...

    async def publish(self, topic: str, payload: bytes, qos: int, retained: bool) -> None: ...

    async def disconnect(self) -> None: ...


__all__ = [
    "WillMessage",
    "ConnectOptions",
    "ConnectionLost",
    "MessageCallback",
    "ConnectionLostCallback",
    "Transport",
]
