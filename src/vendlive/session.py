"""Live-update session for vending-fleet dashboards.

A ``Session`` owns one broker connection and hides its instability from
callers: subscriptions survive reconnects, publishes issued while offline are
buffered and flushed in order, and handlers are routed by wildcard topic.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from vendlive.adapters.mqtt_asyncio import AsyncioMQTTTransport
from vendlive.config import SessionConfig
from vendlive.contracts.payloads import encode_payload
from vendlive.domain.ports import Transport
from vendlive.domain.topics import validate_qos, validate_topic
from vendlive.errors import SessionDisposedError

from .runtime.connection import Connection, ConnectionManager, ConnectionState
from .runtime.dispatcher import Dispatcher
from .runtime.events import ConnectionListener, ErrorListener, EventHub
from .runtime.logging import SessionLogger
from .runtime.offline_queue import OfflineQueue, QueuedMessage
from .runtime.registry import SubscriptionRegistry
from .runtime.subscription import Handler

logger = logging.getLogger(__name__)


class Session:
    """Resilient publish/subscribe session over a single broker connection.

    Features:
        - Bounded automatic reconnection with optional exponential backoff
        - Subscription replay after every successful (re)connection
        - Ordered offline queue for publishes issued while disconnected
        - Wildcard routing (``+`` one segment, ``#`` trailing segments)
        - Handler error isolation reported through error listeners
        - Optional retained online/offline status with last-will

    Example:
        ```python
        async with Session(SessionConfig(broker_url="ws://broker:9001/mqtt")) as session:
            async def on_status(topic: str, payload: bytes) -> None:
                status = decode_payload(payload, MachineStatus)
                print(topic, status.state)

            await session.subscribe("machines/+/status", on_status)
            await session.publish("machines/12/alarms", {"code": "E42"}, qos=1)
        ```
    """

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        *,
        transport: Optional[Transport] = None,
    ) -> None:
        self._config = config or SessionConfig()
        if transport is None:
            transport = AsyncioMQTTTransport(self._config.broker())
        self._transport = transport

        self._registry = SubscriptionRegistry()
        self._queue = OfflineQueue(
            maxsize=self._config.offline_queue_maxsize,
            overflow=self._config.offline_queue_overflow,
        )
        self._events = EventHub()
        connection = Connection(config=self._config)
        self._dispatcher = Dispatcher(
            self._registry,
            self._events,
            handler_timeout=self._config.handler_timeout,
            logger=SessionLogger(logging.getLogger(Dispatcher.__module__), connection),
        )
        self._manager = ConnectionManager(
            transport,
            connection,
            self._registry,
            self._queue,
            self._dispatcher,
            self._events,
        )

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        *,
        transport: Optional[Transport] = None,
    ) -> Session:
        """Build a session from ``MQTT_*`` environment variables."""
        return cls(SessionConfig.from_env(env), transport=transport)

    # --- Introspection ---

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def connection(self) -> Connection:
        return self._manager.connection

    @property
    def state(self) -> ConnectionState:
        return self._manager.state

    @property
    def connected(self) -> bool:
        """Check if the session currently holds a live broker connection."""
        return self._manager.connected

    @property
    def client_id(self) -> str:
        return self._config.client_id

    @property
    def pending_messages(self) -> int:
        """Number of publishes waiting in the offline queue."""
        return len(self._queue)

    @property
    def subscriptions(self) -> list[str]:
        return self._registry.patterns

    @property
    def transport(self) -> Transport:
        return self._transport

    # --- Context manager ---

    async def __aenter__(self) -> Session:
        """Async context manager entry (auto-connect)."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[Any],
    ) -> None:
        """Async context manager exit (auto-dispose)."""
        await self.disconnect()

    # --- Lifecycle ---

    async def connect(self) -> None:
        """Connect to the broker.

        Resolves once connected, with stored subscriptions replayed and the
        offline queue drained. Raises ``ConnectError`` if this first attempt
        fails; automatic retries then continue in the background and report
        through ``on_connection``/``on_error`` listeners.

        Raises:
            ConnectError: If the first connection attempt is rejected or times out
            SessionDisposedError: If the session has been disposed
        """
        await self._manager.connect()

    async def disconnect(self) -> None:
        """Intentionally close the session.

        Publishes the retained ``offline`` status when configured, then
        disposes: pending reconnects are cancelled, in-flight operations fail
        with ``SessionDisposedError``, and subscriptions, queued messages and
        listeners are cleared. Idempotent.
        """
        await self._manager.close()

    dispose = disconnect

    # --- Messaging ---

    async def subscribe(self, pattern: str, handler: Handler, qos: int = 0) -> None:
        """Register ``handler`` for topics matching ``pattern``.

        The subscription is stored immediately and survives reconnection. When
        connected it is also sent to the broker now; otherwise it is sent on the
        next successful connection. Subscribing an existing pattern replaces its
        handler.

        Args:
            pattern: Topic pattern (``+`` single level, ``#`` multi-level, last only)
            handler: ``(topic, payload)`` callable, sync or async
            qos: Delivery tier requested from the broker (0, 1 or 2)

        Raises:
            InvalidPatternError: If the pattern is malformed
            TransportError: If the broker rejects it while connected (the entry stays stored)
            SessionDisposedError: If the session has been disposed
        """
        self._ensure_active()
        entry = self._registry.add(pattern, handler, qos)
        await self._manager.subscribe(entry)

    async def unsubscribe(self, pattern: str) -> None:
        """Forget ``pattern``. Unknown patterns are ignored."""
        self._ensure_active()
        if self._registry.remove(pattern) is None:
            logger.debug("session.unsubscribe.unknown", extra={"pattern": pattern})
            return
        await self._manager.unsubscribe(pattern)

    async def publish(
        self,
        topic: str,
        payload: Any,
        *,
        qos: int = 0,
        retained: bool = False,
    ) -> None:
        """Publish ``payload`` to ``topic``, buffering it while disconnected.

        ``payload`` may be bytes, a string (UTF-8), a pydantic model or any
        JSON-serializable value (encoded with orjson). Disconnection never
        fails the call; buffered messages are sent in order on reconnection.

        Raises:
            InvalidTopicError: If the topic is empty or contains wildcards
            ValueError: If ``qos`` is not 0, 1 or 2
            TypeError: If the payload cannot be serialized
            OfflineQueueFullError: If a bounded queue with ``reject_newest`` is full
            SessionDisposedError: If the session has been disposed
        """
        self._ensure_active()
        validate_topic(topic)
        validate_qos(qos)
        message = QueuedMessage(topic=topic, payload=encode_payload(payload), qos=qos, retained=retained)
        await self._manager.publish(message)

    async def flush(self) -> int:
        """Send whatever is queued now, if connected. Returns the number sent."""
        self._ensure_active()
        return await self._manager.flush()

    # --- Listeners ---

    def on_connection(self, listener: ConnectionListener) -> ConnectionListener:
        """Register a connection listener; returns it so it can be used as a decorator."""
        self._events.add_connection_listener(listener)
        return listener

    def off_connection(self, listener: ConnectionListener) -> None:
        self._events.remove_connection_listener(listener)

    def on_error(self, listener: ErrorListener) -> ErrorListener:
        self._events.add_error_listener(listener)
        return listener

    def off_error(self, listener: ErrorListener) -> None:
        self._events.remove_error_listener(listener)

    def _ensure_active(self) -> None:
        if self._manager.disposed:
            raise SessionDisposedError("Session has been disposed")


__all__ = ["Session"]
