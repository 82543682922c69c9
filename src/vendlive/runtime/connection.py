"""Connection state machine with bounded automatic reconnection.

On every successful connection the manager replays the subscription registry,
drains the offline queue in order and only then notifies connection listeners.
All state changes happen on the event loop; nothing here needs a lock.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Optional, TypeVar

from vendlive.config import SessionConfig
from vendlive.domain.ports import ConnectionLost, ConnectOptions, Transport, WillMessage
from vendlive.errors import (
    ConnectError,
    ReconnectExhaustedError,
    SessionDisposedError,
    TransportError,
)

from .dispatcher import Dispatcher
from .events import ConnectionEvent, EventHub
from .logging import SessionLogger
from .offline_queue import OfflineQueue, QueuedMessage
from .registry import SubscriptionRegistry
from .subscription import SubscriptionEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_ONLINE = b"online"
STATUS_OFFLINE = b"offline"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISPOSED = "disposed"


@dataclass(slots=True)
class Connection:
    """The single broker connection owned by a session."""

    config: SessionConfig
    state: ConnectionState = ConnectionState.DISCONNECTED
    reconnect_attempts: int = 0

    @property
    def client_id(self) -> str:
        return self.config.client_id

    @property
    def credentials(self) -> tuple[Optional[str], Optional[str]]:
        broker = self.config.broker()
        return broker.username, broker.password


class ConnectionManager:
    """Own the connection lifecycle and keep subscriptions and queued publishes consistent.

    States: ``disconnected`` (initial) -> ``connecting`` -> ``connected``;
    failures and unsolicited losses go through ``reconnecting`` until the
    attempt limit settles the connection back in ``disconnected``.
    ``disposed`` is terminal.
    """

    def __init__(
        self,
        transport: Transport,
        connection: Connection,
        registry: SubscriptionRegistry,
        queue: OfflineQueue,
        dispatcher: Dispatcher,
        events: EventHub,
    ) -> None:
        self._transport = transport
        self.connection = connection
        self._registry = registry
        self._queue = queue
        self._dispatcher = dispatcher
        self._events = events
        self._log = SessionLogger(logger, connection)

        self._attempt: Optional[asyncio.Future[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None
        self._inflight: set[asyncio.Future[Any]] = set()
        self._draining = False

        transport.bind(self._on_message, self.handle_connection_lost)

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def connected(self) -> bool:
        return self.connection.state is ConnectionState.CONNECTED

    @property
    def disposed(self) -> bool:
        return self.connection.state is ConnectionState.DISPOSED

    # --- Lifecycle ---

    async def connect(self) -> None:
        """Connect once; raise ``ConnectError`` if this first attempt fails.

        Automatic retries that follow a failure are not awaited here; they are
        reported through the connection and error listeners.
        """
        self._ensure_active()
        if self.connected:
            self._log.debug("connection.connect.skipped", extra={"reason": "already_connected"})
            return

        if self._attempt is not None and not self._attempt.done():
            await self._await_attempt(self._attempt)
            return

        if self.connection.state is ConnectionState.RECONNECTING:
            self._cancel_reconnect()
        else:
            # a manual connect after giving up gets a fresh retry budget
            self.connection.reconnect_attempts = 0

        self._set_state(ConnectionState.CONNECTING)
        attempt = self._attempt = asyncio.ensure_future(self._first_attempt())
        attempt.add_done_callback(self._attempt_done)
        await self._await_attempt(attempt)

    async def close(self) -> None:
        """Intentional teardown: announce ``offline`` when connected, then dispose."""
        if self.disposed:
            return
        if self.connected:
            await self._announce(STATUS_OFFLINE)
        await self.dispose()

    async def dispose(self) -> None:
        """Move to ``disposed``: stop retries, reject in-flight calls, clear all state."""
        if self.disposed:
            return

        was_connected = self.connected
        self._set_state(ConnectionState.DISPOSED)
        self._transport.unbind()

        pending = [
            task
            for task in (self._reconnect_task, self._attempt, *self._inflight)
            if task is not None and not task.done()
        ]
        for task in pending:
            task.cancel()
        self._reconnect_task = None
        self._attempt = None

        self._registry.clear()
        self._queue.close()
        if was_connected:
            self._events.emit_connection(ConnectionEvent(connected=False))
        self._events.clear()

        try:
            await self._transport.disconnect()
        except Exception as exc:
            self._log.warning("connection.dispose.disconnect_failed", extra={"error": str(exc)})

        if pending:
            await asyncio.wait(pending, timeout=1.0)
        self._log.info("connection.disposed")

    # --- Operations used by the session façade ---

    async def subscribe(self, entry: SubscriptionEntry) -> None:
        """Issue ``entry`` to the transport if connected; otherwise it waits for replay."""
        self._ensure_active()
        if not self.connected:
            return
        try:
            await self._issue_subscribe(entry)
        except TransportError as exc:
            self._events.emit_error(exc)
            raise

    async def unsubscribe(self, pattern: str) -> None:
        self._ensure_active()
        if not self.connected:
            return
        try:
            await self._issue_unsubscribe(pattern)
        except TransportError as exc:
            self._events.emit_error(exc)
            raise

    async def publish(self, message: QueuedMessage) -> None:
        """Send now when connected with nothing queued ahead, otherwise queue it.

        Raises:
            OfflineQueueFullError: If a bounded queue rejects the message.
        """
        self._ensure_active()
        if self.connected and not self._draining and not len(self._queue):
            try:
                await self._send(message)
            except TransportError as exc:
                self._queue.requeue_front(message)
                self._events.emit_error(exc)
            return

        self._queue.enqueue(message)
        if self.connected:
            await self.flush()

    async def flush(self) -> int:
        """Drain the offline queue to the transport; return how many messages went out."""
        if self._draining or not self.connected:
            return 0
        self._draining = True
        try:
            return await self._queue.drain(self._send)
        except TransportError as exc:
            self._log.warning("connection.drain.stopped", extra={"remaining": len(self._queue)})
            self._events.emit_error(exc)
            return 0
        finally:
            self._draining = False

    # --- Transport callbacks ---

    async def _on_message(self, topic: str, payload: bytes) -> None:
        if self.disposed:
            return
        await self._dispatcher.dispatch(topic, payload)

    def handle_connection_lost(self, lost: ConnectionLost) -> None:
        """React to the transport losing the broker link."""
        if self.connection.state is not ConnectionState.CONNECTED:
            self._log.debug("connection.lost.ignored")
            return

        if lost.intentional:
            self._set_state(ConnectionState.DISCONNECTED)
            self._log.info("connection.closed")
            self._events.emit_connection(ConnectionEvent(connected=False))
            return

        self._log.warning("connection.lost", extra={"error": str(lost.error)})
        if self.connection.config.max_reconnect_attempts == 0:
            self._set_state(ConnectionState.DISCONNECTED)
            self._events.emit_connection(ConnectionEvent(connected=False, error=lost.error))
            self._events.emit_error(ReconnectExhaustedError(0, lost.error))
            return

        self._set_state(ConnectionState.RECONNECTING)
        self._events.emit_connection(ConnectionEvent(connected=False, error=lost.error))
        self._schedule_reconnect()

    # --- Internals ---

    async def _open(self) -> None:
        """One connection attempt, followed by replay and drain on success."""
        config = self.connection.config
        options = self._connect_options()
        self._log.info(
            "connection.connecting",
            extra={"attempt": self.connection.reconnect_attempts},
        )
        try:
            await asyncio.wait_for(self._transport.connect(options), timeout=config.connect_timeout)
        except asyncio.TimeoutError as exc:
            raise ConnectError(
                f"Connection to broker timed out after {config.connect_timeout}s"
            ) from exc
        except ConnectError:
            raise
        except Exception as exc:
            raise ConnectError(f"Connection to broker failed: {exc}") from exc

        await self._on_connected()

    async def _first_attempt(self) -> None:
        """A caller-initiated attempt; on failure it hands over to the retry loop.

        Runs as its own task so that a caller giving up on ``connect()`` does not
        leave the connection stuck in ``connecting``.
        """
        try:
            await self._open()
        except ConnectError as exc:
            self._events.emit_error(exc)
            if self.connection.reconnect_attempts < self.connection.config.max_reconnect_attempts:
                self._set_state(ConnectionState.RECONNECTING)
                self._schedule_reconnect()
            else:
                self._set_state(ConnectionState.DISCONNECTED)
            raise

    def _attempt_done(self, attempt: asyncio.Future[None]) -> None:
        if self._attempt is attempt:
            self._attempt = None
        if not attempt.cancelled():
            # retrieved here so an abandoned attempt does not log "never retrieved"
            attempt.exception()

    async def _on_connected(self) -> None:
        self.connection.reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        self._log.info("connection.connected")

        await self._registry.replay_all(self._issue_subscribe, self._report_replay_failure)
        await self.flush()
        await self._announce(STATUS_ONLINE)

        if self.connected:
            self._events.emit_connection(ConnectionEvent(connected=True))

    async def _reconnect_loop(self) -> None:
        config = self.connection.config
        while True:
            attempt = self.connection.reconnect_attempts + 1
            delay = config.reconnect_delay_for(attempt)
            self._log.info(
                "connection.reconnect.scheduled",
                extra={"attempt": attempt, "max_attempts": config.max_reconnect_attempts, "delay": delay},
            )
            await asyncio.sleep(delay)

            self.connection.reconnect_attempts = attempt
            self._set_state(ConnectionState.CONNECTING)
            current = self._attempt = asyncio.ensure_future(self._open())
            try:
                await current
            except ConnectError as exc:
                self._events.emit_error(exc)
                if attempt >= config.max_reconnect_attempts:
                    self._set_state(ConnectionState.DISCONNECTED)
                    self._log.error("connection.reconnect.exhausted", extra={"attempts": attempt})
                    self._events.emit_error(ReconnectExhaustedError(attempt, exc))
                    return
                self._set_state(ConnectionState.RECONNECTING)
                continue
            finally:
                if self._attempt is current:
                    self._attempt = None
            if self.connection.state is ConnectionState.RECONNECTING:
                # the link dropped again while replaying or draining
                continue
            return

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_loop())

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

    async def _issue_subscribe(self, entry: SubscriptionEntry) -> None:
        try:
            await self._guarded(self._transport.subscribe(entry.pattern, entry.qos))
        except (SessionDisposedError, TransportError):
            raise
        except Exception as exc:
            raise TransportError("subscribe", entry.pattern, str(exc)) from exc
        self._log.info("connection.subscribed", extra={"pattern": entry.pattern, "qos": entry.qos})

    async def _issue_unsubscribe(self, pattern: str) -> None:
        try:
            await self._guarded(self._transport.unsubscribe(pattern))
        except (SessionDisposedError, TransportError):
            raise
        except Exception as exc:
            raise TransportError("unsubscribe", pattern, str(exc)) from exc
        self._log.info("connection.unsubscribed", extra={"pattern": pattern})

    def _report_replay_failure(self, entry: SubscriptionEntry, exc: Exception) -> None:
        if isinstance(exc, SessionDisposedError):
            return
        if not isinstance(exc, TransportError):
            wrapped = TransportError("subscribe", entry.pattern, str(exc))
            wrapped.__cause__ = exc
            exc = wrapped
        self._events.emit_error(exc)

    async def _send(self, message: QueuedMessage) -> None:
        try:
            await self._guarded(
                self._transport.publish(message.topic, message.payload, message.qos, message.retained)
            )
        except (SessionDisposedError, TransportError):
            raise
        except Exception as exc:
            raise TransportError("publish", message.topic, str(exc)) from exc

    async def _announce(self, status: bytes) -> None:
        topic = self.connection.config.resolved_status_topic()
        if topic is None or not self.connected:
            return
        try:
            await self._send(QueuedMessage(topic=topic, payload=status, qos=1, retained=True))
        except TransportError as exc:
            self._events.emit_error(exc)

    async def _guarded(self, awaitable: Awaitable[T]) -> T:
        """Await a transport call; disposal turns its cancellation into ``SessionDisposedError``."""
        task = asyncio.ensure_future(awaitable)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        try:
            return await task
        except asyncio.CancelledError:
            if self.disposed:
                raise SessionDisposedError("Session disposed before the transport acknowledged") from None
            raise

    async def _await_attempt(self, attempt: asyncio.Future[None]) -> None:
        try:
            await asyncio.shield(attempt)
        except asyncio.CancelledError:
            if self.disposed:
                raise SessionDisposedError("Session disposed while connecting") from None
            raise

    def _connect_options(self) -> ConnectOptions:
        config = self.connection.config
        username, password = self.connection.credentials
        status_topic = config.resolved_status_topic()
        will = WillMessage(topic=status_topic, payload=STATUS_OFFLINE) if status_topic else None
        return ConnectOptions(
            client_id=config.client_id,
            username=username,
            password=password,
            keepalive=config.keepalive,
            clean_session=config.clean_session,
            will=will,
        )

    def _ensure_active(self) -> None:
        if self.disposed:
            raise SessionDisposedError("Session has been disposed")

    def _set_state(self, state: ConnectionState) -> None:
        previous = self.connection.state
        if previous is state:
            return
        self.connection.state = state
        self._log.debug("connection.state", extra={"from": previous.value, "to": state.value})


__all__ = ["ConnectionState", "Connection", "ConnectionManager", "STATUS_ONLINE", "STATUS_OFFLINE"]
