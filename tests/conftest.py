"""Shared pytest fixtures for vendlive tests."""

import asyncio
from types import SimpleNamespace
from typing import Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from vendlive.config import SessionConfig
from vendlive.domain.ports import ConnectionLost, ConnectOptions
from vendlive.session import Session


class FakeTransport:
    """In-memory Transport that records every call.

    Failure knobs:
        connect_failures: number of upcoming connects that raise
        connect_delay: seconds each connect takes (for timeouts / races)
        publish_failures: number of upcoming publishes that raise
        fail_subscribe: patterns whose subscribe raises
        publish_gate / subscribe_gate: events the call waits on before completing
    """

    def __init__(self) -> None:
        self.on_message = None
        self.on_connection_lost = None
        self.connected = False

        self.connect_options: list[ConnectOptions] = []
        self.subscribed: list[tuple[str, int]] = []
        self.unsubscribed: list[str] = []
        self.published: list[tuple[str, bytes, int, bool]] = []
        self.disconnects = 0

        self.connect_failures = 0
        self.connect_delay = 0.0
        self.publish_failures = 0
        self.fail_subscribe: set[str] = set()
        self.publish_gate: Optional[asyncio.Event] = None
        self.subscribe_gate: Optional[asyncio.Event] = None
        self.waiting = 0

    def bind(self, on_message, on_connection_lost) -> None:
        self.on_message = on_message
        self.on_connection_lost = on_connection_lost

    def unbind(self) -> None:
        self.on_message = None
        self.on_connection_lost = None

    async def connect(self, options: ConnectOptions) -> None:
        self.connect_options.append(options)
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_failures:
            self.connect_failures -= 1
            raise ConnectionRefusedError("broker refused connection")
        self.connected = True

    async def subscribe(self, pattern: str, qos: int) -> None:
        if self.subscribe_gate is not None:
            await self._wait(self.subscribe_gate)
        if pattern in self.fail_subscribe:
            raise RuntimeError("suback refused")
        self.subscribed.append((pattern, qos))

    async def unsubscribe(self, pattern: str) -> None:
        self.unsubscribed.append(pattern)

    async def publish(self, topic: str, payload: bytes, qos: int, retained: bool) -> None:
        if self.publish_gate is not None:
            await self._wait(self.publish_gate)
        if self.publish_failures:
            self.publish_failures -= 1
            raise RuntimeError("publish failed")
        self.published.append((topic, payload, qos, retained))

    async def disconnect(self) -> None:
        self.disconnects += 1
        self.connected = False

    # --- test drivers ---

    async def deliver(self, topic: str, payload: bytes) -> None:
        assert self.on_message is not None, "transport is not bound"
        await self.on_message(topic, payload)

    def drop(self, error: Optional[BaseException] = None, *, intentional: bool = False) -> None:
        self.connected = False
        if error is None and not intentional:
            error = ConnectionResetError("link down")
        if self.on_connection_lost is not None:
            self.on_connection_lost(ConnectionLost(intentional=intentional, error=error))

    @property
    def published_topics(self) -> list[str]:
        return [topic for topic, *_ in self.published]

    async def _wait(self, gate: asyncio.Event) -> None:
        self.waiting += 1
        try:
            await gate.wait()
        finally:
            self.waiting -= 1


class FakeMessageStream:
    """Stand-in for ``asyncio_mqtt.Client.messages()``: push messages or failures."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, topic: str, payload) -> None:
        self._queue.put_nowait(SimpleNamespace(topic=topic, payload=payload))

    def fail(self, exc: BaseException) -> None:
        self._queue.put_nowait(exc)

    def close(self) -> None:
        self._queue.put_nowait(None)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def session_config() -> SessionConfig:
    """Fast, deterministic settings: immediate retries, three attempts."""
    return SessionConfig(
        broker_url="mqtt://localhost:1883",
        client_id="test-client",
        connect_timeout=1.0,
        reconnect_delay=0.0,
        max_reconnect_attempts=3,
        handler_timeout=1.0,
    )


@pytest_asyncio.fixture
async def make_session(fake_transport):
    """Factory building sessions over the fake transport; disposes them afterwards."""
    created: list[Session] = []

    def factory(config: SessionConfig, transport=None) -> Session:
        session = Session(config, transport=transport or fake_transport)
        created.append(session)
        return session

    yield factory

    for session in created:
        await session.dispose()


@pytest.fixture
def session(make_session, session_config) -> Session:
    return make_session(session_config)


@pytest.fixture
def eventually() -> Callable:
    """Poll ``predicate`` on the running loop until it holds or ``timeout`` expires."""

    async def wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.001)

    return wait


@pytest.fixture
def recorder():
    """Collect connection events and errors from a session."""

    def attach(session: Session) -> SimpleNamespace:
        record = SimpleNamespace(connections=[], errors=[])
        session.on_connection(record.connections.append)
        session.on_error(record.errors.append)
        return record

    return attach


@pytest.fixture
def mock_mqtt_client():
    """Mock asyncio_mqtt.Client for unit testing.

    Returns a MagicMock configured with async methods for MQTT operations and a
    ``FakeMessageStream`` behind ``messages()``.

    Example:
        async def test_publish(mock_mqtt_client):
            with patch("vendlive.adapters.mqtt_asyncio.mqtt.Client", return_value=mock_mqtt_client):
                await transport.connect(options)
            mock_mqtt_client.connect.assert_awaited_once()
    """
    client = MagicMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.subscribe = AsyncMock()
    client.unsubscribe = AsyncMock()
    client.publish = AsyncMock()
    client.stream = FakeMessageStream()
    client.messages = MagicMock(return_value=client.stream)
    return client


@pytest.fixture(autouse=True)
def reset_env(monkeypatch):
    """Reset environment variables before each test.

    Tests can override specific env vars using monkeypatch.setenv().
    """
    mqtt_env_vars = [
        "MQTT_URL",
        "MQTT_CLIENT_ID",
        "MQTT_USERNAME",
        "MQTT_PASSWORD",
        "MQTT_KEEPALIVE",
        "MQTT_CONNECT_TIMEOUT",
        "MQTT_CLEAN_SESSION",
        "MQTT_RECONNECT_DELAY",
        "MQTT_RECONNECT_BACKOFF",
        "MQTT_RECONNECT_MAX_DELAY",
        "MQTT_MAX_RECONNECT_ATTEMPTS",
        "MQTT_OFFLINE_QUEUE_MAXSIZE",
        "MQTT_OFFLINE_QUEUE_OVERFLOW",
        "MQTT_HANDLER_TIMEOUT",
        "MQTT_STATUS_TOPIC",
        "LOG_LEVEL",
    ]
    for var in mqtt_env_vars:
        monkeypatch.delenv(var, raising=False)


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as unit test (no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "contract: mark test as contract test (validates MQTT message schemas)"
    )
