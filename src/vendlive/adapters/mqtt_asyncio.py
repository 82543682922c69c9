from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Optional

import asyncio_mqtt as mqtt

from vendlive.config import BrokerParams
from vendlive.domain.ports import (
    ConnectionLost,
    ConnectionLostCallback,
    ConnectOptions,
    MessageCallback,
)
from vendlive.errors import ConnectError, TransportError

logger = logging.getLogger(__name__)


class AsyncioMQTTTransport:
    """Transport implementation backed by an asyncio-mqtt client.

    A fresh ``mqtt.Client`` is created for every connection attempt. While
    connected, a background task pumps inbound messages into the bound
    ``on_message`` coroutine one at a time. When that stream ends with an
    ``MqttError`` the loss is reported as unsolicited; a clean end of stream
    (broker-side clean disconnect) is reported as intentional. Losses caused by
    our own ``disconnect()`` are not reported at all.
    """

    def __init__(self, broker: BrokerParams, *, tls_context: Optional[ssl.SSLContext] = None) -> None:
        self._broker = broker
        self._tls_context = tls_context
        self._client: Optional[mqtt.Client] = None
        self._pump_task: Optional[asyncio.Task[None]] = None
        self._on_message: Optional[MessageCallback] = None
        self._on_connection_lost: Optional[ConnectionLostCallback] = None
        self._closing = False

    @property
    def client(self) -> Optional[mqtt.Client]:
        """Access underlying asyncio-mqtt client for advanced operations.

        Returns None if not connected.
        """
        return self._client

    def bind(self, on_message: MessageCallback, on_connection_lost: ConnectionLostCallback) -> None:
        self._on_message = on_message
        self._on_connection_lost = on_connection_lost

    def unbind(self) -> None:
        self._on_message = None
        self._on_connection_lost = None

    async def connect(self, options: ConnectOptions) -> None:
        if self._client is not None:
            await self._teardown()

        client = mqtt.Client(
            hostname=self._broker.hostname,
            port=self._broker.port,
            username=options.username,
            password=options.password,
            client_id=options.client_id,
            keepalive=options.keepalive,
            clean_session=options.clean_session,
            transport=self._broker.transport,
            websocket_path=self._broker.websocket_path,
            tls_context=self._resolve_tls_context(),
            will=self._build_will(options),
        )

        try:
            await client.connect()
        except mqtt.MqttError as exc:
            raise ConnectError(f"Broker refused connection: {exc}") from exc

        self._client = client
        self._closing = False
        self._pump_task = asyncio.create_task(self._pump(client))
        logger.info(
            "transport.connected",
            extra={
                "hostname": self._broker.hostname,
                "port": self._broker.port,
                "client_id": options.client_id,
                "transport": self._broker.transport,
            },
        )

    async def subscribe(self, pattern: str, qos: int) -> None:
        client = self._require_client("subscribe", pattern)
        try:
            await client.subscribe(pattern, qos=qos)
        except mqtt.MqttError as exc:
            raise TransportError("subscribe", pattern, str(exc)) from exc

    async def unsubscribe(self, pattern: str) -> None:
        client = self._require_client("unsubscribe", pattern)
        try:
            await client.unsubscribe(pattern)
        except mqtt.MqttError as exc:
            raise TransportError("unsubscribe", pattern, str(exc)) from exc

    async def publish(self, topic: str, payload: bytes, qos: int, retained: bool) -> None:
        client = self._require_client("publish", topic)
        try:
            await client.publish(topic, payload, qos=qos, retain=retained)
        except mqtt.MqttError as exc:
            raise TransportError("publish", topic, str(exc)) from exc

    async def disconnect(self) -> None:
        """Close the broker link on purpose. Safe to call when not connected."""
        self._closing = True
        await self._teardown()

    async def _pump(self, client: mqtt.Client) -> None:
        try:
            async with client.messages() as messages:
                async for message in messages:
                    topic_value = str(message.topic)
                    payload = _payload_bytes(message.payload)
                    if payload is None:
                        logger.warning(
                            "transport.payload.unsupported",
                            extra={"topic": topic_value, "payload_type": type(message.payload).__name__},
                        )
                        continue
                    callback = self._on_message
                    if callback is not None:
                        await callback(topic_value, payload)
        except asyncio.CancelledError:
            logger.debug("transport.pump.cancelled")
            raise
        except mqtt.MqttError as exc:
            self._report_lost(ConnectionLost(intentional=False, error=exc))
            return
        except Exception as exc:
            logger.error("transport.pump.error", extra={"error": str(exc)}, exc_info=True)
            self._report_lost(ConnectionLost(intentional=False, error=exc))
            return

        self._report_lost(ConnectionLost(intentional=True))

    def _report_lost(self, lost: ConnectionLost) -> None:
        if self._closing:
            return
        logger.warning(
            "transport.connection_lost",
            extra={"intentional": lost.intentional, "error": str(lost.error) if lost.error else None},
        )
        callback = self._on_connection_lost
        if callback is not None:
            callback(lost)

    async def _teardown(self) -> None:
        task, self._pump_task = self._pump_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=1.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        client, self._client = self._client, None
        if client is not None:
            try:
                await client.disconnect()
            except mqtt.MqttError as exc:
                logger.debug("transport.disconnect.error", extra={"error": str(exc)})

    def _require_client(self, action: str, topic: str) -> mqtt.Client:
        if self._client is None:
            raise TransportError(action, topic, "not connected to broker")
        return self._client

    def _resolve_tls_context(self) -> Optional[ssl.SSLContext]:
        if not self._broker.tls:
            return None
        if self._tls_context is None:
            self._tls_context = ssl.create_default_context()
        return self._tls_context

    @staticmethod
    def _build_will(options: ConnectOptions) -> Optional[mqtt.Will]:
        if options.will is None:
            return None
        return mqtt.Will(
            topic=options.will.topic,
            payload=options.will.payload,
            qos=options.will.qos,
            retain=options.will.retain,
        )


def _payload_bytes(payload: object) -> Optional[bytes]:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, bytearray):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if payload is None:
        return b""
    return None


__all__ = ["AsyncioMQTTTransport"]
