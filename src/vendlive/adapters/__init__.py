"""Adapter implementations bridging the transport port to infrastructure."""

from .mqtt_asyncio import AsyncioMQTTTransport

__all__ = ["AsyncioMQTTTransport"]
