"""Resilient publish/subscribe session for vending-fleet live updates."""

from .config import BrokerParams, SessionConfig, parse_broker_url
from .domain.ports import ConnectionLost, ConnectOptions, Transport, WillMessage
from .domain.topics import topic_matches, validate_pattern, validate_topic
from .errors import (
    ConnectError,
    HandlerError,
    InvalidPatternError,
    InvalidTopicError,
    OfflineQueueFullError,
    ReconnectExhaustedError,
    SessionDisposedError,
    SessionError,
    TransportError,
)
from .runtime.connection import ConnectionState
from .runtime.events import ConnectionEvent
from .runtime.offline_queue import OverflowPolicy
from .session import Session

__version__ = "0.1.0"

__all__ = [
    "Session",
    "SessionConfig",
    "BrokerParams",
    "parse_broker_url",
    "ConnectionState",
    "ConnectionEvent",
    "OverflowPolicy",
    "Transport",
    "ConnectOptions",
    "ConnectionLost",
    "WillMessage",
    "topic_matches",
    "validate_pattern",
    "validate_topic",
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
