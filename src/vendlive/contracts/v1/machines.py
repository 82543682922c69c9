"""
Machine MQTT Contracts - topics and message models for fleet live updates.

Machines publish under ``machines/{machine_id}/...``; fleet-wide alerts go to
``alerts/{severity}``. Dashboards subscribe with the wildcard patterns below.

All contracts use Pydantic v2 with strict validation (extra="forbid").
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Union

from pydantic import BaseModel, Field

from vendlive.domain.topics import MULTI_LEVEL, SEPARATOR, SINGLE_LEVEL
from vendlive.errors import InvalidTopicError

# ==============================================================================
# TOPICS (templates and subscription patterns)
# ==============================================================================

TOPIC_MACHINE_STATUS = "machines/{machine_id}/status"  # retained machine state
TOPIC_MACHINE_ALARMS = "machines/{machine_id}/alarms"
TOPIC_MACHINE_MAINTENANCE = "machines/{machine_id}/maintenance/{event}"
TOPIC_MACHINE_PODS = "machines/{machine_id}/pods/{pod}"
TOPIC_MACHINE_PAYMENT = "machines/{machine_id}/payment/{event}"
TOPIC_ALERT = "alerts/{severity}"

PATTERN_ALL_STATUS = "machines/+/status"
PATTERN_ALL_ALARMS = "machines/+/alarms"
PATTERN_ALL_MAINTENANCE = "machines/+/maintenance/#"
PATTERN_ALL_PODS = "machines/+/pods/#"
PATTERN_ALL_PAYMENTS = "machines/+/payment/#"
PATTERN_ALL_ALERTS = "alerts/#"

# ==============================================================================
# ENUMS (shared vocabularies)
# ==============================================================================


class MachineState(str, Enum):
    OPERATIONAL = "operational"
    MAINTENANCE = "maintenance"
    OUT_OF_ORDER = "out_of_order"


class MaintenanceKind(str, Enum):
    REQUEST = "request"
    INTERVENTION = "intervention"
    COMPLETED = "completed"


class PaymentKind(str, Enum):
    COIN_ACCEPTED = "coin-accepted"
    TRANSACTION_STATUS = "transaction-status"
    CHANGE_RETURNED = "change-returned"


# ==============================================================================
# MESSAGES
# ==============================================================================


class MachineStatus(BaseModel):
    """Periodic machine snapshot (cash box and pod levels)."""

    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    machine_id: str = Field(min_length=1)
    state: MachineState = MachineState.OPERATIONAL
    online: bool = True
    credit: float = Field(default=0.0, ge=0.0)
    cash_level: float = Field(default=0.0, ge=0.0)
    cash_capacity: float | None = Field(default=None, gt=0.0)
    pods: dict[str, int] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)

    model_config = {"extra": "forbid"}

    @property
    def cash_fill_ratio(self) -> float | None:
        if not self.cash_capacity:
            return None
        return self.cash_level / self.cash_capacity


class MachineAlarm(BaseModel):
    """Machine fault or threshold alarm. Severity 1 (info) to 3 (critical)."""

    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    machine_id: str = Field(min_length=1)
    code: str = Field(min_length=1)
    severity: int = Field(default=1, ge=1, le=3)
    message: str | None = None
    timestamp: float = Field(default_factory=time.time)

    model_config = {"extra": "forbid"}


class MaintenanceEvent(BaseModel):
    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    machine_id: str = Field(min_length=1)
    kind: MaintenanceKind
    technician_id: int | None = None
    notes: str | None = None
    timestamp: float = Field(default_factory=time.time)

    model_config = {"extra": "forbid"}


class PaymentEvent(BaseModel):
    """Cash-box activity: accepted coins, transaction outcome, returned change."""

    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    machine_id: str = Field(min_length=1)
    kind: PaymentKind
    amount: float = Field(ge=0.0)
    transaction_id: int | None = None
    beverage_id: int | None = None
    success: bool | None = None
    timestamp: float = Field(default_factory=time.time)

    model_config = {"extra": "forbid"}


# ==============================================================================
# TOPIC BUILDERS
# ==============================================================================


def _segment(value: Union[str, int, Enum]) -> str:
    text = value.value if isinstance(value, Enum) else str(value)
    if not text or SEPARATOR in text or SINGLE_LEVEL in text or MULTI_LEVEL in text or "\x00" in text:
        raise InvalidTopicError(text, "topic segment must be non-empty and free of '/', '+', '#'")
    return text


def machine_status_topic(machine_id: Union[str, int]) -> str:
    return TOPIC_MACHINE_STATUS.format(machine_id=_segment(machine_id))


def machine_alarms_topic(machine_id: Union[str, int]) -> str:
    return TOPIC_MACHINE_ALARMS.format(machine_id=_segment(machine_id))


def maintenance_topic(machine_id: Union[str, int], event: Union[str, MaintenanceKind]) -> str:
    return TOPIC_MACHINE_MAINTENANCE.format(machine_id=_segment(machine_id), event=_segment(event))


def pods_topic(machine_id: Union[str, int], pod: Union[str, int]) -> str:
    return TOPIC_MACHINE_PODS.format(machine_id=_segment(machine_id), pod=_segment(pod))


def payment_topic(machine_id: Union[str, int], event: Union[str, PaymentKind]) -> str:
    return TOPIC_MACHINE_PAYMENT.format(machine_id=_segment(machine_id), event=_segment(event))


def alert_topic(severity: Union[str, int]) -> str:
    return TOPIC_ALERT.format(severity=_segment(severity))


def machine_pattern(machine_id: Union[str, int]) -> str:
    """Pattern covering everything one machine publishes."""
    return f"machines/{_segment(machine_id)}/{MULTI_LEVEL}"


__all__ = [
    "TOPIC_MACHINE_STATUS",
    "TOPIC_MACHINE_ALARMS",
    "TOPIC_MACHINE_MAINTENANCE",
    "TOPIC_MACHINE_PODS",
    "TOPIC_MACHINE_PAYMENT",
    "TOPIC_ALERT",
    "PATTERN_ALL_STATUS",
    "PATTERN_ALL_ALARMS",
    "PATTERN_ALL_MAINTENANCE",
    "PATTERN_ALL_PODS",
    "PATTERN_ALL_PAYMENTS",
    "PATTERN_ALL_ALERTS",
    "MachineState",
    "MaintenanceKind",
    "PaymentKind",
    "MachineStatus",
    "MachineAlarm",
    "MaintenanceEvent",
    "PaymentEvent",
    "machine_status_topic",
    "machine_alarms_topic",
    "maintenance_topic",
    "pods_topic",
    "payment_topic",
    "alert_topic",
    "machine_pattern",
]
