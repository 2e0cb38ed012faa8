"""Domain types for the alert delivery subsystem."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import IntEnum, StrEnum
from typing import Any

from pydantic import BaseModel, Field

from src.core.types import ChannelKind


class Severity(IntEnum):
    """Alert severity: ordered so comparisons work naturally."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    CRITICAL = 3


class GuardDecision(StrEnum):
    """Outcome of the dedup and cooldown guards."""

    ALLOW = "allow"
    ALREADY_ALERTED = "already_alerted"
    COOLDOWN = "cooldown"


class AlertMessage(BaseModel):
    """Channel-agnostic alert ready for delivery."""

    severity: Severity
    title: str
    body: str = ""
    fields: dict[str, str] = Field(default_factory=dict)
    footer: str = ""
    source_event_type: str = ""
    timestamp: float = Field(default_factory=time.time)
    raw: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryTarget:
    """One address on one channel."""

    channel: ChannelKind
    address: str

    @property
    def label(self) -> str:
        return f"{self.channel.value}:{self.address}"
