"""Webhook event models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


ACK_BODY = {"message": "Webhook received, processing started"}
SUCCESS_BODY = {"message": "Successfully processed GitHub event"}
IGNORED_BODY = {"message": "Event ignored"}
ERROR_MESSAGE = "Error processing webhook"


@dataclass
class InboundEvent:
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    delivery_id: str = ""


class Outcome(str, Enum):
    IGNORED = "ignored"
    DELIVERED = "delivered"
    SUMMARIZED = "summarized"
    FAILED = "failed"


@dataclass
class TaskResult:
    """What happened to one event after it was handed to the pipeline."""

    event_type: str
    delivery_id: str
    outcome: Outcome
    summary: str = ""
    error: str | None = None
