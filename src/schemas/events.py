"""SystemEvent schema: the event type that flows out of the scheduling engine.

Booking and status-change events are emitted after commit. Subscribers
(AuditLogger, external notifiers such as a chat or reminder bridge) consume
them asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Appointments
    APPOINTMENT_CREATED = "appointment.created"
    APPOINTMENT_STATUS_CHANGED = "appointment.status_changed"
    BOOKING_CONFLICT = "appointment.booking_conflict"

    # Availability configuration
    AVAILABILITY_WINDOW_ADDED = "availability.window_added"
    AVAILABILITY_WINDOW_REMOVED = "availability.window_removed"
    AVAILABILITY_EXCEPTION_ADDED = "availability.exception_added"
    AVAILABILITY_EXCEPTION_REMOVED = "availability.exception_removed"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"


class SystemEvent(BaseModel):
    """Core event emitted by the engine.

    Immutable once created. Consumed by:
    - AuditLogger → writes to audit_log table
    - external notifiers → message the customer, link the chat
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional, not every event has an organization or entity)
    organization_id: uuid.UUID | None = None
    entity_id: uuid.UUID | None = None
    actor_id: str | None = None
    actor_role: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
