"""AuditLog model: immutable audit trail for every system event.

Every booking and status change emits a SystemEvent which is persisted here.
This table is append-only; no updates or deletes.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class AuditLog(TimestampMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_log"

    # Event classification
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Context (all nullable, not every event relates to an entity or actor)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), index=True, comment="Appointment, window or exception id"
    )
    actor_id: Mapped[str | None] = mapped_column(String(100), comment="Profile ID or 'system'")
    actor_role: Mapped[str | None] = mapped_column(String(50), comment="owner, admin, agent, system")

    # Event data, flexible JSONB payload
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    def __repr__(self) -> str:
        return f"<AuditLog event={self.event_type} entity={self.entity_id}>"
