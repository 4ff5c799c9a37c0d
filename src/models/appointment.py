"""Appointment model: a booked interval on a provider's calendar."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time

from sqlalchemy import DDL, Boolean, CheckConstraint, Date, DateTime, ForeignKey, Index, String, Text, Time, event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.enums import ACTIVE_APPOINTMENT_STATUSES, AppointmentStatus


class Appointment(TimestampMixin, Base):
    """A booking of one service with one provider on one date.

    ``end_time`` is frozen at creation from the service duration. Rows are
    never deleted; status only moves through the appointment state machine.
    """

    __tablename__ = "appointments"

    # Foreign keys
    schedule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("schedules.id"), nullable=False, index=True
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("schedule_providers.id"), nullable=False
    )
    service_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("schedule_services.id"), nullable=False
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True, comment="Opaque CRM customer reference"
    )

    # Scheduling (wall-clock in the schedule's timezone)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=AppointmentStatus.SCHEDULED.value, nullable=False
    )
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Links to external collaborators
    has_videoconference: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    chat_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), comment="Existing chat conversation")

    # Notes
    notes: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        Index("ix_appointments_provider_date_status", "provider_id", "date", "status"),
        CheckConstraint("start_time < end_time OR end_time = '00:00'", name="ck_appointments_order"),
    )

    @property
    def holds_capacity(self) -> bool:
        """Non-terminal appointments block their interval."""
        return AppointmentStatus(self.status) in ACTIVE_APPOINTMENT_STATUSES

    def __repr__(self) -> str:
        return f"<Appointment id={self.id} status={self.status} at={self.date} {self.start_time}-{self.end_time}>"

# create_all (development) gets the same overlap guard as the initial migration
event.listen(
    Appointment.__table__,
    "after_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Appointment.__table__,
    "after_create",
    DDL(
        "ALTER TABLE appointments ADD CONSTRAINT ex_appointments_no_overlap "
        "EXCLUDE USING gist (provider_id WITH =, tsrange(date + start_time, "
        "CASE WHEN end_time = '00:00' THEN date + 1 + end_time ELSE date + end_time END) WITH &&) "
        "WHERE (status IN ('scheduled', 'confirmed'))"
    ).execute_if(dialect="postgresql"),
)
