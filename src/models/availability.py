"""Recurring availability windows and date-bound exceptions."""

from __future__ import annotations

import uuid
from datetime import date, time
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, SmallInteger, String, Time
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from src.models.schedule import Provider


class AvailabilityWindow(TimestampMixin, Base):
    """A weekly-repeating open interval for one provider.

    ``day_of_week`` follows the 0 = Sunday … 6 = Saturday convention.
    Overlapping windows on the same day are allowed and merged at read time.
    """

    __tablename__ = "schedule_availability"

    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("schedule_providers.id"), nullable=False, index=True
    )
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    # Relationships
    provider: Mapped[Provider] = relationship("Provider", back_populates="windows")

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_schedule_availability_day"),
        CheckConstraint("start_time < end_time OR end_time = '00:00'", name="ck_schedule_availability_order"),
    )

    def __repr__(self) -> str:
        return f"<AvailabilityWindow provider={self.provider_id} dow={self.day_of_week} {self.start_time}-{self.end_time}>"


class ScheduleException(TimestampMixin, Base):
    """A holiday or blackout that removes capacity from the recurrence.

    ``provider_id`` NULL means the exception covers every provider of the
    schedule. ``recurring`` repeats it every year on the same month/day.
    """

    __tablename__ = "schedule_exceptions"

    schedule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("schedules.id"), nullable=False, index=True
    )
    provider_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("schedule_providers.id"), index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    all_day: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time)
    end_time: Mapped[time | None] = mapped_column(Time)
    recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "all_day OR (start_time IS NOT NULL AND end_time IS NOT NULL"
            " AND (start_time < end_time OR end_time = '00:00'))",
            name="ck_schedule_exceptions_partial_bounds",
        ),
    )

    def applies_on(self, day: date) -> bool:
        """Check whether this exception falls on the given date."""
        if self.recurring:
            return (self.date.month, self.date.day) == (day.month, day.day)
        return self.date == day

    def __repr__(self) -> str:
        scope = self.provider_id or "schedule"
        return f"<ScheduleException {self.title} date={self.date} scope={scope} all_day={self.all_day}>"
