"""Schedule, Provider and Service models: the bookable calendar catalogue."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, TimestampMixin
from src.models.enums import RecordStatus

if TYPE_CHECKING:
    from src.models.availability import AvailabilityWindow


class Schedule(TimestampMixin, Base):
    """A named agenda owned by an organization.

    Never hard-deleted while appointments reference it; set
    ``status = inactive`` instead.
    """

    __tablename__ = "schedules"

    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    color: Mapped[str] = mapped_column(String(7), default="#2563EB", nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False, comment="IANA timezone name")
    status: Mapped[str] = mapped_column(String(20), default=RecordStatus.ACTIVE.value, nullable=False)

    # Relationships
    providers: Mapped[list[Provider]] = relationship("Provider", back_populates="schedule")
    services: Mapped[list[Service]] = relationship("Service", back_populates="schedule")

    @property
    def is_active(self) -> bool:
        return self.status != RecordStatus.INACTIVE.value

    def __repr__(self) -> str:
        return f"<Schedule id={self.id} title={self.title} tz={self.timezone}>"


class Provider(TimestampMixin, Base):
    """A person (linked to a user profile) who can be booked on a Schedule."""

    __tablename__ = "schedule_providers"

    schedule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("schedules.id"), nullable=False, index=True
    )
    profile_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str | None] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(20), default=RecordStatus.ACTIVE.value, nullable=False)

    # Empty list means every service of the schedule is offered
    available_services: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), default=list, nullable=False
    )

    # Relationships
    schedule: Mapped[Schedule] = relationship("Schedule", back_populates="providers")
    windows: Mapped[list[AvailabilityWindow]] = relationship("AvailabilityWindow", back_populates="provider")

    @property
    def is_active(self) -> bool:
        return self.status != RecordStatus.INACTIVE.value

    def offers(self, service_id: uuid.UUID) -> bool:
        """Check whether this provider can be booked for a service."""
        return not self.available_services or service_id in self.available_services

    def __repr__(self) -> str:
        return f"<Provider id={self.id} schedule={self.schedule_id} status={self.status}>"


class Service(TimestampMixin, Base):
    """An appointment type with a fixed duration."""

    __tablename__ = "schedule_services"

    schedule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("schedules.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=RecordStatus.ACTIVE.value, nullable=False)

    # Relationships
    schedule: Mapped[Schedule] = relationship("Schedule", back_populates="services")

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_schedule_services_duration_positive"),
    )

    @property
    def is_active(self) -> bool:
        return self.status != RecordStatus.INACTIVE.value

    def __repr__(self) -> str:
        return f"<Service id={self.id} title={self.title} duration={self.duration_minutes}m>"
