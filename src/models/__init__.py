"""SQLAlchemy ORM models for the scheduling engine.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from src.models.appointment import Appointment
from src.models.audit import AuditLog
from src.models.availability import AvailabilityWindow, ScheduleException
from src.models.base import Base
from src.models.enums import (
    ACTIVE_APPOINTMENT_STATUSES,
    AppointmentStatus,
    ProfileRole,
    RecordStatus,
)
from src.models.schedule import Provider, Schedule, Service

__all__ = [
    # Base
    "Base",
    # Models
    "Schedule",
    "Provider",
    "Service",
    "AvailabilityWindow",
    "ScheduleException",
    "Appointment",
    "AuditLog",
    # Enums
    "AppointmentStatus",
    "RecordStatus",
    "ProfileRole",
    "ACTIVE_APPOINTMENT_STATUSES",
]
