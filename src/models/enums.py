"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization; columns store the `.value`.
"""

from __future__ import annotations

from enum import Enum


class RecordStatus(str, Enum):
    """Soft-disable flag for schedules, providers and services."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class AppointmentStatus(str, Enum):
    """Appointment lifecycle states."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no_show"


class ProfileRole(str, Enum):
    """Organization role of the profile acting on a request."""

    OWNER = "owner"
    ADMIN = "admin"
    AGENT = "agent"


# Statuses that hold capacity; everything else is terminal.
ACTIVE_APPOINTMENT_STATUSES: frozenset[AppointmentStatus] = frozenset(
    {AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED}
)
