"""Pydantic schemas for the scheduling engine's inputs and outputs.

Pure data classes with no business logic. Used as resolver results and as the
request/response bodies of the HTTP surface.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.enums import AppointmentStatus


class SlotStart(BaseModel):
    """One bookable start for a provider/service pair."""

    model_config = ConfigDict(frozen=True)

    date: date
    start_time: time
    end_time: time
    starts_at: datetime  # aware, in the schedule's timezone
    provider_id: uuid.UUID
    service_id: uuid.UUID


class AppointmentCreate(BaseModel):
    """Body of POST /appointments."""

    provider_id: uuid.UUID
    service_id: uuid.UUID
    customer_id: uuid.UUID
    date: date
    start_time: time
    notes: str | None = Field(default=None, max_length=4000)
    chat_id: uuid.UUID | None = None
    has_videoconference: bool = False

    @field_validator("start_time")
    @classmethod
    def whole_local_minute(cls, v: time) -> time:
        if v.tzinfo is not None:
            raise ValueError("start_time must be local wall-clock time without an offset")
        if v.second or v.microsecond:
            raise ValueError("start_time must be on a whole minute")
        return v


class StatusUpdate(BaseModel):
    """Body of PATCH /appointments/{id}/status."""

    to_status: AppointmentStatus


class AppointmentOut(BaseModel):
    """Appointment as returned to callers."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    schedule_id: uuid.UUID
    provider_id: uuid.UUID
    service_id: uuid.UUID
    customer_id: uuid.UUID
    date: date
    start_time: time
    end_time: time
    status: AppointmentStatus
    has_videoconference: bool = False
    chat_id: uuid.UUID | None = None
    notes: str | None = None
    status_changed_at: datetime | None = None


class AppointmentFilters(BaseModel):
    """Calendar listing filters; every field is optional."""

    schedule_id: uuid.UUID | None = None
    provider_id: uuid.UUID | None = None
    service_id: uuid.UUID | None = None
    customer_id: uuid.UUID | None = None
    statuses: list[AppointmentStatus] = Field(
        default_factory=lambda: [AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED]
    )
    start_date: date | None = None
    end_date: date | None = None
    limit: int = Field(default=200, ge=1, le=1000)


class AvailabilityWindowCreate(BaseModel):
    """Body of POST /providers/{id}/availability."""

    day_of_week: int = Field(description="0 = Sunday … 6 = Saturday")
    start_time: time
    end_time: time


class AvailabilityWindowOut(AvailabilityWindowCreate):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    provider_id: uuid.UUID


class ExceptionCreate(BaseModel):
    """Body of POST /schedules/{id}/exceptions."""

    title: str = Field(min_length=1, max_length=200)
    date: date
    provider_id: uuid.UUID | None = None
    start_time: time | None = None
    end_time: time | None = None
    recurring: bool = False

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        return v.strip()


class ExceptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    schedule_id: uuid.UUID
    provider_id: uuid.UUID | None = None
    title: str
    date: date
    all_day: bool
    start_time: time | None = None
    end_time: time | None = None
    recurring: bool


class ErrorResponse(BaseModel):
    """Uniform error body; ``error`` is the ErrorKind value."""

    error: str
    message: str
    details: dict = Field(default_factory=dict)
