"""Scheduling HTTP API: FastAPI router over the booking service.

All routes require HTTP Basic Auth plus the gateway identity headers
(see src.api.auth). Engine errors are converted to
``{"error", "message", "details"}`` bodies by scheduling_error_handler.
"""
# ruff: noqa: B008

from __future__ import annotations

import logging
import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse

from src.api.auth import RequestContext, get_request_context, require_manager
from src.config import settings
from src.models.enums import AppointmentStatus
from src.schemas.scheduling import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentOut,
    AvailabilityWindowCreate,
    AvailabilityWindowOut,
    ErrorResponse,
    ExceptionCreate,
    ExceptionOut,
    SlotStart,
    StatusUpdate,
)
from src.scheduling.errors import ErrorKind, SchedulingError
from src.scheduling.service import BookingService, booking_service
from src.security.rate_limiter import booking_key, rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["scheduling"])

ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.INVALID_WINDOW: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.RANGE_TOO_LARGE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.SLOT_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
}


async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Render a SchedulingError with its kind's status code."""
    body = ErrorResponse(error=exc.kind.value, message=exc.message, details=exc.details)
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST),
        content=body.model_dump(mode="json"),
    )


def get_booking_service() -> BookingService:
    return booking_service


# ── Availability ─────────────────────────────────────────────────────


@router.get("/schedules/{schedule_id}/availability", response_model=list[SlotStart])
async def get_availability(
    schedule_id: uuid.UUID,
    provider_id: uuid.UUID,
    service_id: uuid.UUID,
    start: date = Query(alias="from"),
    end: date = Query(alias="to"),
    ctx: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
) -> list[SlotStart]:
    """Open slot starts between ``from`` and ``to`` (inclusive)."""
    return await service.list_availability(
        provider_id,
        service_id,
        start,
        end,
        schedule_id=schedule_id,
        organization_id=ctx.organization_id,
    )


# ── Appointments ─────────────────────────────────────────────────────


@router.post("/appointments", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    body: AppointmentCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
) -> AppointmentOut:
    allowed, retry_after = await rate_limiter.check(
        booking_key(ctx.organization_id, ctx.profile_id),
        limit=settings.scheduling.booking_rate_limit,
        window=settings.scheduling.booking_rate_window,
    )
    if not allowed:
        logger.warning("Booking rate limit hit: profile=%s org=%s", ctx.profile_id, ctx.organization_id)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many booking requests",
            headers={"Retry-After": str(retry_after)},
        )

    appointment = await service.create_appointment(
        provider_id=body.provider_id,
        service_id=body.service_id,
        customer_id=body.customer_id,
        day=body.date,
        start_time=body.start_time,
        notes=body.notes,
        chat_id=body.chat_id,
        has_videoconference=body.has_videoconference,
        organization_id=ctx.organization_id,
        actor_id=ctx.profile_id,
        actor_role=ctx.role.value,
    )
    return AppointmentOut.model_validate(appointment)


@router.get("/appointments", response_model=list[AppointmentOut])
async def list_appointments(
    schedule_id: uuid.UUID,
    provider_id: uuid.UUID | None = None,
    service_id: uuid.UUID | None = None,
    customer_id: uuid.UUID | None = None,
    statuses: list[AppointmentStatus] | None = Query(default=None, alias="status"),
    start_date: date | None = Query(default=None, alias="from"),
    end_date: date | None = Query(default=None, alias="to"),
    limit: int = Query(default=200, ge=1, le=1000),
    ctx: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
) -> list[AppointmentOut]:
    """Calendar listing; defaults to scheduled and confirmed appointments."""
    filters = AppointmentFilters(
        provider_id=provider_id,
        service_id=service_id,
        customer_id=customer_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    if statuses:
        filters.statuses = statuses
    appointments = await service.list_appointments(schedule_id, filters, organization_id=ctx.organization_id)
    return [AppointmentOut.model_validate(a) for a in appointments]


@router.get("/appointments/{appointment_id}", response_model=AppointmentOut)
async def get_appointment(
    appointment_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
) -> AppointmentOut:
    appointment = await service.get_appointment(appointment_id, organization_id=ctx.organization_id)
    return AppointmentOut.model_validate(appointment)


@router.patch("/appointments/{appointment_id}/status", response_model=AppointmentOut)
async def update_appointment_status(
    appointment_id: uuid.UUID,
    body: StatusUpdate,
    ctx: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
) -> AppointmentOut:
    appointment = await service.transition(
        appointment_id,
        body.to_status,
        organization_id=ctx.organization_id,
        actor_id=ctx.profile_id,
        actor_role=ctx.role.value,
    )
    return AppointmentOut.model_validate(appointment)


# ── Availability configuration (owner/admin) ─────────────────────────


@router.post(
    "/providers/{provider_id}/availability",
    response_model=AvailabilityWindowOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_availability_window(
    provider_id: uuid.UUID,
    body: AvailabilityWindowCreate,
    ctx: RequestContext = Depends(require_manager),
    service: BookingService = Depends(get_booking_service),
) -> AvailabilityWindowOut:
    window = await service.add_availability_window(
        provider_id,
        body.day_of_week,
        body.start_time,
        body.end_time,
        organization_id=ctx.organization_id,
        actor_id=ctx.profile_id,
        actor_role=ctx.role.value,
    )
    return AvailabilityWindowOut.model_validate(window)


@router.post(
    "/schedules/{schedule_id}/exceptions",
    response_model=ExceptionOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_exception(
    schedule_id: uuid.UUID,
    body: ExceptionCreate,
    ctx: RequestContext = Depends(require_manager),
    service: BookingService = Depends(get_booking_service),
) -> ExceptionOut:
    exception = await service.add_exception(
        schedule_id,
        body.date,
        body.title,
        provider_id=body.provider_id,
        start_time=body.start_time,
        end_time=body.end_time,
        recurring=body.recurring,
        organization_id=ctx.organization_id,
        actor_id=ctx.profile_id,
        actor_role=ctx.role.value,
    )
    return ExceptionOut.model_validate(exception)


@router.get("/providers/{provider_id}/availability", response_model=list[AvailabilityWindowOut])
async def list_availability_windows(
    provider_id: uuid.UUID,
    ctx: RequestContext = Depends(require_manager),
    service: BookingService = Depends(get_booking_service),
) -> list[AvailabilityWindowOut]:
    windows = await service.list_availability_windows(provider_id, organization_id=ctx.organization_id)
    return [AvailabilityWindowOut.model_validate(w) for w in windows]


@router.delete("/providers/{provider_id}/availability/{window_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_availability_window(
    provider_id: uuid.UUID,
    window_id: uuid.UUID,
    ctx: RequestContext = Depends(require_manager),
    service: BookingService = Depends(get_booking_service),
) -> Response:
    await service.remove_availability_window(
        window_id,
        provider_id=provider_id,
        organization_id=ctx.organization_id,
        actor_id=ctx.profile_id,
        actor_role=ctx.role.value,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/schedules/{schedule_id}/exceptions", response_model=list[ExceptionOut])
async def list_exceptions(
    schedule_id: uuid.UUID,
    ctx: RequestContext = Depends(require_manager),
    service: BookingService = Depends(get_booking_service),
) -> list[ExceptionOut]:
    exceptions = await service.list_exceptions(schedule_id, organization_id=ctx.organization_id)
    return [ExceptionOut.model_validate(e) for e in exceptions]


@router.delete("/schedules/{schedule_id}/exceptions/{exception_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_exception(
    schedule_id: uuid.UUID,
    exception_id: uuid.UUID,
    ctx: RequestContext = Depends(require_manager),
    service: BookingService = Depends(get_booking_service),
) -> Response:
    await service.remove_exception(
        exception_id,
        schedule_id=schedule_id,
        organization_id=ctx.organization_id,
        actor_id=ctx.profile_id,
        actor_role=ctx.role.value,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
