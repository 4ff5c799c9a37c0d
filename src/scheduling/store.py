"""Persistence port for the scheduling engine.

SchedulingStore is the only way the engine reads or writes schedules,
availability, exceptions and appointments. One store instance is bound to
one database transaction; a store factory is an async context manager that
commits on clean exit and rolls back on any exception (including task
cancellation), so a booking is either fully visible or not at all.
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager
from datetime import date
from typing import Protocol

from sqlalchemy import and_, or_, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.engine import async_session_factory
from src.models.appointment import Appointment
from src.models.availability import AvailabilityWindow, ScheduleException
from src.models.enums import ACTIVE_APPOINTMENT_STATUSES
from src.models.schedule import Provider, Schedule, Service
from src.schemas.scheduling import AppointmentFilters
from src.scheduling.errors import SlotConflictError

logger = logging.getLogger(__name__)

_ACTIVE_VALUES = [status.value for status in ACTIVE_APPOINTMENT_STATUSES]

# Name of the exclusion constraint created by the initial migration
OVERLAP_CONSTRAINT = "ex_appointments_no_overlap"


class SchedulingStore(Protocol):
    """Transaction-scoped data access used by the resolver and booking service."""

    async def get_schedule(self, schedule_id: uuid.UUID) -> Schedule | None: ...

    async def get_provider(self, provider_id: uuid.UUID) -> Provider | None: ...

    async def get_service(self, service_id: uuid.UUID) -> Service | None: ...

    async def list_windows(self, provider_id: uuid.UUID) -> list[AvailabilityWindow]: ...

    async def list_exceptions(
        self, schedule_id: uuid.UUID, provider_id: uuid.UUID, start: date, end: date
    ) -> list[ScheduleException]: ...

    async def list_active_appointments(
        self, provider_id: uuid.UUID, start: date, end: date
    ) -> list[Appointment]: ...

    async def lock_provider_day(self, provider_id: uuid.UUID, day: date) -> None: ...

    async def get_appointment(self, appointment_id: uuid.UUID, for_update: bool = False) -> Appointment | None: ...

    async def add_appointment(self, appointment: Appointment) -> Appointment: ...

    async def list_appointments(self, filters: AppointmentFilters) -> list[Appointment]: ...

    async def add_window(self, window: AvailabilityWindow) -> AvailabilityWindow: ...

    async def get_window(self, window_id: uuid.UUID) -> AvailabilityWindow | None: ...

    async def delete_window(self, window: AvailabilityWindow) -> None: ...

    async def add_exception(self, exception: ScheduleException) -> ScheduleException: ...

    async def get_exception(self, exception_id: uuid.UUID) -> ScheduleException | None: ...

    async def list_schedule_exceptions(self, schedule_id: uuid.UUID) -> list[ScheduleException]: ...

    async def delete_exception(self, exception: ScheduleException) -> None: ...


StoreFactory = Callable[[], AbstractAsyncContextManager[SchedulingStore]]


class SqlSchedulingStore:
    """SchedulingStore backed by an AsyncSession on PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_schedule(self, schedule_id: uuid.UUID) -> Schedule | None:
        return await self._session.get(Schedule, schedule_id)

    async def get_provider(self, provider_id: uuid.UUID) -> Provider | None:
        return await self._session.get(Provider, provider_id)

    async def get_service(self, service_id: uuid.UUID) -> Service | None:
        return await self._session.get(Service, service_id)

    async def list_windows(self, provider_id: uuid.UUID) -> list[AvailabilityWindow]:
        result = await self._session.execute(
            select(AvailabilityWindow)
            .where(AvailabilityWindow.provider_id == provider_id)
            .order_by(AvailabilityWindow.day_of_week, AvailabilityWindow.start_time)
        )
        return list(result.scalars().all())

    async def list_exceptions(
        self, schedule_id: uuid.UUID, provider_id: uuid.UUID, start: date, end: date
    ) -> list[ScheduleException]:
        """Schedule-wide and provider exceptions that may fall in the range.

        Recurring exceptions are returned regardless of their stored year;
        the resolver matches them by month/day.
        """
        result = await self._session.execute(
            select(ScheduleException)
            .where(
                ScheduleException.schedule_id == schedule_id,
                or_(
                    ScheduleException.provider_id.is_(None),
                    ScheduleException.provider_id == provider_id,
                ),
                or_(
                    ScheduleException.recurring.is_(True),
                    and_(ScheduleException.date >= start, ScheduleException.date <= end),
                ),
            )
            .order_by(ScheduleException.date)
        )
        return list(result.scalars().all())

    async def list_active_appointments(
        self, provider_id: uuid.UUID, start: date, end: date
    ) -> list[Appointment]:
        result = await self._session.execute(
            select(Appointment)
            .where(
                Appointment.provider_id == provider_id,
                Appointment.date >= start,
                Appointment.date <= end,
                Appointment.status.in_(_ACTIVE_VALUES),
            )
            .order_by(Appointment.date, Appointment.start_time)
        )
        return list(result.scalars().all())

    async def lock_provider_day(self, provider_id: uuid.UUID, day: date) -> None:
        """Transaction-scoped advisory lock serializing bookings across processes."""
        await self._session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"booking:{provider_id}:{day.isoformat()}"},
        )

    async def get_appointment(self, appointment_id: uuid.UUID, for_update: bool = False) -> Appointment | None:
        stmt = select(Appointment).where(Appointment.id == appointment_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_appointment(self, appointment: Appointment) -> Appointment:
        """Insert and flush; an overlap caught by the database is a SlotConflict."""
        self._session.add(appointment)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            if OVERLAP_CONSTRAINT in str(exc.orig):
                logger.warning(
                    "Overlap constraint rejected appointment provider=%s date=%s %s",
                    appointment.provider_id,
                    appointment.date,
                    appointment.start_time,
                )
                raise SlotConflictError(
                    SlotConflictError.ALREADY_BOOKED,
                    "This time has just been booked by someone else; please pick another time",
                ) from exc
            raise
        return appointment

    async def list_appointments(self, filters: AppointmentFilters) -> list[Appointment]:
        stmt = select(Appointment)
        if filters.schedule_id is not None:
            stmt = stmt.where(Appointment.schedule_id == filters.schedule_id)
        if filters.provider_id is not None:
            stmt = stmt.where(Appointment.provider_id == filters.provider_id)
        if filters.service_id is not None:
            stmt = stmt.where(Appointment.service_id == filters.service_id)
        if filters.customer_id is not None:
            stmt = stmt.where(Appointment.customer_id == filters.customer_id)
        if filters.statuses:
            stmt = stmt.where(Appointment.status.in_([s.value for s in filters.statuses]))
        if filters.start_date is not None:
            stmt = stmt.where(Appointment.date >= filters.start_date)
        if filters.end_date is not None:
            stmt = stmt.where(Appointment.date <= filters.end_date)
        result = await self._session.execute(
            stmt.order_by(Appointment.date, Appointment.start_time).limit(filters.limit)
        )
        return list(result.scalars().all())

    async def add_window(self, window: AvailabilityWindow) -> AvailabilityWindow:
        self._session.add(window)
        await self._session.flush()
        return window

    async def get_window(self, window_id: uuid.UUID) -> AvailabilityWindow | None:
        return await self._session.get(AvailabilityWindow, window_id)

    async def delete_window(self, window: AvailabilityWindow) -> None:
        await self._session.delete(window)
        await self._session.flush()

    async def add_exception(self, exception: ScheduleException) -> ScheduleException:
        self._session.add(exception)
        await self._session.flush()
        return exception

    async def get_exception(self, exception_id: uuid.UUID) -> ScheduleException | None:
        return await self._session.get(ScheduleException, exception_id)

    async def list_schedule_exceptions(self, schedule_id: uuid.UUID) -> list[ScheduleException]:
        result = await self._session.execute(
            select(ScheduleException)
            .where(ScheduleException.schedule_id == schedule_id)
            .order_by(ScheduleException.date, ScheduleException.start_time)
        )
        return list(result.scalars().all())

    async def delete_exception(self, exception: ScheduleException) -> None:
        await self._session.delete(exception)
        await self._session.flush()


@contextlib.asynccontextmanager
async def sql_store_factory() -> AsyncIterator[SqlSchedulingStore]:
    """Open a session and transaction; commit on success, roll back otherwise."""
    async with async_session_factory() as session:
        async with session.begin():
            yield SqlSchedulingStore(session)
