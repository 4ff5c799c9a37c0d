"""Booking service: appointments and the availability configuration behind them.

Orchestrates the availability resolver and the appointment state machine
over a SchedulingStore. Every mutation runs inside one store transaction;
events are emitted only after that transaction has committed.

Booking writes for the same provider and date are serialized twice: by an
in-process FIFO lock and by a transaction-scoped advisory lock in the
database. The requested interval is then re-validated against the current
data, so a slot shown as free a moment ago but taken since fails with
SlotConflictError instead of double-booking.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time, timezone

from src.models.appointment import Appointment
from src.models.availability import AvailabilityWindow, ScheduleException
from src.models.enums import AppointmentStatus
from src.models.schedule import Schedule
from src.schemas.events import EventType, SystemEvent
from src.schemas.scheduling import AppointmentFilters, SlotStart
from src.notifications.events import emit
from src.scheduling import timewindow as tw
from src.scheduling.errors import InvalidWindowError, NotFoundError, SlotConflictError
from src.scheduling.fsm import AppointmentStateMachine
from src.scheduling.locks import KeyedLock
from src.scheduling.resolver import AvailabilityResolver, BookingContext, load_booking_context
from src.scheduling.states import INITIAL_STATUS
from src.scheduling.store import SchedulingStore, StoreFactory, sql_store_factory

logger = logging.getLogger(__name__)

SOURCE = "scheduling.service"


class BookingService:
    """Single writer for appointments, availability windows and exceptions."""

    def __init__(
        self,
        store_factory: StoreFactory = sql_store_factory,
        resolver: AvailabilityResolver | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self._store_factory = store_factory
        self._resolver = resolver or AvailabilityResolver()
        self._locks = locks or KeyedLock()

    # ── Read paths ───────────────────────────────────────────────────

    async def list_availability(
        self,
        provider_id: uuid.UUID,
        service_id: uuid.UUID,
        start: date,
        end: date,
        schedule_id: uuid.UUID | None = None,
        organization_id: uuid.UUID | None = None,
    ) -> list[SlotStart]:
        """Open slot starts between two dates (inclusive). Never locks."""
        async with self._store_factory() as store:
            return await self._resolver.resolve(
                store, provider_id, service_id, start, end, schedule_id, organization_id
            )

    async def get_appointment(
        self,
        appointment_id: uuid.UUID,
        organization_id: uuid.UUID | None = None,
    ) -> Appointment:
        async with self._store_factory() as store:
            appointment = await store.get_appointment(appointment_id)
            if appointment is None:
                raise NotFoundError("Appointment", appointment_id)
            await self._visible_schedule(store, appointment.schedule_id, organization_id, "Appointment", appointment_id)
            return appointment

    async def list_appointments(
        self,
        schedule_id: uuid.UUID,
        filters: AppointmentFilters | None = None,
        organization_id: uuid.UUID | None = None,
    ) -> list[Appointment]:
        """Appointments of one schedule, by date then start time."""
        filters = (filters or AppointmentFilters()).model_copy(update={"schedule_id": schedule_id})
        async with self._store_factory() as store:
            await self._visible_schedule(store, schedule_id, organization_id)
            return await store.list_appointments(filters)

    # ── Booking ──────────────────────────────────────────────────────

    async def create_appointment(
        self,
        provider_id: uuid.UUID,
        service_id: uuid.UUID,
        customer_id: uuid.UUID,
        day: date,
        start_time: time,
        notes: str | None = None,
        chat_id: uuid.UUID | None = None,
        has_videoconference: bool = False,
        organization_id: uuid.UUID | None = None,
        actor_id: str | None = None,
        actor_role: str | None = None,
    ) -> Appointment:
        """Book ``start_time`` on ``day`` with a provider for a service.

        Returns:
            The committed appointment, in status ``scheduled``.

        Raises:
            InvalidWindowError: ``start_time`` is not a whole local minute.
            NotFoundError: Unknown or inactive provider, service or schedule.
            SlotConflictError: The interval is taken or not open for booking.
        """
        tw.validate_wall_clock(start_time, "start_time")

        async with self._locks.hold((provider_id, day)):
            try:
                async with self._store_factory() as store:
                    await store.lock_provider_day(provider_id, day)
                    ctx = await load_booking_context(
                        store, provider_id, service_id, organization_id=organization_id
                    )
                    start = tw.to_minutes(start_time)
                    requested = tw.Interval(start, start + ctx.service.duration_minutes)
                    free, active = await self._resolver.free_intervals(store, ctx, day)
                    self._check_requested(ctx, day, requested, free, active)

                    appointment = Appointment(
                        id=uuid.uuid4(),
                        schedule_id=ctx.schedule.id,
                        provider_id=provider_id,
                        service_id=service_id,
                        customer_id=customer_id,
                        date=day,
                        start_time=tw.to_time(requested.start),
                        end_time=tw.to_time(requested.end),
                        status=INITIAL_STATUS.value,
                        status_changed_at=datetime.now(timezone.utc),
                        has_videoconference=has_videoconference,
                        chat_id=chat_id,
                        notes=notes,
                    )
                    await store.add_appointment(appointment)
            except SlotConflictError as exc:
                logger.warning(
                    "Booking conflict provider=%s date=%s start=%s reason=%s",
                    provider_id,
                    day,
                    start_time,
                    exc.reason,
                )
                await emit(SystemEvent(
                    event_type=EventType.BOOKING_CONFLICT,
                    organization_id=organization_id,
                    actor_id=actor_id,
                    actor_role=actor_role,
                    data={
                        "provider_id": str(provider_id),
                        "service_id": str(service_id),
                        "date": day.isoformat(),
                        "start_time": start_time.isoformat(),
                        **exc.details,
                    },
                    source_module=SOURCE,
                ))
                raise

        await emit(SystemEvent(
            event_type=EventType.APPOINTMENT_CREATED,
            organization_id=ctx.schedule.organization_id,
            entity_id=appointment.id,
            actor_id=actor_id,
            actor_role=actor_role,
            data=_event_payload(appointment),
            source_module=SOURCE,
        ))
        logger.info(
            "Appointment created: id=%s provider=%s %s %s-%s",
            appointment.id,
            provider_id,
            day,
            appointment.start_time,
            appointment.end_time,
        )
        return appointment

    @staticmethod
    def _check_requested(
        ctx: BookingContext,
        day: date,
        requested: tw.Interval,
        free: list[tw.Interval],
        active: list[Appointment],
    ) -> None:
        """Raise SlotConflictError unless ``requested`` lies inside free time."""
        if any(interval.contains(requested) for interval in free) and tw.exists_in_zone(day, requested.start, ctx.tz):
            return

        for appt in active:
            if appt.date == day and requested.overlaps(tw.Interval.from_times(appt.start_time, appt.end_time)):
                raise SlotConflictError(
                    SlotConflictError.ALREADY_BOOKED,
                    f"{tw.format_minutes(requested.start)} on {day.isoformat()} is already taken; "
                    "please pick another time",
                    conflicting_appointment_id=appt.id,
                )
        raise SlotConflictError(
            SlotConflictError.OUTSIDE_AVAILABILITY,
            f"{tw.format_minutes(requested.start)} on {day.isoformat()} is outside the provider's "
            "availability; please pick another time",
        )

    # ── Status changes ───────────────────────────────────────────────

    async def transition(
        self,
        appointment_id: uuid.UUID,
        to_status: AppointmentStatus,
        organization_id: uuid.UUID | None = None,
        actor_id: str | None = None,
        actor_role: str | None = None,
    ) -> Appointment:
        """Move an appointment to ``to_status`` in one atomic write.

        Raises:
            NotFoundError: Unknown appointment.
            InvalidTransitionError: ``to_status`` is not reachable from the current status.
        """
        async with self._store_factory() as store:
            appointment = await store.get_appointment(appointment_id, for_update=True)
            if appointment is None:
                raise NotFoundError("Appointment", appointment_id)
            schedule = await self._visible_schedule(
                store, appointment.schedule_id, organization_id, "Appointment", appointment_id
            )

            fsm = AppointmentStateMachine(appointment.id, AppointmentStatus(appointment.status))
            from_status = fsm.current_status
            fsm.transition(to_status)
            appointment.status = fsm.current_status.value
            appointment.status_changed_at = datetime.now(timezone.utc)

        await emit(SystemEvent(
            event_type=EventType.APPOINTMENT_STATUS_CHANGED,
            organization_id=schedule.organization_id,
            entity_id=appointment.id,
            actor_id=actor_id,
            actor_role=actor_role,
            data={
                **_event_payload(appointment),
                "from_status": from_status.value,
                "to_status": to_status.value,
                "slot_released": not appointment.holds_capacity,
            },
            source_module=SOURCE,
        ))
        return appointment

    # ── Availability configuration ───────────────────────────────────

    async def add_availability_window(
        self,
        provider_id: uuid.UUID,
        day_of_week: int,
        start_time: time,
        end_time: time,
        organization_id: uuid.UUID | None = None,
        actor_id: str | None = None,
        actor_role: str | None = None,
    ) -> AvailabilityWindow:
        """Publish a weekly window; overlapping windows are allowed."""
        tw.validate_day_of_week(day_of_week)
        tw.validate_window(start_time, end_time)

        async with self._store_factory() as store:
            provider = await store.get_provider(provider_id)
            if provider is None:
                raise NotFoundError("Provider", provider_id)
            schedule = await self._visible_schedule(
                store, provider.schedule_id, organization_id, "Provider", provider_id
            )
            window = await store.add_window(AvailabilityWindow(
                id=uuid.uuid4(),
                provider_id=provider_id,
                day_of_week=day_of_week,
                start_time=start_time,
                end_time=end_time,
            ))

        await emit(SystemEvent(
            event_type=EventType.AVAILABILITY_WINDOW_ADDED,
            organization_id=schedule.organization_id,
            entity_id=window.id,
            actor_id=actor_id,
            actor_role=actor_role,
            data={
                "provider_id": str(provider_id),
                "day_of_week": day_of_week,
                "start_time": start_time.isoformat(),
                "end_time": end_time.isoformat(),
            },
            source_module=SOURCE,
        ))
        return window

    async def add_exception(
        self,
        schedule_id: uuid.UUID,
        day: date,
        title: str,
        provider_id: uuid.UUID | None = None,
        start_time: time | None = None,
        end_time: time | None = None,
        recurring: bool = False,
        organization_id: uuid.UUID | None = None,
        actor_id: str | None = None,
        actor_role: str | None = None,
    ) -> ScheduleException:
        """Add a holiday or blackout.

        Without bounds the exception covers the whole day. Existing
        appointments are left untouched; only future availability shrinks.
        """
        if (start_time is None) != (end_time is None):
            raise InvalidWindowError(
                "A partial exception needs both start_time and end_time",
                {"start_time": start_time and start_time.isoformat(), "end_time": end_time and end_time.isoformat()},
            )
        all_day = start_time is None
        if not all_day:
            tw.validate_window(start_time, end_time)

        async with self._store_factory() as store:
            schedule = await self._visible_schedule(store, schedule_id, organization_id)
            if provider_id is not None:
                provider = await store.get_provider(provider_id)
                if provider is None or provider.schedule_id != schedule_id:
                    raise NotFoundError("Provider", provider_id)
            exception = await store.add_exception(ScheduleException(
                id=uuid.uuid4(),
                schedule_id=schedule_id,
                provider_id=provider_id,
                title=title,
                date=day,
                all_day=all_day,
                start_time=start_time,
                end_time=end_time,
                recurring=recurring,
            ))

        await emit(SystemEvent(
            event_type=EventType.AVAILABILITY_EXCEPTION_ADDED,
            organization_id=schedule.organization_id,
            entity_id=exception.id,
            actor_id=actor_id,
            actor_role=actor_role,
            data={
                "schedule_id": str(schedule_id),
                "provider_id": str(provider_id) if provider_id else None,
                "date": day.isoformat(),
                "all_day": all_day,
                "recurring": recurring,
            },
            source_module=SOURCE,
        ))
        return exception

    async def list_availability_windows(
        self,
        provider_id: uuid.UUID,
        organization_id: uuid.UUID | None = None,
    ) -> list[AvailabilityWindow]:
        """A provider's weekly windows, by weekday then start time."""
        async with self._store_factory() as store:
            provider = await store.get_provider(provider_id)
            if provider is None:
                raise NotFoundError("Provider", provider_id)
            await self._visible_schedule(store, provider.schedule_id, organization_id, "Provider", provider_id)
            return await store.list_windows(provider_id)

    async def remove_availability_window(
        self,
        window_id: uuid.UUID,
        provider_id: uuid.UUID | None = None,
        organization_id: uuid.UUID | None = None,
        actor_id: str | None = None,
        actor_role: str | None = None,
    ) -> AvailabilityWindow:
        """Withdraw a weekly window. Appointments already booked in it stay."""
        async with self._store_factory() as store:
            window = await store.get_window(window_id)
            if window is None or (provider_id is not None and window.provider_id != provider_id):
                raise NotFoundError("AvailabilityWindow", window_id)
            provider = await store.get_provider(window.provider_id)
            if provider is None:
                raise NotFoundError("AvailabilityWindow", window_id)
            schedule = await self._visible_schedule(
                store, provider.schedule_id, organization_id, "AvailabilityWindow", window_id
            )
            await store.delete_window(window)

        await emit(SystemEvent(
            event_type=EventType.AVAILABILITY_WINDOW_REMOVED,
            organization_id=schedule.organization_id,
            entity_id=window.id,
            actor_id=actor_id,
            actor_role=actor_role,
            data={
                "provider_id": str(window.provider_id),
                "day_of_week": window.day_of_week,
                "start_time": window.start_time.isoformat(),
                "end_time": window.end_time.isoformat(),
            },
            source_module=SOURCE,
        ))
        logger.info("Availability window removed: id=%s provider=%s", window.id, window.provider_id)
        return window

    async def list_exceptions(
        self,
        schedule_id: uuid.UUID,
        organization_id: uuid.UUID | None = None,
    ) -> list[ScheduleException]:
        """Every exception of a schedule, schedule-wide and per provider, by date."""
        async with self._store_factory() as store:
            await self._visible_schedule(store, schedule_id, organization_id)
            return await store.list_schedule_exceptions(schedule_id)

    async def remove_exception(
        self,
        exception_id: uuid.UUID,
        schedule_id: uuid.UUID | None = None,
        organization_id: uuid.UUID | None = None,
        actor_id: str | None = None,
        actor_role: str | None = None,
    ) -> ScheduleException:
        """Delete a holiday or blackout, reopening the time it removed."""
        async with self._store_factory() as store:
            exception = await store.get_exception(exception_id)
            if exception is None or (schedule_id is not None and exception.schedule_id != schedule_id):
                raise NotFoundError("ScheduleException", exception_id)
            schedule = await self._visible_schedule(
                store, exception.schedule_id, organization_id, "ScheduleException", exception_id
            )
            await store.delete_exception(exception)

        await emit(SystemEvent(
            event_type=EventType.AVAILABILITY_EXCEPTION_REMOVED,
            organization_id=schedule.organization_id,
            entity_id=exception.id,
            actor_id=actor_id,
            actor_role=actor_role,
            data={
                "schedule_id": str(exception.schedule_id),
                "provider_id": str(exception.provider_id) if exception.provider_id else None,
                "date": exception.date.isoformat(),
                "all_day": exception.all_day,
                "recurring": exception.recurring,
            },
            source_module=SOURCE,
        ))
        logger.info("Schedule exception removed: id=%s schedule=%s", exception.id, exception.schedule_id)
        return exception

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    async def _visible_schedule(
        store: SchedulingStore,
        schedule_id: uuid.UUID,
        organization_id: uuid.UUID | None,
        entity: str = "Schedule",
        entity_id: object | None = None,
    ) -> Schedule:
        """Load a schedule, hiding it from other organizations."""
        schedule = await store.get_schedule(schedule_id)
        if schedule is None or (organization_id is not None and schedule.organization_id != organization_id):
            raise NotFoundError(entity, entity_id if entity_id is not None else schedule_id)
        return schedule


def _event_payload(appointment: Appointment) -> dict[str, object]:
    """Fields an external notifier needs to reach the customer."""
    return {
        "schedule_id": str(appointment.schedule_id),
        "provider_id": str(appointment.provider_id),
        "service_id": str(appointment.service_id),
        "customer_id": str(appointment.customer_id),
        "chat_id": str(appointment.chat_id) if appointment.chat_id else None,
        "date": appointment.date.isoformat(),
        "start_time": appointment.start_time.isoformat(),
        "end_time": appointment.end_time.isoformat(),
        "status": appointment.status,
        "has_videoconference": appointment.has_videoconference,
    }


# Module-level singleton
booking_service = BookingService()
