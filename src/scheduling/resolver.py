"""Availability resolver: open slot starts for a provider and service.

For each date in the requested range:
  1. take the provider's recurring windows for that weekday (merged),
  2. subtract exceptions that fall on the date (whole-day empties it),
  3. subtract every non-terminal appointment of the provider that day,
  4. enumerate starts at the service duration from each free interval start.

The pure functions below do the work; AvailabilityResolver loads the inputs
from a SchedulingStore. Resolution never writes, so identical inputs always
yield the identical ordered list.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.config import settings
from src.models.appointment import Appointment
from src.models.availability import AvailabilityWindow, ScheduleException
from src.models.schedule import Provider, Schedule, Service
from src.schemas.scheduling import SlotStart
from src.scheduling import timewindow as tw
from src.scheduling.errors import NotFoundError, RangeTooLargeError
from src.scheduling.store import SchedulingStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingContext:
    """Provider, service and schedule resolved and checked for one request."""

    schedule: Schedule
    provider: Provider
    service: Service
    tz: ZoneInfo


# ── Pure resolution ──────────────────────────────────────────────────


def window_intervals(windows: Iterable[AvailabilityWindow]) -> dict[int, list[tw.Interval]]:
    """Group windows by weekday and merge each day's intervals."""
    by_day: dict[int, list[tw.Interval]] = defaultdict(list)
    for window in windows:
        by_day[window.day_of_week].append(tw.Interval.from_times(window.start_time, window.end_time))
    return {dow: tw.normalize(intervals) for dow, intervals in by_day.items()}


def exception_intervals(exceptions: Iterable[ScheduleException], day: date) -> list[tw.Interval]:
    """Intervals removed from ``day`` by the exceptions that apply to it."""
    removed: list[tw.Interval] = []
    for exc in exceptions:
        if not exc.applies_on(day):
            continue
        if exc.all_day or exc.start_time is None or exc.end_time is None:
            return [tw.WHOLE_DAY]
        removed.append(tw.Interval.from_times(exc.start_time, exc.end_time))
    return removed


def booked_intervals(appointments: Iterable[Appointment], day: date) -> list[tw.Interval]:
    """Intervals held by non-terminal appointments on ``day``."""
    return [
        tw.Interval.from_times(appt.start_time, appt.end_time)
        for appt in appointments
        if appt.date == day and appt.holds_capacity
    ]


def free_intervals_for_day(
    day: date,
    windows_by_day: dict[int, list[tw.Interval]],
    exceptions: Iterable[ScheduleException],
    appointments: Iterable[Appointment],
) -> list[tw.Interval]:
    """Steps 1–3: recurrence minus exceptions minus existing bookings."""
    base = windows_by_day.get(tw.day_of_week(day), [])
    if not base:
        return []
    open_intervals = tw.subtract(base, exception_intervals(exceptions, day))
    if not open_intervals:
        return []
    return tw.subtract(open_intervals, booked_intervals(appointments, day))


def compute_slots(
    ctx: BookingContext,
    start: date,
    end: date,
    windows: Iterable[AvailabilityWindow],
    exceptions: Iterable[ScheduleException],
    appointments: Iterable[Appointment],
) -> list[SlotStart]:
    """All bookable starts in ``[start, end]`` (inclusive), ordered by date then time."""
    duration = ctx.service.duration_minutes
    windows_by_day = window_intervals(windows)
    exceptions = list(exceptions)
    appointments = list(appointments)

    slots: list[SlotStart] = []
    for day in tw.iter_dates(start, end):
        free = free_intervals_for_day(day, windows_by_day, exceptions, appointments)
        for minute in tw.enumerate_starts(free, duration):
            if not tw.exists_in_zone(day, minute, ctx.tz):
                continue
            slots.append(SlotStart(
                date=day,
                start_time=tw.to_time(minute),
                end_time=tw.to_time(minute + duration),
                starts_at=tw.localize(day, minute, ctx.tz),
                provider_id=ctx.provider.id,
                service_id=ctx.service.id,
            ))
    return slots


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Schedule timezone, falling back to the configured default."""
    try:
        return ZoneInfo(name or settings.scheduling.default_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown schedule timezone %r, using %s", name, settings.scheduling.default_timezone)
        return ZoneInfo(settings.scheduling.default_timezone)


# ── Store-backed resolver ────────────────────────────────────────────


async def load_booking_context(
    store: SchedulingStore,
    provider_id: uuid.UUID,
    service_id: uuid.UUID,
    schedule_id: uuid.UUID | None = None,
    organization_id: uuid.UUID | None = None,
) -> BookingContext:
    """Fetch and check provider, service and schedule for a booking request.

    Raises:
        NotFoundError: If any of them is unknown, inactive, belongs to another
            organization or schedule, or the provider does not offer the service.
    """
    provider = await store.get_provider(provider_id)
    if provider is None:
        raise NotFoundError("Provider", provider_id)
    if schedule_id is not None and provider.schedule_id != schedule_id:
        raise NotFoundError("Provider", provider_id, f"not part of schedule {schedule_id}")
    if not provider.is_active:
        raise NotFoundError("Provider", provider_id, "provider is inactive")

    schedule = await store.get_schedule(provider.schedule_id)
    if schedule is None or (organization_id is not None and schedule.organization_id != organization_id):
        raise NotFoundError("Schedule", provider.schedule_id)
    if not schedule.is_active:
        raise NotFoundError("Schedule", schedule.id, "schedule is inactive")

    service = await store.get_service(service_id)
    if service is None or service.schedule_id != schedule.id:
        raise NotFoundError("Service", service_id)
    if not service.is_active:
        raise NotFoundError("Service", service_id, "service is inactive")
    if not provider.offers(service.id):
        raise NotFoundError("Service", service_id, "not offered by this provider")

    return BookingContext(
        schedule=schedule,
        provider=provider,
        service=service,
        tz=resolve_timezone(schedule.timezone),
    )


class AvailabilityResolver:
    """Read-only slot resolution against a SchedulingStore."""

    def __init__(self, max_range_days: int | None = None) -> None:
        if max_range_days is None:
            max_range_days = settings.scheduling.max_range_days
        self.max_range_days = max_range_days

    def check_range(self, start: date, end: date) -> None:
        """Raise RangeTooLargeError when ``[start, end]`` exceeds the limit."""
        span = (end - start).days + 1
        if span > self.max_range_days:
            raise RangeTooLargeError(span, self.max_range_days)

    async def resolve(
        self,
        store: SchedulingStore,
        provider_id: uuid.UUID,
        service_id: uuid.UUID,
        start: date,
        end: date,
        schedule_id: uuid.UUID | None = None,
        organization_id: uuid.UUID | None = None,
    ) -> list[SlotStart]:
        """Bookable starts for provider/service between two dates, inclusive."""
        self.check_range(start, end)
        ctx = await load_booking_context(store, provider_id, service_id, schedule_id, organization_id)
        if end < start:
            return []

        windows = await store.list_windows(provider_id)
        exceptions = await store.list_exceptions(ctx.schedule.id, provider_id, start, end)
        appointments = await store.list_active_appointments(provider_id, start, end)

        slots = compute_slots(ctx, start, end, windows, exceptions, appointments)
        logger.debug(
            "Resolved %d slots for provider=%s service=%s %s..%s",
            len(slots),
            provider_id,
            service_id,
            start,
            end,
        )
        return slots

    async def free_intervals(
        self,
        store: SchedulingStore,
        ctx: BookingContext,
        day: date,
    ) -> tuple[list[tw.Interval], list[Appointment]]:
        """Free intervals on one day plus the active appointments that shaped them."""
        windows = await store.list_windows(ctx.provider.id)
        exceptions = await store.list_exceptions(ctx.schedule.id, ctx.provider.id, day, day)
        appointments = await store.list_active_appointments(ctx.provider.id, day, day)
        free = free_intervals_for_day(day, window_intervals(windows), exceptions, appointments)
        return free, appointments
