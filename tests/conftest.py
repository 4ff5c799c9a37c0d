"""Shared fixtures: an in-memory SchedulingStore and a seeded agenda.

The in-memory store keeps ORM instances in dicts. Each ``factory()`` call
opens a transaction: additions are staged and become visible only when the
context exits cleanly, mirroring commit/rollback of the SQL store.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import date, time
from unittest.mock import AsyncMock, patch

import pytest

from src.models.appointment import Appointment
from src.models.availability import AvailabilityWindow, ScheduleException
from src.models.enums import ACTIVE_APPOINTMENT_STATUSES
from src.models.schedule import Provider, Schedule, Service
from src.schemas.scheduling import AppointmentFilters
from src.scheduling.locks import KeyedLock
from src.scheduling.resolver import AvailabilityResolver
from src.scheduling.service import BookingService

# 2026-03-02 is a Monday
MONDAY = date(2026, 3, 2)

_ACTIVE_VALUES = {status.value for status in ACTIVE_APPOINTMENT_STATUSES}


class InMemoryStore:
    """Committed state shared by all transactions."""

    def __init__(self) -> None:
        self.schedules: dict[uuid.UUID, Schedule] = {}
        self.providers: dict[uuid.UUID, Provider] = {}
        self.services: dict[uuid.UUID, Service] = {}
        self.windows: list[AvailabilityWindow] = []
        self.exceptions: list[ScheduleException] = []
        self.appointments: dict[uuid.UUID, Appointment] = {}
        self.locked: list[tuple[uuid.UUID, date]] = []
        self.commits = 0
        self.rollbacks = 0

    @contextlib.asynccontextmanager
    async def factory(self) -> AsyncIterator[_Transaction]:
        tx = _Transaction(self)
        try:
            yield tx
        except BaseException:
            self.rollbacks += 1
            raise
        for appt in tx.new_appointments:
            self.appointments[appt.id] = appt
        self.windows = [w for w in self.windows + tx.new_windows if w.id not in tx.deleted]
        self.exceptions = [e for e in self.exceptions + tx.new_exceptions if e.id not in tx.deleted]
        self.commits += 1

    # ── Seeding helpers ──────────────────────────────────────────────

    def add_schedule(self, organization_id: uuid.UUID, tz: str = "UTC", status: str = "active") -> Schedule:
        schedule = Schedule(
            id=uuid.uuid4(), organization_id=organization_id, title="Studio", timezone=tz, status=status
        )
        self.schedules[schedule.id] = schedule
        return schedule

    def add_provider(
        self, schedule: Schedule, status: str = "active", services: list[uuid.UUID] | None = None
    ) -> Provider:
        provider = Provider(
            id=uuid.uuid4(),
            schedule_id=schedule.id,
            profile_id=uuid.uuid4(),
            name="Dr. Lima",
            status=status,
            available_services=services or [],
        )
        self.providers[provider.id] = provider
        return provider

    def add_service(self, schedule: Schedule, duration: int = 30, status: str = "active") -> Service:
        service = Service(
            id=uuid.uuid4(), schedule_id=schedule.id, title="Consultation", duration_minutes=duration, status=status
        )
        self.services[service.id] = service
        return service

    def add_window(self, provider: Provider, dow: int, start: time, end: time) -> AvailabilityWindow:
        window = AvailabilityWindow(
            id=uuid.uuid4(), provider_id=provider.id, day_of_week=dow, start_time=start, end_time=end
        )
        self.windows.append(window)
        return window

    def add_exception(
        self,
        schedule: Schedule,
        day: date,
        provider: Provider | None = None,
        start: time | None = None,
        end: time | None = None,
        recurring: bool = False,
    ) -> ScheduleException:
        exception = ScheduleException(
            id=uuid.uuid4(),
            schedule_id=schedule.id,
            provider_id=provider.id if provider else None,
            title="Closed",
            date=day,
            all_day=start is None,
            start_time=start,
            end_time=end,
            recurring=recurring,
        )
        self.exceptions.append(exception)
        return exception


class _Transaction:
    """One unit of work against an InMemoryStore."""

    def __init__(self, db: InMemoryStore) -> None:
        self._db = db
        self.new_appointments: list[Appointment] = []
        self.new_windows: list[AvailabilityWindow] = []
        self.new_exceptions: list[ScheduleException] = []
        self.deleted: set[uuid.UUID] = set()

    def _windows(self) -> list[AvailabilityWindow]:
        return [w for w in self._db.windows + self.new_windows if w.id not in self.deleted]

    def _exceptions(self) -> list[ScheduleException]:
        return [e for e in self._db.exceptions + self.new_exceptions if e.id not in self.deleted]

    async def get_schedule(self, schedule_id):
        return self._db.schedules.get(schedule_id)

    async def get_provider(self, provider_id):
        return self._db.providers.get(provider_id)

    async def get_service(self, service_id):
        return self._db.services.get(service_id)

    async def list_windows(self, provider_id):
        windows = [w for w in self._windows() if w.provider_id == provider_id]
        return sorted(windows, key=lambda w: (w.day_of_week, w.start_time))

    async def list_exceptions(self, schedule_id, provider_id, start, end):
        return [
            e
            for e in self._exceptions()
            if e.schedule_id == schedule_id
            and e.provider_id in (None, provider_id)
            and (e.recurring or start <= e.date <= end)
        ]

    async def list_active_appointments(self, provider_id, start, end):
        # Yield so concurrent bookings interleave when nothing serializes them
        await asyncio.sleep(0)
        appointments = list(self._db.appointments.values()) + self.new_appointments
        return sorted(
            (
                a
                for a in appointments
                if a.provider_id == provider_id and start <= a.date <= end and a.status in _ACTIVE_VALUES
            ),
            key=lambda a: (a.date, a.start_time),
        )

    async def lock_provider_day(self, provider_id, day):
        self._db.locked.append((provider_id, day))

    async def get_appointment(self, appointment_id, for_update=False):
        return self._db.appointments.get(appointment_id)

    async def add_appointment(self, appointment):
        self.new_appointments.append(appointment)
        return appointment

    async def list_appointments(self, filters: AppointmentFilters):
        statuses = {s.value for s in filters.statuses}
        result = [
            a
            for a in self._db.appointments.values()
            if (filters.schedule_id is None or a.schedule_id == filters.schedule_id)
            and (filters.provider_id is None or a.provider_id == filters.provider_id)
            and (filters.service_id is None or a.service_id == filters.service_id)
            and (filters.customer_id is None or a.customer_id == filters.customer_id)
            and (not statuses or a.status in statuses)
            and (filters.start_date is None or a.date >= filters.start_date)
            and (filters.end_date is None or a.date <= filters.end_date)
        ]
        result.sort(key=lambda a: (a.date, a.start_time))
        return result[: filters.limit]

    async def add_window(self, window):
        self.new_windows.append(window)
        return window

    async def get_window(self, window_id):
        return next((w for w in self._windows() if w.id == window_id), None)

    async def delete_window(self, window):
        self.deleted.add(window.id)

    async def add_exception(self, exception):
        self.new_exceptions.append(exception)
        return exception

    async def get_exception(self, exception_id):
        return next((e for e in self._exceptions() if e.id == exception_id), None)

    async def list_schedule_exceptions(self, schedule_id):
        return sorted(
            (e for e in self._exceptions() if e.schedule_id == schedule_id),
            key=lambda e: (e.date, e.start_time or time(0)),
        )

    async def delete_exception(self, exception):
        self.deleted.add(exception.id)


@dataclass
class Agenda:
    """A seeded schedule: one provider open Monday 08:00-12:00, 30-minute service."""

    store: InMemoryStore
    organization_id: uuid.UUID
    schedule: Schedule
    provider: Provider
    service: Service


@pytest.fixture()
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def agenda(memory_store: InMemoryStore) -> Agenda:
    org_id = uuid.uuid4()
    schedule = memory_store.add_schedule(org_id)
    provider = memory_store.add_provider(schedule)
    service = memory_store.add_service(schedule, duration=30)
    memory_store.add_window(provider, 1, time(8, 0), time(12, 0))
    return Agenda(memory_store, org_id, schedule, provider, service)


@pytest.fixture()
def booking(memory_store: InMemoryStore) -> BookingService:
    """BookingService over the in-memory store, with a generous range limit."""
    return BookingService(
        store_factory=memory_store.factory,
        resolver=AvailabilityResolver(max_range_days=62),
        locks=KeyedLock(),
    )


@pytest.fixture()
def mock_emit():
    with patch("src.scheduling.service.emit", new_callable=AsyncMock) as mock:
        yield mock
