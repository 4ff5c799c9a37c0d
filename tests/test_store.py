"""Tests for the SQL-backed SchedulingStore.

Covers:
- Advisory lock key per provider and date
- Overlap constraint violations mapped to SlotConflict
- Other integrity errors propagated
- Transaction handling of sql_store_factory
- Deleting and listing availability configuration rows
"""

from __future__ import annotations

import uuid
from datetime import date, time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from src.models.appointment import Appointment
from src.models.availability import AvailabilityWindow
from src.scheduling.errors import SlotConflictError
from src.scheduling.store import OVERLAP_CONSTRAINT, SqlSchedulingStore, sql_store_factory


def _make_session() -> MagicMock:
    session = MagicMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.get = AsyncMock()
    return session


def _make_appointment() -> Appointment:
    return Appointment(
        id=uuid.uuid4(),
        schedule_id=uuid.uuid4(),
        provider_id=uuid.uuid4(),
        service_id=uuid.uuid4(),
        customer_id=uuid.uuid4(),
        date=date(2026, 3, 2),
        start_time=time(9, 0),
        end_time=time(9, 30),
        status="scheduled",
    )


class TestLockProviderDay:
    @pytest.mark.asyncio
    async def test_advisory_lock_key(self):
        session = _make_session()
        store = SqlSchedulingStore(session)
        provider_id = uuid.uuid4()

        await store.lock_provider_day(provider_id, date(2026, 3, 2))

        session.execute.assert_awaited_once()
        statement, params = session.execute.call_args.args
        assert "pg_advisory_xact_lock" in str(statement)
        assert params == {"key": f"booking:{provider_id}:2026-03-02"}


class TestAddAppointment:
    @pytest.mark.asyncio
    async def test_adds_and_flushes(self):
        session = _make_session()
        store = SqlSchedulingStore(session)
        appt = _make_appointment()

        assert await store.add_appointment(appt) is appt
        session.add.assert_called_once_with(appt)
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_overlap_violation_is_slot_conflict(self):
        session = _make_session()
        orig = Exception(f'conflicting key value violates exclusion constraint "{OVERLAP_CONSTRAINT}"')
        session.flush.side_effect = IntegrityError("INSERT INTO appointments", {}, orig)
        store = SqlSchedulingStore(session)

        with pytest.raises(SlotConflictError) as exc_info:
            await store.add_appointment(_make_appointment())
        assert exc_info.value.reason == SlotConflictError.ALREADY_BOOKED

    @pytest.mark.asyncio
    async def test_other_integrity_errors_propagate(self):
        session = _make_session()
        orig = Exception('insert violates foreign key constraint "appointments_provider_id_fkey"')
        session.flush.side_effect = IntegrityError("INSERT INTO appointments", {}, orig)
        store = SqlSchedulingStore(session)

        with pytest.raises(IntegrityError):
            await store.add_appointment(_make_appointment())


class TestGetAppointment:
    @pytest.mark.asyncio
    async def test_for_update_locks_row(self):
        session = _make_session()
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        session.execute.return_value = result
        store = SqlSchedulingStore(session)

        assert await store.get_appointment(uuid.uuid4(), for_update=True) is None
        statement = session.execute.call_args.args[0]
        assert "FOR UPDATE" in str(statement)


class TestStoreFactory:
    @pytest.mark.asyncio
    async def test_opens_transaction(self):
        session = MagicMock()
        begin_ctx = MagicMock()
        begin_ctx.__aenter__ = AsyncMock()
        begin_ctx.__aexit__ = AsyncMock(return_value=False)
        session.begin.return_value = begin_ctx

        session_ctx = MagicMock()
        session_ctx.__aenter__ = AsyncMock(return_value=session)
        session_ctx.__aexit__ = AsyncMock(return_value=False)

        with patch("src.scheduling.store.async_session_factory", return_value=session_ctx):
            async with sql_store_factory() as store:
                assert isinstance(store, SqlSchedulingStore)

        session.begin.assert_called_once()
        begin_ctx.__aexit__.assert_awaited_once()
        assert begin_ctx.__aexit__.call_args.args[0] is None

    @pytest.mark.asyncio
    async def test_exception_reaches_transaction(self):
        session = MagicMock()
        begin_ctx = MagicMock()
        begin_ctx.__aenter__ = AsyncMock()
        begin_ctx.__aexit__ = AsyncMock(return_value=False)
        session.begin.return_value = begin_ctx

        session_ctx = MagicMock()
        session_ctx.__aenter__ = AsyncMock(return_value=session)
        session_ctx.__aexit__ = AsyncMock(return_value=False)

        with patch("src.scheduling.store.async_session_factory", return_value=session_ctx):
            with pytest.raises(SlotConflictError):
                async with sql_store_factory():
                    raise SlotConflictError(SlotConflictError.ALREADY_BOOKED, "taken")

        assert begin_ctx.__aexit__.call_args.args[0] is SlotConflictError


class TestConfigurationRows:
    @pytest.mark.asyncio
    async def test_delete_window_flushes(self):
        session = _make_session()
        session.delete = AsyncMock()
        store = SqlSchedulingStore(session)
        window = AvailabilityWindow(
            id=uuid.uuid4(), provider_id=uuid.uuid4(), day_of_week=1, start_time=time(22, 0), end_time=time(0, 0)
        )

        await store.delete_window(window)

        session.delete.assert_awaited_once_with(window)
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_list_schedule_exceptions_filters_by_schedule(self):
        session = _make_session()
        result = MagicMock()
        result.scalars.return_value.all.return_value = []
        session.execute.return_value = result
        store = SqlSchedulingStore(session)

        assert await store.list_schedule_exceptions(uuid.uuid4()) == []
        statement = str(session.execute.call_args.args[0])
        assert "schedule_exceptions.schedule_id" in statement
        assert "ORDER BY schedule_exceptions.date" in statement
