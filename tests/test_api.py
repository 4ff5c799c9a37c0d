"""Tests for the scheduling HTTP API.

Covers:
- HTTP Basic Auth and identity headers (401, 422, 403 for config writes)
- Availability listing and the from/to query aliases
- Booking (201), conflicts (409), rate limiting (429)
- Status changes, reads and listing
- Availability window and exception listing and removal
- Error body shape for every error kind
"""

from __future__ import annotations

import base64
import uuid
from datetime import date, time
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.routes import get_booking_service, router, scheduling_error_handler
from src.scheduling.errors import SchedulingError

MONDAY = date(2026, 3, 2)


def _make_auth_header(username: str = "gateway", password: str = "testpass123") -> dict[str, str]:
    """Build HTTP Basic Auth header."""
    credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {credentials}"}


@pytest.fixture
def mock_settings():
    """Patch settings to use test password."""
    with patch("src.api.auth.settings") as mock:
        mock.security.api_password = "testpass123"
        yield mock


@pytest.fixture
def mock_rate_limiter():
    with patch("src.api.routes.rate_limiter") as mock:
        mock.check = AsyncMock(return_value=(True, 0))
        yield mock


@pytest.fixture
def client(mock_settings, mock_rate_limiter, mock_emit, booking):
    """Test client over the in-memory booking service."""
    test_app = FastAPI()
    test_app.include_router(router)
    test_app.add_exception_handler(SchedulingError, scheduling_error_handler)
    test_app.dependency_overrides[get_booking_service] = lambda: booking
    return TestClient(test_app)


@pytest.fixture
def headers(agenda):
    def _make(role: str = "agent", org: uuid.UUID | None = None) -> dict[str, str]:
        return {
            **_make_auth_header(),
            "X-Organization-Id": str(org or agenda.organization_id),
            "X-Profile-Id": "profile-42",
            "X-Profile-Role": role,
        }
    return _make


def _availability_url(agenda, start: date = MONDAY, end: date = MONDAY) -> str:
    return (
        f"/schedules/{agenda.schedule.id}/availability"
        f"?provider_id={agenda.provider.id}&service_id={agenda.service.id}"
        f"&from={start.isoformat()}&to={end.isoformat()}"
    )


def _booking_body(agenda, start: str = "09:00:00") -> dict[str, str]:
    return {
        "provider_id": str(agenda.provider.id),
        "service_id": str(agenda.service.id),
        "customer_id": str(uuid.uuid4()),
        "date": MONDAY.isoformat(),
        "start_time": start,
    }


class TestAuth:
    def test_401_without_credentials(self, client, agenda):
        resp = client.get(_availability_url(agenda))
        assert resp.status_code == 401

    def test_401_wrong_password(self, client, agenda, headers):
        resp = client.get(
            _availability_url(agenda),
            headers={**headers(), **_make_auth_header(password="wrong")},
        )
        assert resp.status_code == 401

    def test_503_when_password_unset(self, client, agenda, headers, mock_settings):
        mock_settings.security.api_password = ""
        resp = client.get(_availability_url(agenda), headers=headers())
        assert resp.status_code == 503

    def test_422_without_identity_headers(self, client, agenda):
        resp = client.get(_availability_url(agenda), headers=_make_auth_header())
        assert resp.status_code == 422

    def test_agent_cannot_change_availability(self, client, agenda, headers):
        resp = client.post(
            f"/providers/{agenda.provider.id}/availability",
            json={"day_of_week": 2, "start_time": "09:00:00", "end_time": "12:00:00"},
            headers=headers("agent"),
        )
        assert resp.status_code == 403


class TestAvailability:
    def test_lists_eight_slots(self, client, agenda, headers):
        resp = client.get(_availability_url(agenda), headers=headers())
        assert resp.status_code == 200
        slots = resp.json()
        assert len(slots) == 8
        assert slots[0]["start_time"] == "08:00:00"
        assert slots[0]["end_time"] == "08:30:00"
        assert slots[0]["date"] == MONDAY.isoformat()

    def test_range_too_large(self, client, agenda, headers):
        resp = client.get(_availability_url(agenda, MONDAY, date(2026, 6, 1)), headers=headers())
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "RangeTooLarge"
        assert body["details"]["max_days"] == 62

    def test_other_organization_sees_not_found(self, client, agenda, headers):
        resp = client.get(_availability_url(agenda), headers=headers(org=uuid.uuid4()))
        assert resp.status_code == 404
        assert resp.json()["error"] == "NotFound"


class TestBooking:
    def test_create_returns_201(self, client, agenda, headers, mock_emit):
        resp = client.post("/appointments", json=_booking_body(agenda), headers=headers())
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "scheduled"
        assert body["end_time"] == "09:30:00"
        event = mock_emit.call_args.args[0]
        assert event.actor_id == "profile-42"
        assert event.actor_role == "agent"

        slots = client.get(_availability_url(agenda), headers=headers()).json()
        assert len(slots) == 7

    def test_conflict_returns_409(self, client, agenda, headers):
        first = client.post("/appointments", json=_booking_body(agenda), headers=headers())
        resp = client.post("/appointments", json=_booking_body(agenda), headers=headers())
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "SlotConflict"
        assert body["details"]["reason"] == "already_booked"
        assert body["details"]["conflicting_appointment_id"] == first.json()["id"]
        assert body["message"]

    def test_outside_availability_returns_409(self, client, agenda, headers):
        resp = client.post("/appointments", json=_booking_body(agenda, "15:00:00"), headers=headers())
        assert resp.status_code == 409
        assert resp.json()["details"]["reason"] == "outside_availability"

    @pytest.mark.parametrize("start", ["09:00:45", "09:00:00+02:00"])
    def test_start_must_be_whole_local_minute(self, client, agenda, headers, start):
        resp = client.post("/appointments", json=_booking_body(agenda, start), headers=headers())
        assert resp.status_code == 422
        assert agenda.store.appointments == {}

    def test_booking_until_midnight(self, client, agenda, headers):
        agenda.store.add_window(agenda.provider, 1, time(22, 0), time(0, 0))
        resp = client.post("/appointments", json=_booking_body(agenda, "23:30:00"), headers=headers())
        assert resp.status_code == 201
        assert resp.json()["end_time"] == "00:00:00"

    def test_rate_limited(self, client, agenda, headers, mock_rate_limiter):
        mock_rate_limiter.check.return_value = (False, 42)
        resp = client.post("/appointments", json=_booking_body(agenda), headers=headers())
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "42"
        assert agenda.store.appointments == {}

    def test_rate_limit_keyed_by_profile(self, client, agenda, headers, mock_rate_limiter):
        client.post("/appointments", json=_booking_body(agenda), headers=headers())
        key = mock_rate_limiter.check.call_args.args[0]
        assert key == f"rate:{agenda.organization_id}:profile-42:booking"


class TestAppointmentRoutes:
    def _create(self, client, agenda, headers) -> dict:
        return client.post("/appointments", json=_booking_body(agenda), headers=headers()).json()

    def test_get(self, client, agenda, headers):
        created = self._create(client, agenda, headers)
        resp = client.get(f"/appointments/{created['id']}", headers=headers())
        assert resp.status_code == 200
        assert resp.json()["id"] == created["id"]

    def test_get_unknown(self, client, agenda, headers):
        resp = client.get(f"/appointments/{uuid.uuid4()}", headers=headers())
        assert resp.status_code == 404

    def test_confirm_then_invalid(self, client, agenda, headers):
        created = self._create(client, agenda, headers)
        url = f"/appointments/{created['id']}/status"

        resp = client.patch(url, json={"to_status": "confirmed"}, headers=headers())
        assert resp.status_code == 200
        assert resp.json()["status"] == "confirmed"

        resp = client.patch(url, json={"to_status": "scheduled"}, headers=headers())
        assert resp.status_code == 409
        assert resp.json()["error"] == "InvalidTransition"

    def test_unknown_status_value(self, client, agenda, headers):
        created = self._create(client, agenda, headers)
        resp = client.patch(
            f"/appointments/{created['id']}/status", json={"to_status": "postponed"}, headers=headers()
        )
        assert resp.status_code == 422

    def test_list_by_schedule(self, client, agenda, headers):
        created = self._create(client, agenda, headers)
        resp = client.get(f"/appointments?schedule_id={agenda.schedule.id}", headers=headers())
        assert resp.status_code == 200
        assert [a["id"] for a in resp.json()] == [created["id"]]

        client.patch(f"/appointments/{created['id']}/status", json={"to_status": "canceled"}, headers=headers())
        assert client.get(f"/appointments?schedule_id={agenda.schedule.id}", headers=headers()).json() == []

        resp = client.get(
            f"/appointments?schedule_id={agenda.schedule.id}&status=canceled", headers=headers()
        )
        assert [a["status"] for a in resp.json()] == ["canceled"]


class TestConfigurationRoutes:
    def test_add_window(self, client, agenda, headers):
        resp = client.post(
            f"/providers/{agenda.provider.id}/availability",
            json={"day_of_week": 2, "start_time": "09:00:00", "end_time": "12:00:00"},
            headers=headers("admin"),
        )
        assert resp.status_code == 201
        assert resp.json()["day_of_week"] == 2

    def test_invalid_window(self, client, agenda, headers):
        resp = client.post(
            f"/providers/{agenda.provider.id}/availability",
            json={"day_of_week": 2, "start_time": "12:00:00", "end_time": "09:00:00"},
            headers=headers("owner"),
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "InvalidWindow"

    def test_add_exception(self, client, agenda, headers):
        resp = client.post(
            f"/schedules/{agenda.schedule.id}/exceptions",
            json={"title": " Holiday ", "date": MONDAY.isoformat()},
            headers=headers("owner"),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["all_day"] is True
        assert body["title"] == "Holiday"

        slots = client.get(_availability_url(agenda), headers=headers()).json()
        assert slots == []

    def test_list_windows(self, client, agenda, headers):
        resp = client.get(f"/providers/{agenda.provider.id}/availability", headers=headers("admin"))
        assert resp.status_code == 200
        assert [(w["day_of_week"], w["start_time"]) for w in resp.json()] == [(1, "08:00:00")]

    def test_agent_cannot_list_windows(self, client, agenda, headers):
        resp = client.get(f"/providers/{agenda.provider.id}/availability", headers=headers("agent"))
        assert resp.status_code == 403

    def test_remove_window(self, client, agenda, headers, mock_emit):
        window_id = agenda.store.windows[0].id
        resp = client.delete(
            f"/providers/{agenda.provider.id}/availability/{window_id}", headers=headers("owner")
        )
        assert resp.status_code == 204
        assert agenda.store.windows == []
        assert mock_emit.call_args.args[0].actor_role == "owner"
        assert client.get(_availability_url(agenda), headers=headers()).json() == []

    def test_remove_unknown_window(self, client, agenda, headers):
        resp = client.delete(
            f"/providers/{agenda.provider.id}/availability/{uuid.uuid4()}", headers=headers("owner")
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "NotFound"

    def test_list_and_remove_exception(self, client, agenda, headers):
        created = client.post(
            f"/schedules/{agenda.schedule.id}/exceptions",
            json={"title": "Holiday", "date": MONDAY.isoformat(), "recurring": True},
            headers=headers("admin"),
        ).json()

        listed = client.get(f"/schedules/{agenda.schedule.id}/exceptions", headers=headers("admin")).json()
        assert [e["id"] for e in listed] == [created["id"]]

        resp = client.delete(
            f"/schedules/{agenda.schedule.id}/exceptions/{created['id']}", headers=headers("admin")
        )
        assert resp.status_code == 204
        assert client.get(f"/schedules/{agenda.schedule.id}/exceptions", headers=headers("admin")).json() == []
        assert len(client.get(_availability_url(agenda), headers=headers()).json()) == 8

    def test_remove_exception_other_org(self, client, agenda, headers):
        exception = agenda.store.add_exception(agenda.schedule, MONDAY)
        resp = client.delete(
            f"/schedules/{agenda.schedule.id}/exceptions/{exception.id}",
            headers=headers("owner", org=uuid.uuid4()),
        )
        assert resp.status_code == 404
        assert agenda.store.exceptions == [exception]


class TestHealth:
    def test_health(self):
        from src.main import app

        ok = {"postgresql": {"status": "ok", "latency_ms": 2}, "redis": {"status": "ok", "latency_ms": 1}}
        with patch("src.main.check_connections", new_callable=AsyncMock, return_value=ok):
            resp = TestClient(app).get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["postgresql"]["latency_ms"] == 2

    def test_health_degraded(self):
        from src.main import app

        down = {"postgresql": {"status": "error", "error": "refused"}, "redis": {"status": "ok", "latency_ms": 1}}
        with patch("src.main.check_connections", new_callable=AsyncMock, return_value=down):
            resp = TestClient(app).get("/health")
        assert resp.json()["status"] == "degraded"

    def test_app_maps_scheduling_errors(self):
        from src.main import app

        assert app.exception_handlers[SchedulingError] is scheduling_error_handler
