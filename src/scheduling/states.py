"""Appointment status transition map.

Confirmation must be explicit before an appointment can be completed or
marked as a no-show; there is no shortcut from scheduled to either.
"""

from __future__ import annotations

from src.models.enums import AppointmentStatus

INITIAL_STATUS = AppointmentStatus.SCHEDULED

# Transition map: {current_status: {allowed target statuses}}
TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELED,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

TERMINAL_STATUSES: frozenset[AppointmentStatus] = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)
