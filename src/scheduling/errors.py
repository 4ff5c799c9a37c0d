"""Typed scheduling errors.

Every failure the engine reports belongs to exactly one ErrorKind. The HTTP
layer maps kinds to status codes; nothing in the engine retries on them.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Error taxonomy surfaced to callers."""

    INVALID_WINDOW = "InvalidWindow"
    NOT_FOUND = "NotFound"
    RANGE_TOO_LARGE = "RangeTooLarge"
    SLOT_CONFLICT = "SlotConflict"
    INVALID_TRANSITION = "InvalidTransition"


class SchedulingError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidWindowError(SchedulingError):
    """Malformed availability window or exception bounds."""

    kind = ErrorKind.INVALID_WINDOW


class NotFoundError(SchedulingError):
    """Unknown (or not visible) provider, service, schedule or appointment."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: object, reason: str | None = None) -> None:
        message = f"{entity} {entity_id} not found"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, {"entity": entity, "id": str(entity_id)})
        self.entity = entity


class RangeTooLargeError(SchedulingError):
    """Availability query spans more days than allowed."""

    kind = ErrorKind.RANGE_TOO_LARGE

    def __init__(self, span_days: int, max_days: int) -> None:
        super().__init__(
            f"Date range covers {span_days} days; at most {max_days} are allowed",
            {"span_days": span_days, "max_days": max_days},
        )


class SlotConflictError(SchedulingError):
    """The requested interval cannot be booked (lost a race or not open)."""

    kind = ErrorKind.SLOT_CONFLICT

    ALREADY_BOOKED = "already_booked"
    OUTSIDE_AVAILABILITY = "outside_availability"

    def __init__(self, reason: str, message: str, conflicting_appointment_id: object | None = None) -> None:
        details: dict[str, Any] = {"reason": reason}
        if conflicting_appointment_id is not None:
            details["conflicting_appointment_id"] = str(conflicting_appointment_id)
        super().__init__(message, details)
        self.reason = reason


class InvalidTransitionError(SchedulingError):
    """Illegal appointment status change."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, from_status: str, to_status: str, valid: list[str]) -> None:
        if valid:
            message = f"Cannot move appointment from {from_status} to {to_status} (valid: {valid})"
        else:
            message = f"Appointment is already {from_status}; no further status changes are allowed"
        super().__init__(message, {"from_status": from_status, "to_status": to_status, "valid": valid})
