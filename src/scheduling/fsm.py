"""Finite state machine for appointment status changes.

The FSM only validates and applies a transition in memory; the Booking
Service persists the result and emits the status-change event after commit.
"""

from __future__ import annotations

import logging
import uuid

from src.models.enums import AppointmentStatus
from src.scheduling.errors import InvalidTransitionError
from src.scheduling.states import INITIAL_STATUS, TRANSITIONS

logger = logging.getLogger(__name__)


class AppointmentStateMachine:
    """Manages status transitions for a single appointment."""

    def __init__(
        self,
        appointment_id: uuid.UUID | None,
        initial_status: AppointmentStatus = INITIAL_STATUS,
    ) -> None:
        self.appointment_id = appointment_id
        self.current_status = initial_status

    def can_transition(self, to_status: AppointmentStatus) -> bool:
        """Check if ``to_status`` is reachable in one step."""
        return to_status in TRANSITIONS.get(self.current_status, frozenset())

    def valid_targets(self) -> list[AppointmentStatus]:
        """Statuses reachable from the current one, in declaration order."""
        allowed = TRANSITIONS.get(self.current_status, frozenset())
        return [status for status in AppointmentStatus if status in allowed]

    def transition(self, to_status: AppointmentStatus) -> AppointmentStatus:
        """Apply a status change.

        Args:
            to_status: Requested target status.

        Returns:
            The new status.

        Raises:
            InvalidTransitionError: If the change is not in the transition map.
        """
        if not self.can_transition(to_status):
            raise InvalidTransitionError(
                self.current_status.value,
                to_status.value,
                [status.value for status in self.valid_targets()],
            )

        old_status = self.current_status
        self.current_status = to_status
        logger.info(
            "Appointment transition: %s --> %s (appointment=%s)",
            old_status.value,
            to_status.value,
            self.appointment_id,
        )
        return self.current_status

    @property
    def is_terminal(self) -> bool:
        """Check if no further transition is possible."""
        return len(TRANSITIONS.get(self.current_status, frozenset())) == 0
