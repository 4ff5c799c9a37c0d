"""Audit log subscriber: persists every SystemEvent to the audit_log table.

Registered as a global subscriber, so every booking, status change, booking
conflict and availability change lands in the append-only audit trail.

Never raises: failures are logged but never propagate to the event system.
"""

from __future__ import annotations

import logging

from src.db.engine import async_session_factory
from src.models.audit import AuditLog
from src.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the audit_log table.

    Called by the event system for every emitted event. Failures are logged
    and swallowed; a booking has already committed by the time its event
    is delivered.
    """
    try:
        async with async_session_factory() as db:
            db.add(AuditLog(
                event_type=event.event_type.value,
                organization_id=event.organization_id,
                entity_id=event.entity_id,
                actor_id=event.actor_id,
                actor_role=event.actor_role,
                data=event.model_dump(mode="json")["data"],
            ))
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (entity=%s)",
            event.event_type.value,
            event.entity_id,
        )
