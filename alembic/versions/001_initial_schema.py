"""Initial schema: schedules, providers, services, availability, appointments, audit.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    # Needed for the (uuid =, tsrange &&) exclusion constraint on appointments
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), index=True, comment="Appointment, window or exception id"),
        sa.Column("actor_id", sa.String(100), comment="Profile ID or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="owner, admin, agent, system"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "schedules",
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("color", sa.String(7), nullable=False, server_default="#2563EB"),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC", comment="IANA timezone name"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── Tables depending on schedules ──────────────────────────────────

    op.create_table(
        "schedule_providers",
        sa.Column(
            "schedule_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("schedules.id"), nullable=False, index=True
        ),
        sa.Column("profile_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(200)),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column(
            "available_services",
            postgresql.ARRAY(postgresql.UUID(as_uuid=True)),
            nullable=False,
            server_default="{}",
        ),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "schedule_services",
        sa.Column(
            "schedule_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("schedules.id"), nullable=False, index=True
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("duration_minutes > 0", name="ck_schedule_services_duration_positive"),
    )

    op.create_table(
        "schedule_availability",
        sa.Column(
            "provider_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("schedule_providers.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("day_of_week", sa.SmallInteger(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_schedule_availability_day"),
        sa.CheckConstraint("start_time < end_time OR end_time = '00:00'", name="ck_schedule_availability_order"),
    )

    op.create_table(
        "schedule_exceptions",
        sa.Column(
            "schedule_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("schedules.id"), nullable=False, index=True
        ),
        sa.Column(
            "provider_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("schedule_providers.id"), index=True
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False, index=True),
        sa.Column("all_day", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("start_time", sa.Time()),
        sa.Column("end_time", sa.Time()),
        sa.Column("recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "all_day OR (start_time IS NOT NULL AND end_time IS NOT NULL"
            " AND (start_time < end_time OR end_time = '00:00'))",
            name="ck_schedule_exceptions_partial_bounds",
        ),
    )

    op.create_table(
        "appointments",
        sa.Column(
            "schedule_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("schedules.id"), nullable=False, index=True
        ),
        sa.Column(
            "provider_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("schedule_providers.id"), nullable=False
        ),
        sa.Column(
            "service_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("schedule_services.id"), nullable=False
        ),
        sa.Column(
            "customer_id",
            postgresql.UUID(as_uuid=True),
            nullable=False,
            index=True,
            comment="Opaque CRM customer reference",
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("status_changed_at", sa.DateTime(timezone=True)),
        sa.Column("has_videoconference", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("chat_id", postgresql.UUID(as_uuid=True), comment="Existing chat conversation"),
        sa.Column("notes", sa.Text()),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("start_time < end_time OR end_time = '00:00'", name="ck_appointments_order"),
    )
    op.create_index("ix_appointments_provider_date_status", "appointments", ["provider_id", "date", "status"])

    # Last line of defence against double-booking: two non-terminal
    # appointments of one provider may never overlap.
    op.execute(
        """
        ALTER TABLE appointments
        ADD CONSTRAINT ex_appointments_no_overlap
        EXCLUDE USING gist (
            provider_id WITH =,
            tsrange(
                date + start_time,
                CASE WHEN end_time = '00:00' THEN date + 1 + end_time ELSE date + end_time END
            ) WITH &&
        )
        WHERE (status IN ('scheduled', 'confirmed'))
        """
    )


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_index("ix_appointments_provider_date_status", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("schedule_exceptions")
    op.drop_table("schedule_availability")
    op.drop_table("schedule_services")
    op.drop_table("schedule_providers")
    op.drop_table("schedules")
    op.drop_table("audit_log")
