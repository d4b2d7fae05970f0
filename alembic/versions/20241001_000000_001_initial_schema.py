"""Initial schema for program sessions, medications and the audit trail.

Revision ID: 001
Revises:
Create Date: 2024-10-01 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""

    # Patients table
    op.create_table(
        "patients",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_patients"),
    )

    # ========================================================================
    # PROGRAM SESSIONS AND BOOKINGS
    # ========================================================================

    op.create_table(
        "program_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("program_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("booked_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("location", sa.String(200), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_program_sessions"),
        sa.CheckConstraint("capacity > 0", name="ck_program_sessions_capacity_positive"),
        sa.CheckConstraint(
            "booked_count >= 0",
            name="ck_program_sessions_booked_count_non_negative",
        ),
        sa.CheckConstraint(
            "booked_count <= capacity",
            name="ck_program_sessions_booked_count_within_capacity",
        ),
    )
    op.create_index(
        "ix_program_sessions_program_id", "program_sessions", ["program_id"]
    )

    op.create_table(
        "session_bookings",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("session_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("subject_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("subject_type", sa.String(20), nullable=False, server_default="patient"),
        sa.Column("status", sa.String(20), nullable=False, server_default="booked"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("booked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_session_bookings"),
        sa.ForeignKeyConstraint(
            ["session_id"],
            ["program_sessions.id"],
            name="fk_session_bookings_session_id_program_sessions",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_session_bookings_session_id", "session_bookings", ["session_id"]
    )
    op.create_index(
        "ix_session_bookings_subject_id", "session_bookings", ["subject_id"]
    )
    op.create_index(
        "uq_session_bookings_booked_subject",
        "session_bookings",
        ["session_id", "subject_id"],
        unique=True,
        postgresql_where=sa.text("status = 'booked'"),
    )

    # ========================================================================
    # MEDICATIONS AND DISPENSATIONS
    # ========================================================================

    op.create_table(
        "medications",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("dose", sa.String(100), nullable=False),
        sa.Column("frequency", sa.String(20), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("patient_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("program_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_medications"),
        sa.ForeignKeyConstraint(
            ["patient_id"],
            ["patients.id"],
            name="fk_medications_patient_id_patients",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_medications_patient_id", "medications", ["patient_id"])
    op.create_index("ix_medications_program_id", "medications", ["program_id"])

    op.create_table(
        "dispensations",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("medication_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("patient_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("dispensed_date", sa.Date(), nullable=False),
        sa.Column("window_start", sa.Date(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        sa.Column("dispensed_by_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_dispensations"),
        sa.ForeignKeyConstraint(
            ["medication_id"],
            ["medications.id"],
            name="fk_dispensations_medication_id_medications",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["patient_id"],
            ["patients.id"],
            name="fk_dispensations_patient_id_patients",
            ondelete="RESTRICT",
        ),
        sa.UniqueConstraint(
            "patient_id",
            "medication_id",
            "window_start",
            name="uq_dispensations_patient_medication_window",
        ),
        sa.CheckConstraint("quantity > 0", name="ck_dispensations_quantity_positive"),
    )
    op.create_index(
        "ix_dispensations_medication_id", "dispensations", ["medication_id"]
    )
    op.create_index("ix_dispensations_patient_id", "dispensations", ["patient_id"])
    op.create_index(
        "ix_dispensations_dispensed_date", "dispensations", ["dispensed_date"]
    )

    # ========================================================================
    # AUDIT TRAIL
    # ========================================================================

    op.create_table(
        "audit_events",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("activity_type", sa.String(50), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("target_type", sa.String(100), nullable=False),
        sa.Column("target_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_audit_events"),
    )
    op.create_index(
        "ix_audit_events_activity_type", "audit_events", ["activity_type"]
    )
    op.create_index("ix_audit_events_target_id", "audit_events", ["target_id"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("audit_events")
    op.drop_table("dispensations")
    op.drop_table("medications")
    op.drop_index("uq_session_bookings_booked_subject", table_name="session_bookings")
    op.drop_table("session_bookings")
    op.drop_table("program_sessions")
    op.drop_table("patients")
