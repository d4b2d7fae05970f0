"""Append-only activity log for booking and dispensing actions."""

from enum import Enum

from sqlalchemy import Enum as SAEnum, String, Text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, CreatedAtMixin, enum_values


class ActivityType(str, Enum):
    """Kind of activity recorded in the audit trail."""

    SESSION_BOOKED = "session_booked"
    SESSION_CANCELLED = "session_cancelled"
    BOOKING_STATUS_CHANGED = "booking_status_changed"
    BOOKING_REMOVED = "booking_removed"
    MEDICATION_DISPENSED = "medication_dispensed"


class AuditEvent(Base, CreatedAtMixin):
    """Append-only audit event.

    IMPORTANT: This model intentionally has no update or delete
    operations. All events are immutable once created.
    """

    __tablename__ = "audit_events"

    activity_type: Mapped[ActivityType] = mapped_column(
        SAEnum(ActivityType, native_enum=False, length=50, values_callable=enum_values),
        nullable=False,
        index=True,
    )
    actor_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        nullable=True,  # Null for system actions
    )
    target_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    target_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        nullable=False,
        index=True,
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    payload: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEvent {self.activity_type} by {self.actor_id} "
            f"on {self.target_type}:{self.target_id}>"
        )
