"""Scheduling models for program sessions and session bookings.

The capacity counter on ProgramSession is only ever written by
SessionCapacityManager, always together with a version bump.
"""

from datetime import date, datetime, time
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin, enum_values, utc_now


class BookingStatus(str, Enum):
    """Attendance lifecycle of a booking."""

    BOOKED = "booked"
    ATTENDED = "attended"
    CANCELLED = "cancelled"
    MISSED = "missed"


class SubjectType(str, Enum):
    """Who holds the booking."""

    USER = "user"
    PATIENT = "patient"


class ProgramSession(Base, TimestampMixin):
    """Scheduled, capacity-bounded instance of a program activity."""

    __tablename__ = "program_sessions"
    __table_args__ = (
        CheckConstraint("capacity > 0", name="capacity_positive"),
        CheckConstraint("booked_count >= 0", name="booked_count_non_negative"),
        CheckConstraint("booked_count <= capacity", name="booked_count_within_capacity"),
    )

    program_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        nullable=True,
        index=True,
    )
    title: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )
    capacity: Mapped[int] = mapped_column(
        Integer,
        default=10,
        nullable=False,
    )
    booked_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    scheduled_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    start_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
    )
    end_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
    )
    location: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    # Bumped on every counter write; compare-and-set target
    version: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    bookings: Mapped[list["SessionBooking"]] = relationship(
        "SessionBooking",
        back_populates="session",
    )

    @property
    def remaining_capacity(self) -> int:
        return max(0, self.capacity - self.booked_count)

    def __repr__(self) -> str:
        return f"<ProgramSession {self.scheduled_date} {self.booked_count}/{self.capacity}>"


class SessionBooking(Base):
    """A subject's claim on one unit of a session's capacity."""

    __tablename__ = "session_bookings"
    __table_args__ = (
        # At most one live booking per subject per session
        Index(
            "uq_session_bookings_booked_subject",
            "session_id",
            "subject_id",
            unique=True,
            sqlite_where=text("status = 'booked'"),
            postgresql_where=text("status = 'booked'"),
        ),
    )

    session_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("program_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subject_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        nullable=False,
        index=True,
    )
    subject_type: Mapped[SubjectType] = mapped_column(
        SAEnum(SubjectType, native_enum=False, length=20, values_callable=enum_values),
        default=SubjectType.PATIENT,
        nullable=False,
    )
    status: Mapped[BookingStatus] = mapped_column(
        SAEnum(BookingStatus, native_enum=False, length=20, values_callable=enum_values),
        default=BookingStatus.BOOKED,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    booked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        default=None,
        onupdate=utc_now,
        nullable=True,
    )

    session: Mapped["ProgramSession"] = relationship(
        "ProgramSession",
        back_populates="bookings",
    )

    def __repr__(self) -> str:
        return f"<SessionBooking {self.subject_id} {self.status}>"
