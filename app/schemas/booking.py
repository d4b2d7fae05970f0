"""Session booking schemas."""

from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel

from app.models.scheduling import BookingStatus, SubjectType


class BookingCreate(BaseModel):
    """Request to book a subject into a session."""

    session_id: UUID
    subject_id: UUID
    subject_type: SubjectType = SubjectType.PATIENT
    notes: str | None = None


class BookingStatusUpdate(BaseModel):
    """Request to move a booking to a terminal status."""

    status: BookingStatus
    notes: str | None = None


class BookingRead(BaseModel):
    """Booking as returned to callers."""

    id: str
    session_id: str
    subject_id: str
    subject_type: SubjectType
    status: BookingStatus
    notes: str | None
    booked_at: datetime
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class ProgramSessionRead(BaseModel):
    """Session with its capacity counters."""

    id: str
    program_id: str | None
    title: str | None
    capacity: int
    booked_count: int
    remaining_capacity: int
    scheduled_date: date
    start_time: time
    end_time: time
    is_active: bool

    model_config = {"from_attributes": True}
