"""Audit entry schemas.

Each activity kind carries its own payload shape; the ``kind`` field is the
discriminator so payloads round-trip through the JSON column unambiguously.
"""

from datetime import date, datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from app.models.audit_event import ActivityType
from app.models.scheduling import BookingStatus


class SessionBookedPayload(BaseModel):
    kind: Literal["session_booked"] = "session_booked"
    session_id: str
    booking_id: str
    subject_id: str
    booked_count: int
    capacity: int


class BookingStatusChangedPayload(BaseModel):
    kind: Literal["booking_status_changed"] = "booking_status_changed"
    session_id: str
    booking_id: str
    from_status: BookingStatus
    to_status: BookingStatus
    booked_count: int


class BookingRemovedPayload(BaseModel):
    kind: Literal["booking_removed"] = "booking_removed"
    session_id: str
    booking_id: str
    status: BookingStatus
    booked_count: int


class MedicationDispensedPayload(BaseModel):
    kind: Literal["medication_dispensed"] = "medication_dispensed"
    patient_id: str
    medication_id: str
    dispensation_id: str
    dispensed_date: date
    next_due_date: date
    quantity: int


AuditPayload = Annotated[
    Union[
        SessionBookedPayload,
        BookingStatusChangedPayload,
        BookingRemovedPayload,
        MedicationDispensedPayload,
    ],
    Field(discriminator="kind"),
]


class AuditEntry(BaseModel):
    """Entry handed to an audit sink (internal use)."""

    activity_type: ActivityType
    actor_id: str | None = None
    target_type: str = Field(max_length=100)
    target_id: str
    description: str
    payload: AuditPayload


class AuditEventRead(BaseModel):
    """Schema for reading a persisted audit event."""

    id: str
    activity_type: ActivityType
    actor_id: str | None
    target_type: str
    target_id: str
    description: str
    payload: AuditPayload | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditEventFilter(BaseModel):
    """Filter parameters for querying the activity log."""

    actor_id: str | None = None
    target_type: str | None = None
    target_id: str | None = None
    activity_type: ActivityType | None = None
    limit: int = Field(default=100, ge=1, le=500)
    offset: int = Field(default=0, ge=0)
