"""Database models for CareFlow."""

from app.models.audit_event import ActivityType, AuditEvent
from app.models.medication import Dispensation, Medication, MedicationFrequency
from app.models.patient import Patient
from app.models.scheduling import (
    BookingStatus,
    ProgramSession,
    SessionBooking,
    SubjectType,
)

__all__ = [
    # Audit
    "AuditEvent",
    "ActivityType",
    # Patient
    "Patient",
    # Scheduling
    "ProgramSession",
    "SessionBooking",
    "BookingStatus",
    "SubjectType",
    # Medication
    "Medication",
    "MedicationFrequency",
    "Dispensation",
]
