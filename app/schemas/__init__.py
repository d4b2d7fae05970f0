"""Pydantic schemas for request/response validation."""

from app.schemas.audit_event import AuditEntry, AuditEventRead, AuditPayload
from app.schemas.booking import (
    BookingCreate,
    BookingRead,
    BookingStatusUpdate,
    ProgramSessionRead,
)
from app.schemas.dispensation import (
    DispensationCreate,
    DispensationRead,
    EligibilityResult,
)

__all__ = [
    "AuditEntry",
    "AuditEventRead",
    "AuditPayload",
    "BookingCreate",
    "BookingRead",
    "BookingStatusUpdate",
    "ProgramSessionRead",
    "DispensationCreate",
    "DispensationRead",
    "EligibilityResult",
]
