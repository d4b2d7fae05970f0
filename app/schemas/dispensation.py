"""Dispensation and eligibility schemas."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.medication import MedicationFrequency


class EligibilityResult(BaseModel):
    """Outcome of an eligibility check.

    ``next_due_date`` is only set when ineligible: it is the first day
    outside the window that already holds a dispensation.
    """

    eligible: bool
    reason: str | None = None
    next_due_date: date | None = None
    frequency: MedicationFrequency
    window_start: date
    window_end: date = Field(description="Last day of the window (inclusive)")
    last_dispensation_id: str | None = None


class DispensationCreate(BaseModel):
    """Request to administer a dose."""

    patient_id: UUID
    medication_id: UUID
    dispensed_date: datetime | date
    quantity: int = Field(gt=0)
    notes: str | None = None


class DispensationRead(BaseModel):
    """Dispensation ledger row."""

    id: str
    patient_id: str
    medication_id: str
    dispensed_date: date
    quantity: int
    next_due_date: date
    dispensed_by_id: str | None
    notes: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
