"""Medication prescriptions and the append-only dispensation ledger."""

from datetime import date
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, CreatedAtMixin, TimestampMixin, enum_values


class MedicationFrequency(str, Enum):
    """Prescribed dosing frequency; selects the eligibility window."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Medication(Base, TimestampMixin):
    """Medication prescribed to a patient or attached to a program."""

    __tablename__ = "medications"

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    dose: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    frequency: Mapped[MedicationFrequency] = mapped_column(
        SAEnum(
            MedicationFrequency,
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
    )
    instructions: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    # Either patient-specific or program-wide
    patient_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    program_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Medication {self.name} {self.frequency}>"


class Dispensation(Base, CreatedAtMixin):
    """Immutable record of one administered dose.

    No update or delete paths exist for this model.
    """

    __tablename__ = "dispensations"
    __table_args__ = (
        UniqueConstraint(
            "patient_id",
            "medication_id",
            "window_start",
            name="uq_dispensations_patient_medication_window",
        ),
        CheckConstraint("quantity > 0", name="quantity_positive"),
    )

    medication_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("medications.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    patient_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("patients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    dispensed_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
    )
    # First day of the eligibility window the dose was given in
    window_start: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    next_due_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    dispensed_by_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Dispensation {self.medication_id} on {self.dispensed_date}>"
