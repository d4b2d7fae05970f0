"""Dispensation eligibility engine.

Eligibility checks are advisory reads. ``dispense`` never trusts an earlier
check: it re-evaluates the window inside the critical section for the
(patient, medication) pair and appends only if the window is still empty.
A unique constraint on (patient_id, medication_id, window_start) backs this
up across processes.
"""

import logging
from datetime import date, datetime
from typing import Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.dispensing.windows import (
    EligibilityWindow,
    ineligible_reason,
    resolve_timezone,
    to_calendar_date,
    window_for,
)
from app.models.audit_event import ActivityType
from app.models.medication import Dispensation, Medication
from app.models.patient import Patient
from app.schemas.audit_event import AuditEntry, MedicationDispensedPayload
from app.schemas.dispensation import EligibilityResult
from app.services.audit import AuditSink, LoggingAuditSink, emit_audit
from app.services.locks import KeyedLocks, dispensation_locks

logger = logging.getLogger(__name__)


class PatientNotFoundError(NotFoundError):
    """Raised when the patient does not exist."""

    def __init__(self, patient_id: str):
        super().__init__(
            f"Patient {patient_id} not found",
            error_code="PATIENT_NOT_FOUND",
            details={"patient_id": patient_id},
        )


class MedicationNotFoundError(NotFoundError):
    """Raised when the medication does not exist for this patient."""

    def __init__(self, medication_id: str, patient_id: str):
        super().__init__(
            f"Medication {medication_id} not found for patient {patient_id}",
            error_code="MEDICATION_NOT_FOUND",
            details={"medication_id": medication_id, "patient_id": patient_id},
        )


class InvalidQuantityError(ValidationError):
    """Raised when a dispensed quantity is not a positive integer."""


class DispensationNotEligibleError(ConflictError):
    """Raised when the eligibility window already holds a dispensation."""

    def __init__(self, result: EligibilityResult):
        self.result = result
        super().__init__(
            result.reason or "Not eligible for dispensation",
            error_code="NOT_ELIGIBLE",
            details={
                "reason": result.reason,
                "next_due_date": result.next_due_date.isoformat()
                if result.next_due_date
                else None,
            },
        )


class DispensationEligibilityEngine:
    """Time-window eligibility and guarded writes to the dispensation ledger."""

    def __init__(
        self,
        session: AsyncSession,
        audit_sink: AuditSink | None = None,
        locks: KeyedLocks | None = None,
        tz: ZoneInfo | None = None,
    ) -> None:
        self.session = session
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.locks = locks or dispensation_locks
        self.tz = tz or resolve_timezone(settings.eligibility_timezone)

    async def check_eligibility(
        self,
        patient_id: str,
        medication_id: str,
        proposed_date: date | datetime | str,
    ) -> EligibilityResult:
        """Check whether a dose may be dispensed on ``proposed_date``.

        Advisory only: the answer can be stale by the time a caller acts on
        it. ``dispense`` re-checks under lock.

        Raises:
            PatientNotFoundError: Patient does not exist
            MedicationNotFoundError: Medication missing or prescribed to
                another patient
            ValidationError: proposed_date cannot be parsed
        """
        day = to_calendar_date(proposed_date, self.tz)
        result, _ = await self._assess(patient_id, medication_id, day)
        return result

    async def dispense(
        self,
        patient_id: str,
        medication_id: str,
        proposed_date: date | datetime | str,
        quantity: int,
        notes: str | None = None,
        actor_id: str | None = None,
    ) -> Dispensation:
        """Record one administered dose if the window is still open.

        Raises:
            InvalidQuantityError: quantity is not a positive integer
            PatientNotFoundError: Patient does not exist
            MedicationNotFoundError: Medication missing or not this patient's
            DispensationNotEligibleError: Window already holds a dispensation
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(
                f"Quantity must be a positive integer, got {quantity!r}",
                error_code="INVALID_QUANTITY",
                details={"quantity": quantity},
            )
        day = to_calendar_date(proposed_date, self.tz)

        async with self.locks.hold((patient_id, medication_id)):
            try:
                result, window = await self._assess(patient_id, medication_id, day)
                if not result.eligible:
                    raise DispensationNotEligibleError(result)

                dispensation = Dispensation(
                    patient_id=patient_id,
                    medication_id=medication_id,
                    dispensed_date=day,
                    window_start=window.start,
                    quantity=quantity,
                    next_due_date=window.next_due_date,
                    dispensed_by_id=actor_id,
                    notes=notes,
                )
                self.session.add(dispensation)
                await self.session.commit()
            except IntegrityError:
                # Another process appended into the same window first
                await self.session.rollback()
                raise DispensationNotEligibleError(
                    self._ineligible(window, last_dispensation_id=None)
                )
            except Exception:
                await self.session.rollback()
                raise

            entry = AuditEntry(
                activity_type=ActivityType.MEDICATION_DISPENSED,
                actor_id=actor_id,
                target_type="dispensation",
                target_id=dispensation.id,
                description=f"Medication {medication_id} dispensed to patient {patient_id}",
                payload=MedicationDispensedPayload(
                    patient_id=patient_id,
                    medication_id=medication_id,
                    dispensation_id=dispensation.id,
                    dispensed_date=day,
                    next_due_date=window.next_due_date,
                    quantity=quantity,
                ),
            )

        logger.info(
            f"Dispensed medication {medication_id} to patient {patient_id} "
            f"on {day.isoformat()}, next due {window.next_due_date.isoformat()}",
            extra={"action": ActivityType.MEDICATION_DISPENSED.value, "actor_id": actor_id},
        )
        # Sink I/O runs after the (patient, medication) lock is released
        await emit_audit(self.audit_sink, entry)

        return dispensation

    async def list_dispensations(
        self,
        patient_id: str,
        medication_id: str | None = None,
    ) -> Sequence[Dispensation]:
        """Dispensation history for a patient, newest first."""
        query = select(Dispensation).where(Dispensation.patient_id == patient_id)
        if medication_id:
            query = query.where(Dispensation.medication_id == medication_id)
        query = query.order_by(
            Dispensation.dispensed_date.desc(),
            Dispensation.created_at.desc(),
        )

        result = await self.session.execute(query)
        return result.scalars().all()

    async def _assess(
        self,
        patient_id: str,
        medication_id: str,
        day: date,
    ) -> tuple[EligibilityResult, EligibilityWindow]:
        medication = await self._load_medication(patient_id, medication_id)
        window = window_for(medication.frequency, day)

        result = await self.session.execute(
            select(Dispensation)
            .where(Dispensation.patient_id == patient_id)
            .where(Dispensation.medication_id == medication_id)
            .where(Dispensation.dispensed_date >= window.start)
            .where(Dispensation.dispensed_date < window.end)
            .order_by(Dispensation.dispensed_date.desc(), Dispensation.created_at.desc())
            .limit(1)
        )
        last = result.scalar_one_or_none()

        if last is not None:
            return self._ineligible(window, last_dispensation_id=last.id), window

        return (
            EligibilityResult(
                eligible=True,
                frequency=window.frequency,
                window_start=window.start,
                window_end=window.last_day,
            ),
            window,
        )

    async def _load_medication(self, patient_id: str, medication_id: str) -> Medication:
        patient = await self.session.get(Patient, patient_id)
        if patient is None:
            raise PatientNotFoundError(patient_id)

        medication = await self.session.get(Medication, medication_id)
        # Program-wide medications have no patient_id
        if medication is None or (
            medication.patient_id is not None and medication.patient_id != patient_id
        ):
            raise MedicationNotFoundError(medication_id, patient_id)
        return medication

    @staticmethod
    def _ineligible(
        window: EligibilityWindow, last_dispensation_id: str | None
    ) -> EligibilityResult:
        return EligibilityResult(
            eligible=False,
            reason=ineligible_reason(window.frequency),
            next_due_date=window.next_due_date,
            frequency=window.frequency,
            window_start=window.start,
            window_end=window.last_day,
            last_dispensation_id=last_dispensation_id,
        )
