"""Medication dispensation endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.api.deps import ActorId, EligibilityEngine
from app.schemas.dispensation import (
    DispensationCreate,
    DispensationRead,
    EligibilityResult,
)

router = APIRouter()


@router.get(
    "/dispensations/eligibility",
    response_model=EligibilityResult,
    summary="Check dispensing eligibility",
    description="Advisory check; dispensing re-validates at write time.",
)
async def check_eligibility(
    engine: EligibilityEngine,
    patient_id: UUID = Query(...),
    medication_id: UUID = Query(...),
    proposed_date: str = Query(..., alias="date", description="ISO date or datetime"),
) -> EligibilityResult:
    return await engine.check_eligibility(
        str(patient_id),
        str(medication_id),
        proposed_date,
    )


@router.post(
    "/dispensations",
    response_model=DispensationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Dispense a dose",
)
async def dispense(
    request: DispensationCreate,
    engine: EligibilityEngine,
    actor_id: ActorId,
) -> DispensationRead:
    dispensation = await engine.dispense(
        patient_id=str(request.patient_id),
        medication_id=str(request.medication_id),
        proposed_date=request.dispensed_date,
        quantity=request.quantity,
        notes=request.notes,
        actor_id=actor_id,
    )
    return DispensationRead.model_validate(dispensation)


@router.get(
    "/patients/{patient_id}/dispensations",
    response_model=list[DispensationRead],
)
async def list_patient_dispensations(
    patient_id: UUID,
    engine: EligibilityEngine,
    medication_id: UUID | None = Query(None),
) -> list[DispensationRead]:
    dispensations = await engine.list_dispensations(
        str(patient_id),
        medication_id=str(medication_id) if medication_id else None,
    )
    return [DispensationRead.model_validate(d) for d in dispensations]
