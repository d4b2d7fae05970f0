"""Session booking endpoints.

Thin wrappers over SessionCapacityManager; domain errors are translated to
HTTP responses by the application-level DomainError handler.
"""

from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from app.api.deps import ActorId, CapacityManager
from app.models.scheduling import BookingStatus
from app.schemas.booking import (
    BookingCreate,
    BookingRead,
    BookingStatusUpdate,
    ProgramSessionRead,
)

router = APIRouter()


@router.post(
    "/bookings",
    response_model=BookingRead,
    status_code=status.HTTP_201_CREATED,
    summary="Book a subject into a session",
)
async def create_booking(
    request: BookingCreate,
    manager: CapacityManager,
    actor_id: ActorId,
) -> BookingRead:
    booking = await manager.create_booking(
        session_id=str(request.session_id),
        subject_id=str(request.subject_id),
        subject_type=request.subject_type,
        notes=request.notes,
        actor_id=actor_id,
    )
    return BookingRead.model_validate(booking)


@router.get(
    "/bookings",
    response_model=list[BookingRead],
)
async def list_bookings(
    manager: CapacityManager,
    session_id: UUID | None = Query(None),
    subject_id: UUID | None = Query(None),
    booking_status: BookingStatus | None = Query(None, alias="status"),
) -> list[BookingRead]:
    bookings = await manager.list_bookings(
        session_id=str(session_id) if session_id else None,
        subject_id=str(subject_id) if subject_id else None,
        status=booking_status,
    )
    return [BookingRead.model_validate(b) for b in bookings]


@router.get(
    "/bookings/{booking_id}",
    response_model=BookingRead,
)
async def get_booking(
    booking_id: UUID,
    manager: CapacityManager,
) -> BookingRead:
    booking = await manager.get_booking(str(booking_id))
    return BookingRead.model_validate(booking)


@router.patch(
    "/bookings/{booking_id}",
    response_model=BookingRead,
    summary="Record attendance, no-show or cancellation",
)
async def update_booking_status(
    booking_id: UUID,
    request: BookingStatusUpdate,
    manager: CapacityManager,
    actor_id: ActorId,
) -> BookingRead:
    booking = await manager.update_booking_status(
        str(booking_id),
        request.status,
        notes=request.notes,
        actor_id=actor_id,
    )
    return BookingRead.model_validate(booking)


@router.post(
    "/bookings/{booking_id}/cancel",
    response_model=BookingRead,
)
async def cancel_booking(
    booking_id: UUID,
    manager: CapacityManager,
    actor_id: ActorId,
) -> BookingRead:
    booking = await manager.cancel_booking(str(booking_id), actor_id=actor_id)
    return BookingRead.model_validate(booking)


@router.delete(
    "/bookings/{booking_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a booking (administrative)",
)
async def remove_booking(
    booking_id: UUID,
    manager: CapacityManager,
    actor_id: ActorId,
) -> Response:
    await manager.remove_booking(str(booking_id), actor_id=actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/sessions/{session_id}",
    response_model=ProgramSessionRead,
)
async def get_session(
    session_id: UUID,
    manager: CapacityManager,
) -> ProgramSessionRead:
    program_session = await manager.get_session(str(session_id))
    return ProgramSessionRead.model_validate(program_session)


@router.post(
    "/sessions/{session_id}/reconcile",
    response_model=ProgramSessionRead,
    summary="Recompute booked_count from bookings",
)
async def reconcile_session(
    session_id: UUID,
    manager: CapacityManager,
) -> ProgramSessionRead:
    program_session = await manager.reconcile_booked_count(str(session_id))
    return ProgramSessionRead.model_validate(program_session)
