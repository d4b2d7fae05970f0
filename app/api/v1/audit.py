"""Activity log endpoints.

Read-only: audit events are appended by the services through an AuditSink
and are never created, changed or removed through the API.
"""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.api.deps import DbSession
from app.models.audit_event import ActivityType
from app.schemas.audit_event import AuditEventFilter, AuditEventRead
from app.services.audit import AuditService

router = APIRouter()


@router.get(
    "/events",
    response_model=list[AuditEventRead],
    status_code=status.HTTP_200_OK,
    summary="List audit events",
)
async def list_audit_events(
    session: DbSession,
    actor_id: UUID | None = Query(None),
    target_type: str | None = Query(None, max_length=100),
    target_id: UUID | None = Query(None),
    activity_type: ActivityType | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> list[AuditEventRead]:
    """Query the activity log, newest first.

    Args:
        actor_id: Only events performed by this actor
        target_type: Only events on this kind of record
        target_id: Only events on this record
        activity_type: Only events of this kind
        limit: Maximum results (max 500)
        offset: Results to skip
    """
    filters = AuditEventFilter(
        actor_id=str(actor_id) if actor_id else None,
        target_type=target_type,
        target_id=str(target_id) if target_id else None,
        activity_type=activity_type,
        limit=limit,
        offset=offset,
    )
    events = await AuditService(session).get_events(filters)
    return [AuditEventRead.model_validate(e) for e in events]


@router.get(
    "/events/{event_id}",
    response_model=AuditEventRead,
    summary="Get an audit event",
)
async def get_audit_event(event_id: UUID, session: DbSession) -> AuditEventRead:
    event = await AuditService(session).get_event(str(event_id))
    return AuditEventRead.model_validate(event)


@router.get(
    "/events/{target_type}/{target_id}",
    response_model=list[AuditEventRead],
    summary="Get the audit history of one record",
)
async def get_target_history(
    target_type: str,
    target_id: UUID,
    session: DbSession,
    limit: int = Query(100, ge=1, le=500),
) -> list[AuditEventRead]:
    events = await AuditService(session).get_entity_history(
        target_type, str(target_id), limit=limit
    )
    return [AuditEventRead.model_validate(e) for e in events]
