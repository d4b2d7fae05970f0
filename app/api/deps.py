"""FastAPI dependency injection utilities."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.session import AsyncSessionLocal, get_db
from app.services.audit import AuditSink, DatabaseAuditSink, LoggingAuditSink
from app.services.dispensation import DispensationEligibilityEngine
from app.services.session_booking import SessionCapacityManager


def get_audit_sink() -> AuditSink:
    """Audit sink for the current request."""
    if settings.audit_to_database:
        return DatabaseAuditSink(AsyncSessionLocal)
    return LoggingAuditSink()


async def get_actor_id(
    x_actor_id: Annotated[UUID | None, Header()] = None,
) -> str | None:
    """Acting user for audit entries.

    Authentication happens upstream; the gateway forwards the caller's id.
    """
    return str(x_actor_id) if x_actor_id else None


DbSession = Annotated[AsyncSession, Depends(get_db)]
AuditSinkDep = Annotated[AuditSink, Depends(get_audit_sink)]
ActorId = Annotated[str | None, Depends(get_actor_id)]


def get_capacity_manager(
    session: DbSession,
    audit_sink: AuditSinkDep,
) -> SessionCapacityManager:
    return SessionCapacityManager(session, audit_sink=audit_sink)


def get_dispensation_engine(
    session: DbSession,
    audit_sink: AuditSinkDep,
) -> DispensationEligibilityEngine:
    return DispensationEligibilityEngine(session, audit_sink=audit_sink)


CapacityManager = Annotated[SessionCapacityManager, Depends(get_capacity_manager)]
EligibilityEngine = Annotated[DispensationEligibilityEngine, Depends(get_dispensation_engine)]
