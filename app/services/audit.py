"""Audit sinks for append-only activity logging.

Auditing is a secondary effect: ``emit_audit`` never lets a sink failure
reach the booking or dispensing operation that triggered it.
"""

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import NotFoundError
from app.core.logging import audit_logger
from app.models.audit_event import AuditEvent
from app.schemas.audit_event import AuditEntry, AuditEventFilter

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    """Append-only destination for audit entries."""

    async def append(self, entry: AuditEntry) -> None: ...


class LoggingAuditSink:
    """Sink that only writes to the structured audit logger."""

    async def append(self, entry: AuditEntry) -> None:
        audit_logger.log(
            activity_type=entry.activity_type.value,
            actor_id=entry.actor_id,
            target_type=entry.target_type,
            target_id=entry.target_id,
            payload=entry.payload.model_dump(mode="json"),
        )


class DatabaseAuditSink(LoggingAuditSink):
    """Sink that persists entries to audit_events, then logs them.

    Uses its own session so a failed audit write can never roll back or
    expire rows belonging to the caller's transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def append(self, entry: AuditEntry) -> None:
        async with self.session_factory() as session:
            session.add(
                AuditEvent(
                    activity_type=entry.activity_type,
                    actor_id=entry.actor_id,
                    target_type=entry.target_type,
                    target_id=entry.target_id,
                    description=entry.description,
                    payload=entry.payload.model_dump(mode="json"),
                )
            )
            await session.commit()

        await super().append(entry)


async def emit_audit(sink: AuditSink, entry: AuditEntry) -> None:
    """Hand an entry to a sink, logging and swallowing any failure."""
    try:
        await sink.append(entry)
    except Exception:
        logger.exception(
            "Audit write failed for %s on %s:%s",
            entry.activity_type.value,
            entry.target_type,
            entry.target_id,
            extra={"action": entry.activity_type.value, "target_id": entry.target_id},
        )


class AuditService:
    """Read access to persisted audit events.

    Note: This service only provides read operations.
    Audit events are created via an AuditSink.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_events(self, filters: AuditEventFilter) -> list[AuditEvent]:
        """Query audit events with optional filters, newest first.

        Args:
            filters: Filter parameters

        Returns:
            List of matching audit events
        """
        query = select(AuditEvent).order_by(AuditEvent.created_at.desc())

        if filters.actor_id:
            query = query.where(AuditEvent.actor_id == filters.actor_id)
        if filters.target_type:
            query = query.where(AuditEvent.target_type == filters.target_type)
        if filters.target_id:
            query = query.where(AuditEvent.target_id == filters.target_id)
        if filters.activity_type:
            query = query.where(AuditEvent.activity_type == filters.activity_type)

        query = query.offset(filters.offset).limit(filters.limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_event(self, event_id: str) -> AuditEvent:
        """Get a single audit event by ID."""
        event = await self.session.get(AuditEvent, event_id)
        if event is None:
            raise NotFoundError(
                f"Audit event {event_id} not found",
                error_code="AUDIT_EVENT_NOT_FOUND",
                details={"event_id": event_id},
            )
        return event

    async def get_entity_history(
        self,
        target_type: str,
        target_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get audit history for a specific target, newest first."""
        result = await self.session.execute(
            select(AuditEvent)
            .where(AuditEvent.target_type == target_type)
            .where(AuditEvent.target_id == target_id)
            .order_by(AuditEvent.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
