"""Session capacity manager.

Owns every write to ``ProgramSession.booked_count`` and every booking status
transition. Each counter-changing operation runs as one unit:

1. take the in-process lock for the session id,
2. re-read the session row (``FOR UPDATE`` where the backend supports it),
3. decide with ``app.booking.policy``,
4. write the counter with a compare-and-set on ``version`` together with the
   booking row, and commit.

If the compare-and-set matches no row (another process won the race), the
transaction is rolled back and the unit retried, up to
``settings.booking_cas_max_attempts`` times.
"""

import logging
from typing import Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.booking.policy import (
    ACTIVE_BOOKING_STATUSES,
    CAPACITY_HOLDING_STATUSES,
    BookingDecision,
    BookingRejection,
    capacity_delta,
    can_transition,
    evaluate_booking_request,
    floored_count,
    holds_capacity,
)
from app.core.config import settings
from app.core.exceptions import BadRequestError, ConflictError, NotFoundError
from app.models.audit_event import ActivityType
from app.models.scheduling import (
    BookingStatus,
    ProgramSession,
    SessionBooking,
    SubjectType,
)
from app.schemas.audit_event import (
    AuditEntry,
    BookingRemovedPayload,
    BookingStatusChangedPayload,
    SessionBookedPayload,
)
from app.services.audit import AuditSink, LoggingAuditSink, emit_audit
from app.services.locks import KeyedLocks, session_locks

logger = logging.getLogger(__name__)


class SessionNotFoundError(NotFoundError):
    """Raised when the program session does not exist."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session {session_id} not found",
            error_code="SESSION_NOT_FOUND",
            details={"session_id": session_id},
        )


class BookingNotFoundError(NotFoundError):
    """Raised when the booking does not exist (or was already removed)."""

    def __init__(self, booking_id: str):
        super().__init__(
            f"Booking {booking_id} not found",
            error_code="BOOKING_NOT_FOUND",
            details={"booking_id": booking_id},
        )


class SessionInactiveError(BadRequestError):
    """Raised when booking into a session that is not active."""


class SessionFullError(ConflictError):
    """Raised when the session has no remaining capacity."""


class DuplicateBookingError(ConflictError):
    """Raised when the subject already holds an active booking."""


class InvalidStatusTransitionError(ConflictError):
    """Raised for any status change outside booked -> attended/missed/cancelled."""


class BookingAlreadyCancelledError(InvalidStatusTransitionError):
    """Raised when cancelling a booking that is already cancelled."""


class CapacityContentionError(ConflictError):
    """Raised when compare-and-set kept losing to concurrent writers."""


_REJECTION_ERRORS = {
    BookingRejection.SESSION_INACTIVE: (SessionInactiveError, "SESSION_INACTIVE"),
    BookingRejection.SESSION_FULL: (SessionFullError, "SESSION_FULL"),
    BookingRejection.DUPLICATE_BOOKING: (DuplicateBookingError, "DUPLICATE_BOOKING"),
}


class SessionCapacityManager:
    """Enforces booking and cancellation invariants over the booking ledger."""

    def __init__(
        self,
        session: AsyncSession,
        audit_sink: AuditSink | None = None,
        locks: KeyedLocks | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self.session = session
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.locks = locks or session_locks
        self.max_attempts = max_attempts or settings.booking_cas_max_attempts

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_session(self, session_id: str) -> ProgramSession:
        """Get a program session with its current counter values."""
        program_session = await self._load_session(session_id)
        if program_session is None:
            raise SessionNotFoundError(session_id)
        return program_session

    async def get_booking(self, booking_id: str) -> SessionBooking:
        """Get a single booking by ID."""
        booking = await self._load_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

    async def list_bookings(
        self,
        session_id: str | None = None,
        subject_id: str | None = None,
        status: BookingStatus | None = None,
    ) -> Sequence[SessionBooking]:
        """List bookings, newest first."""
        query = select(SessionBooking)

        if session_id:
            query = query.where(SessionBooking.session_id == session_id)
        if subject_id:
            query = query.where(SessionBooking.subject_id == subject_id)
        if status:
            query = query.where(SessionBooking.status == status)

        query = query.order_by(SessionBooking.booked_at.desc())

        result = await self.session.execute(query)
        return result.scalars().all()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_booking(
        self,
        session_id: str,
        subject_id: str,
        subject_type: SubjectType = SubjectType.PATIENT,
        notes: str | None = None,
        actor_id: str | None = None,
    ) -> SessionBooking:
        """Book a subject into a session, claiming one unit of capacity.

        Raises:
            SessionNotFoundError: Session does not exist
            SessionInactiveError: Session is not active
            SessionFullError: booked_count has reached capacity
            DuplicateBookingError: Subject already holds an active booking
            CapacityContentionError: Compare-and-set attempts exhausted
        """
        async with self.locks.hold(session_id):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    program_session = await self._load_session(session_id, for_update=True)
                    if program_session is None:
                        raise SessionNotFoundError(session_id)

                    decision = evaluate_booking_request(
                        is_active=program_session.is_active,
                        capacity=program_session.capacity,
                        booked_count=program_session.booked_count,
                        has_active_booking=await self._has_active_booking(
                            session_id, subject_id
                        ),
                    )
                    if not decision.allowed:
                        raise self._rejection_error(decision, program_session)

                    new_count = program_session.booked_count + 1
                    if not await self._write_counter(program_session, new_count):
                        await self.session.rollback()
                        logger.warning(
                            f"Counter compare-and-set lost for session {session_id} "
                            f"(attempt {attempt}/{self.max_attempts})"
                        )
                        continue

                    booking = SessionBooking(
                        session_id=session_id,
                        subject_id=subject_id,
                        subject_type=subject_type,
                        status=BookingStatus.BOOKED,
                        notes=notes,
                    )
                    self.session.add(booking)
                    await self.session.commit()
                except IntegrityError:
                    # Partial unique index on booked rows caught a duplicate
                    await self.session.rollback()
                    raise DuplicateBookingError(
                        "Subject already has an active booking for this session",
                        error_code="DUPLICATE_BOOKING",
                        details={"session_id": session_id, "subject_id": subject_id},
                    )
                except Exception:
                    await self.session.rollback()
                    raise
                break
            else:
                raise CapacityContentionError(
                    "Session is being booked concurrently, please retry",
                    error_code="CAPACITY_CONTENTION",
                    details={"session_id": session_id},
                )

            self._mark_counter_committed(program_session, new_count)
            entry = AuditEntry(
                activity_type=ActivityType.SESSION_BOOKED,
                actor_id=actor_id,
                target_type="session_booking",
                target_id=booking.id,
                description=f"Session booking created for session {session_id}",
                payload=SessionBookedPayload(
                    session_id=session_id,
                    booking_id=booking.id,
                    subject_id=subject_id,
                    booked_count=new_count,
                    capacity=program_session.capacity,
                ),
            )

        logger.info(
            f"Booking {booking.id} created for session {session_id} "
            f"({new_count}/{program_session.capacity})",
            extra={"action": ActivityType.SESSION_BOOKED.value, "actor_id": actor_id},
        )
        # Sink I/O runs after the session lock is released
        await emit_audit(self.audit_sink, entry)

        return booking

    async def update_booking_status(
        self,
        booking_id: str,
        new_status: BookingStatus,
        notes: str | None = None,
        actor_id: str | None = None,
    ) -> SessionBooking:
        """Move a booking out of ``booked``.

        Allowed transitions are booked -> attended, missed or cancelled.
        Cancelling releases one unit of capacity (never below zero).

        Raises:
            BookingNotFoundError: Booking does not exist
            InvalidStatusTransitionError: Any other transition, including
                re-applying the current status
        """
        new_status = BookingStatus(new_status)
        session_id = await self._booking_session_id(booking_id)

        async with self.locks.hold(session_id):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    booking = await self._load_booking(booking_id, for_update=True)
                    if booking is None:
                        raise BookingNotFoundError(booking_id)

                    current_status = BookingStatus(booking.status)
                    if not can_transition(current_status, new_status):
                        raise self._transition_error(booking, new_status)

                    delta = capacity_delta(current_status, new_status)
                    program_session = await self._load_session(session_id, for_update=True)
                    new_count = None
                    if delta and program_session is not None:
                        new_count = floored_count(program_session.booked_count, delta)
                        if not await self._write_counter(program_session, new_count):
                            await self.session.rollback()
                            logger.warning(
                                f"Counter compare-and-set lost for session {session_id} "
                                f"(attempt {attempt}/{self.max_attempts})"
                            )
                            continue

                    values = {"status": new_status}
                    if notes is not None:
                        values["notes"] = notes
                    # Status is itself compared-and-set against what we read
                    result = await self.session.execute(
                        update(SessionBooking)
                        .where(SessionBooking.id == booking_id)
                        .where(SessionBooking.status == current_status)
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        await self.session.rollback()
                        continue

                    await self.session.commit()
                except Exception:
                    await self.session.rollback()
                    raise
                break
            else:
                raise CapacityContentionError(
                    "Booking is being updated concurrently, please retry",
                    error_code="CAPACITY_CONTENTION",
                    details={"booking_id": booking_id},
                )

            if new_count is not None:
                self._mark_counter_committed(program_session, new_count)
            booked_count = program_session.booked_count if program_session is not None else 0

            activity = (
                ActivityType.SESSION_CANCELLED
                if new_status == BookingStatus.CANCELLED
                else ActivityType.BOOKING_STATUS_CHANGED
            )
            entry = AuditEntry(
                activity_type=activity,
                actor_id=actor_id,
                target_type="session_booking",
                target_id=booking_id,
                description=f"Session booking {new_status.value} for session {session_id}",
                payload=BookingStatusChangedPayload(
                    session_id=session_id,
                    booking_id=booking_id,
                    from_status=current_status,
                    to_status=new_status,
                    booked_count=booked_count,
                ),
            )

        logger.info(
            f"Booking {booking_id} {current_status.value} -> {new_status.value} "
            f"(session {session_id} at {booked_count})",
            extra={"action": activity.value, "actor_id": actor_id},
        )
        await emit_audit(self.audit_sink, entry)

        return await self.get_booking(booking_id)

    async def cancel_booking(
        self,
        booking_id: str,
        actor_id: str | None = None,
    ) -> SessionBooking:
        """Cancel a booked booking, releasing its unit of capacity.

        Raises:
            BookingNotFoundError: Booking does not exist
            BookingAlreadyCancelledError: Booking is already cancelled
            InvalidStatusTransitionError: Booking is attended or missed
        """
        return await self.update_booking_status(
            booking_id,
            BookingStatus.CANCELLED,
            actor_id=actor_id,
        )

    async def remove_booking(
        self,
        booking_id: str,
        actor_id: str | None = None,
    ) -> None:
        """Hard-delete a booking (administrative).

        Releases capacity if the booking was still holding a unit. Removing
        the same booking twice fails with BookingNotFoundError.
        """
        session_id = await self._booking_session_id(booking_id)

        async with self.locks.hold(session_id):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    booking = await self._load_booking(booking_id, for_update=True)
                    if booking is None:
                        raise BookingNotFoundError(booking_id)
                    removed_status = BookingStatus(booking.status)

                    program_session = await self._load_session(session_id, for_update=True)
                    new_count = None
                    # missed rows release a unit too, see CAPACITY_HOLDING_STATUSES
                    if holds_capacity(removed_status) and program_session is not None:
                        new_count = floored_count(program_session.booked_count, -1)
                        if not await self._write_counter(program_session, new_count):
                            await self.session.rollback()
                            logger.warning(
                                f"Counter compare-and-set lost for session {session_id} "
                                f"(attempt {attempt}/{self.max_attempts})"
                            )
                            continue

                    result = await self.session.execute(
                        delete(SessionBooking)
                        .where(SessionBooking.id == booking_id)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        await self.session.rollback()
                        raise BookingNotFoundError(booking_id)

                    await self.session.commit()
                except Exception:
                    await self.session.rollback()
                    raise
                break
            else:
                raise CapacityContentionError(
                    "Session is being updated concurrently, please retry",
                    error_code="CAPACITY_CONTENTION",
                    details={"booking_id": booking_id},
                )

            self.session.expunge(booking)
            if new_count is not None:
                self._mark_counter_committed(program_session, new_count)
            booked_count = program_session.booked_count if program_session is not None else 0
            entry = AuditEntry(
                activity_type=ActivityType.BOOKING_REMOVED,
                actor_id=actor_id,
                target_type="session_booking",
                target_id=booking_id,
                description=f"Session booking removed from session {session_id}",
                payload=BookingRemovedPayload(
                    session_id=session_id,
                    booking_id=booking_id,
                    status=removed_status,
                    booked_count=booked_count,
                ),
            )

        logger.info(
            f"Booking {booking_id} removed from session {session_id}",
            extra={"action": ActivityType.BOOKING_REMOVED.value, "actor_id": actor_id},
        )
        await emit_audit(self.audit_sink, entry)

    async def reconcile_booked_count(self, session_id: str) -> ProgramSession:
        """Recompute booked_count from the booking rows.

        Repairs counters that drifted (e.g. rows edited outside this
        manager). Runs under the same critical section as bookings.
        """
        async with self.locks.hold(session_id):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    program_session = await self._load_session(session_id, for_update=True)
                    if program_session is None:
                        raise SessionNotFoundError(session_id)

                    actual = await self._count_capacity_holders(session_id)
                    if actual == program_session.booked_count:
                        await self.session.commit()
                        return program_session

                    if actual > program_session.capacity:
                        logger.error(
                            f"Session {session_id} has {actual} bookings holding capacity "
                            f"but capacity is {program_session.capacity}"
                        )
                    new_count = min(actual, program_session.capacity)

                    if not await self._write_counter(program_session, new_count):
                        await self.session.rollback()
                        continue
                    await self.session.commit()
                except Exception:
                    await self.session.rollback()
                    raise

                logger.warning(
                    f"Reconciled booked_count for session {session_id}: "
                    f"{program_session.booked_count} -> {new_count}"
                )
                self._mark_counter_committed(program_session, new_count)
                return program_session

            raise CapacityContentionError(
                "Session is being updated concurrently, please retry",
                error_code="CAPACITY_CONTENTION",
                details={"session_id": session_id},
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_session(
        self, session_id: str, for_update: bool = False
    ) -> ProgramSession | None:
        query = (
            select(ProgramSession)
            .where(ProgramSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def _load_booking(
        self, booking_id: str, for_update: bool = False
    ) -> SessionBooking | None:
        query = (
            select(SessionBooking)
            .where(SessionBooking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def _booking_session_id(self, booking_id: str) -> str:
        """Resolve which session's critical section a booking belongs to."""
        result = await self.session.execute(
            select(SessionBooking.session_id).where(SessionBooking.id == booking_id)
        )
        session_id = result.scalar_one_or_none()
        if session_id is None:
            raise BookingNotFoundError(booking_id)
        return session_id

    async def _has_active_booking(self, session_id: str, subject_id: str) -> bool:
        result = await self.session.execute(
            select(SessionBooking.id)
            .where(SessionBooking.session_id == session_id)
            .where(SessionBooking.subject_id == subject_id)
            .where(SessionBooking.status.in_(list(ACTIVE_BOOKING_STATUSES)))
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _count_capacity_holders(self, session_id: str) -> int:
        result = await self.session.execute(
            select(func.count(SessionBooking.id))
            .where(SessionBooking.session_id == session_id)
            .where(SessionBooking.status.in_(list(CAPACITY_HOLDING_STATUSES)))
        )
        return result.scalar_one()

    async def _write_counter(self, program_session: ProgramSession, new_count: int) -> bool:
        """Compare-and-set booked_count against the version we read.

        Returns False when another writer got there first.
        """
        stmt = (
            update(ProgramSession)
            .where(ProgramSession.id == program_session.id)
            .where(ProgramSession.version == program_session.version)
            .values(booked_count=new_count, version=program_session.version + 1)
            .execution_options(synchronize_session=False)
        )
        if new_count > program_session.booked_count:
            stmt = stmt.where(ProgramSession.booked_count < ProgramSession.capacity)

        result = await self.session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    def _mark_counter_committed(program_session: ProgramSession, new_count: int) -> None:
        # Keep the loaded instance in step without scheduling another UPDATE
        set_committed_value(program_session, "booked_count", new_count)
        set_committed_value(program_session, "version", program_session.version + 1)

    @staticmethod
    def _rejection_error(decision: BookingDecision, program_session: ProgramSession):
        error_cls, error_code = _REJECTION_ERRORS[decision.rejection]
        return error_cls(
            decision.message,
            error_code=error_code,
            details={
                "session_id": program_session.id,
                "capacity": program_session.capacity,
                "booked_count": program_session.booked_count,
            },
        )

    @staticmethod
    def _transition_error(booking: SessionBooking, new_status: BookingStatus):
        current = BookingStatus(booking.status)
        details = {
            "booking_id": booking.id,
            "current_status": current.value,
            "requested_status": new_status.value,
        }
        if current == BookingStatus.CANCELLED and new_status == BookingStatus.CANCELLED:
            return BookingAlreadyCancelledError(
                "Booking is already cancelled",
                error_code="BOOKING_ALREADY_CANCELLED",
                details=details,
            )
        return InvalidStatusTransitionError(
            f"Cannot change booking from {current.value} to {new_status.value}",
            error_code="INVALID_STATUS_TRANSITION",
            details=details,
        )
