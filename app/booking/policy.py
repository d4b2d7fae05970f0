"""Booking lifecycle and capacity rules.

Pure decision logic over loaded rows; nothing here touches the database.
SessionCapacityManager applies these decisions inside its critical section.
"""

from dataclasses import dataclass
from enum import Enum

from app.models.scheduling import BookingStatus


class BookingRejection(str, Enum):
    """Reason a booking request was refused."""

    SESSION_INACTIVE = "session_inactive"
    SESSION_FULL = "session_full"
    DUPLICATE_BOOKING = "duplicate_booking"
    NONE = "none"


@dataclass(frozen=True)
class BookingDecision:
    """Outcome of evaluating a booking request against a session.

    Attributes:
        allowed: Whether a new booking may be written
        rejection: Reason for refusal if not allowed
        message: Human-readable explanation
    """

    allowed: bool
    rejection: BookingRejection
    message: str


# Statuses that block the same subject from booking again
ACTIVE_BOOKING_STATUSES = frozenset({BookingStatus.BOOKED, BookingStatus.ATTENDED})

# Statuses that hold a unit of session capacity. A no-show still consumed
# its slot, so missed keeps the unit it was booked with.
CAPACITY_HOLDING_STATUSES = frozenset(
    {BookingStatus.BOOKED, BookingStatus.ATTENDED, BookingStatus.MISSED}
)

# booked is the only non-terminal status
ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.BOOKED: frozenset(
        {BookingStatus.ATTENDED, BookingStatus.MISSED, BookingStatus.CANCELLED}
    ),
    BookingStatus.ATTENDED: frozenset(),
    BookingStatus.MISSED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


def evaluate_booking_request(
    is_active: bool,
    capacity: int,
    booked_count: int,
    has_active_booking: bool,
) -> BookingDecision:
    """Decide whether a subject may book into a session.

    Checks run in a fixed order so the caller always gets the same reason
    for the same state: inactive, then full, then duplicate.

    Examples:
        >>> evaluate_booking_request(True, 1, 1, False).rejection
        <BookingRejection.SESSION_FULL: 'session_full'>
        >>> evaluate_booking_request(True, 2, 1, False).allowed
        True
    """
    if not is_active:
        return BookingDecision(
            allowed=False,
            rejection=BookingRejection.SESSION_INACTIVE,
            message="Session is not active",
        )

    if booked_count >= capacity:
        return BookingDecision(
            allowed=False,
            rejection=BookingRejection.SESSION_FULL,
            message=f"Session is full ({booked_count}/{capacity})",
        )

    if has_active_booking:
        return BookingDecision(
            allowed=False,
            rejection=BookingRejection.DUPLICATE_BOOKING,
            message="Subject already has an active booking for this session",
        )

    return BookingDecision(
        allowed=True,
        rejection=BookingRejection.NONE,
        message="Booking allowed",
    )


def can_transition(current: BookingStatus, new: BookingStatus) -> bool:
    """Check whether a booking may move from ``current`` to ``new``.

    Re-applying the current status is never a valid transition.
    """
    return BookingStatus(new) in ALLOWED_TRANSITIONS[BookingStatus(current)]


def holds_capacity(status: BookingStatus) -> bool:
    """Whether a booking in this status counts towards booked_count."""
    return BookingStatus(status) in CAPACITY_HOLDING_STATUSES


def capacity_delta(current: BookingStatus, new: BookingStatus) -> int:
    """Change to booked_count implied by a status transition.

    Only leaving the capacity-holding set (i.e. cancelling) frees a unit;
    attended/missed keep the count unchanged.
    """
    if BookingStatus(new) == BookingStatus.CANCELLED and holds_capacity(current):
        return -1
    return 0


def floored_count(booked_count: int, delta: int) -> int:
    """Apply a delta to a counter without ever going below zero."""
    return max(0, booked_count + delta)
