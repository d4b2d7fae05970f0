"""Booking module for session capacity and lifecycle rules."""

from app.booking.policy import BookingDecision, can_transition, evaluate_booking_request

__all__ = [
    "BookingDecision",
    "can_transition",
    "evaluate_booking_request",
]
