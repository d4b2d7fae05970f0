"""Dispensing module for medication eligibility windows."""

from app.dispensing.windows import EligibilityWindow, to_calendar_date, window_for

__all__ = [
    "EligibilityWindow",
    "to_calendar_date",
    "window_for",
]
