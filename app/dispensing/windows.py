"""Eligibility window arithmetic.

A window is the calendar period inside which a medication may be dispensed
at most once: the day for daily, the ISO week (Monday to Sunday) for weekly,
and the calendar month for monthly medications. Windows are half-open
``[start, end)`` ranges of calendar dates.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.exceptions import ConfigurationError, ValidationError
from app.models.medication import MedicationFrequency


@dataclass(frozen=True)
class EligibilityWindow:
    """Half-open calendar window ``[start, end)``."""

    frequency: MedicationFrequency
    start: date
    end: date

    @property
    def last_day(self) -> date:
        return self.end - timedelta(days=1)

    @property
    def next_due_date(self) -> date:
        """First day outside the window."""
        return self.end


# Wording used in ineligibility reasons
_PERIOD_LABELS = {
    MedicationFrequency.DAILY: "today",
    MedicationFrequency.WEEKLY: "this week",
    MedicationFrequency.MONTHLY: "this month",
}


def window_for(frequency: MedicationFrequency, day: date) -> EligibilityWindow:
    """Return the eligibility window containing ``day``.

    Examples:
        >>> window_for(MedicationFrequency.WEEKLY, date(2024, 1, 14)).start
        datetime.date(2024, 1, 8)
        >>> window_for(MedicationFrequency.MONTHLY, date(2024, 12, 31)).end
        datetime.date(2025, 1, 1)
    """
    frequency = MedicationFrequency(frequency)

    if frequency == MedicationFrequency.DAILY:
        return EligibilityWindow(frequency, day, day + timedelta(days=1))

    if frequency == MedicationFrequency.WEEKLY:
        # ISO weeks start on Monday (weekday() == 0)
        start = day - timedelta(days=day.weekday())
        return EligibilityWindow(frequency, start, start + timedelta(days=7))

    start = day.replace(day=1)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return EligibilityWindow(frequency, start, end)


def ineligible_reason(frequency: MedicationFrequency) -> str:
    """Human-readable reason naming the frequency and its period."""
    frequency = MedicationFrequency(frequency)
    return (
        f"{frequency.value.capitalize()} medication already dispensed "
        f"{_PERIOD_LABELS[frequency]}"
    )


def resolve_timezone(name: str | None) -> ZoneInfo | None:
    """Load the configured eligibility timezone, if any."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(
            f"Unknown eligibility timezone '{name}'",
            details={"eligibility_timezone": name},
        ) from exc


def to_calendar_date(value: date | datetime | str, tz: ZoneInfo | None) -> date:
    """Normalize a proposed dispensing date to a calendar day.

    Plain dates are used as given. Aware datetimes are converted into ``tz``
    first, which must be configured: the calendar day of an instant depends
    on where the clinic is. Naive datetimes are taken as already local.

    Raises:
        ValidationError: If a string cannot be parsed
        ConfigurationError: If an aware datetime arrives with no timezone set
    """
    if isinstance(value, str):
        value = _parse(value)

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        if tz is None:
            raise ConfigurationError(
                "eligibility_timezone must be configured to evaluate datetimes",
                error_code="ELIGIBILITY_TIMEZONE_UNSET",
            )
        return value.astimezone(tz).date()

    if isinstance(value, date):
        return value

    raise ValidationError(
        f"Unsupported date value: {value!r}",
        error_code="INVALID_DATE",
    )


def _parse(raw: str) -> date | datetime:
    raw = raw.strip()
    try:
        if len(raw) == 10:
            return date.fromisoformat(raw)
        # fromisoformat does not accept a trailing Z before Python 3.11
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(
            f"Could not parse date: {raw}",
            error_code="INVALID_DATE",
            details={"value": raw},
        ) from exc
