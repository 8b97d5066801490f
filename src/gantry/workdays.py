"""Business-day calendar arithmetic (Monday-Friday working week)."""

from __future__ import annotations

from datetime import date, datetime, timedelta

from gantry.errors import ScheduleValidationError

# Formats seen in project documents, most specific first.
_DATE_FORMATS = ("%Y-%m-%d %H:%M", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d", "%d-%m-%Y %H:%M", "%d-%m-%Y")

ONE_DAY = timedelta(days=1)


def parse_date(value: date | datetime | str) -> datetime:
    """Return *value* as a datetime at midnight.

    Accepts date/datetime objects, ISO strings and the ``"YYYY-MM-DD HH:MM"``
    form used by the Gantt documents. Raises ScheduleValidationError otherwise.
    """
    if isinstance(value, datetime):
        return value.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        raise ScheduleValidationError(f"Invalid date: {value!r}")

    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return parse_date(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        raise ScheduleValidationError(f"Invalid date: {value!r}") from None


def format_date(value: datetime) -> str:
    """Render a date in the document's ``"YYYY-MM-DD HH:MM"`` form."""
    return value.strftime("%Y-%m-%d %H:%M")


def is_business_day(day: date | datetime) -> bool:
    return day.weekday() < 5


def _require_duration(days: int) -> int:
    if isinstance(days, bool) or not isinstance(days, int):
        raise ScheduleValidationError(f"Duration must be a whole number of days, got {days!r}")
    if days < 0:
        raise ScheduleValidationError(f"Duration cannot be negative: {days}")
    return days


def add_business_days(start: date | datetime | str, days: int) -> datetime:
    """Step forward one calendar day at a time until *days* working days
    have been covered.

    The working days counted are exactly those in ``[start, result)``, so the
    result is the exclusive end of a span of *days* working days.
    """
    current = parse_date(start)
    remaining = _require_duration(days)
    while remaining > 0:
        if is_business_day(current):
            remaining -= 1
        current += ONE_DAY
    return current


def count_business_days(start: date | datetime | str, end: date | datetime | str) -> int:
    """Count Monday-Friday days in the half-open range ``[start, end)``."""
    current = parse_date(start)
    stop = parse_date(end)
    if stop <= current:
        return 0

    # Whole weeks contribute five days each; walk only the remainder.
    total_days = (stop - current).days
    weeks, rest = divmod(total_days, 7)
    count = weeks * 5
    current += timedelta(days=weeks * 7)
    for _ in range(rest):
        if is_business_day(current):
            count += 1
        current += ONE_DAY
    return count


def calculate_end_date(start: date | datetime | str, duration: int) -> datetime:
    """Exclusive end: the calendar day after the last working day."""
    return add_business_days(start, duration)


def last_working_day(start: date | datetime | str, duration: int) -> datetime:
    """Inclusive end: one calendar day before :func:`calculate_end_date`."""
    return calculate_end_date(start, duration) - ONE_DAY


def adjust_to_workday(day: date | datetime | str) -> datetime:
    """Move a Saturday or Sunday forward to the following Monday."""
    current = parse_date(day)
    while not is_business_day(current):
        current += ONE_DAY
    return current


def week_start(day: date | datetime | str) -> datetime:
    """Monday on or before *day*."""
    current = parse_date(day)
    return current - timedelta(days=current.weekday())
