"""Calendar-month arithmetic for settlement periods.

All timestamps in the platform are naive and share one server clock, so a
month is simply ``[first day 00:00, last day 23:59:59.999999]``.
"""
import calendar
from datetime import date, datetime, timedelta
from typing import Optional, Tuple


def month_start(value: datetime | date) -> datetime:
    """First instant of the month containing ``value``."""
    return datetime(value.year, value.month, 1)


def month_bounds(value: datetime | date) -> Tuple[datetime, datetime]:
    """Return ``(first instant, last instant)`` of the month containing ``value``."""
    start = month_start(value)
    end = start.replace(day=days_in_month(start)) + timedelta(days=1) - timedelta(microseconds=1)
    return start, end


def days_in_month(value: datetime | date) -> int:
    return calendar.monthrange(value.year, value.month)[1]


def previous_month(now: datetime) -> datetime:
    """First instant of the month before ``now``."""
    first = month_start(now)
    return month_start(first - timedelta(days=1))


def overlap_days(start: datetime, end: datetime, window_start: datetime, window_end: datetime) -> int:
    """Calendar days of the half-open period ``[start, end)`` inside ``[window_start, window_end]``.

    A day belongs to the period that covers its start, so a plan renewed at
    ``Feb 15 10:00`` counts Feb 15 in the new payment only. A window running
    from the 1st to the 1st of the next month covers the whole month.
    Returns 0 when the ranges do not meet.
    """
    lo = max(start, window_start)
    hi = min(end, window_end + timedelta(microseconds=1))
    if hi <= lo:
        return 0
    return (hi.date() - lo.date()).days


def parse_month_identifier(value: Optional[str], now: datetime) -> datetime:
    """Normalise a month identifier to the first instant of that month.

    Accepts ``YYYY-MM``, ``YYYY-MM-DD`` and ISO timestamps
    (``2025-03-14T10:00:00``). ``None`` or an empty string means the previous
    calendar month relative to ``now``.

    Raises:
        ValueError: the identifier cannot be parsed.
    """
    if not value:
        return previous_month(now)

    value = value.strip()
    if "T" in value or " " in value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return datetime(parsed.year, parsed.month, 1)

    parts = value.split("-")
    if len(parts) not in (2, 3):
        raise ValueError(f"Unrecognised month identifier: {value!r}")
    year, month = int(parts[0]), int(parts[1])
    if len(parts) == 3:
        # Validates the day as well, e.g. rejects 2025-02-30
        date(year, month, int(parts[2]))
    return datetime(year, month, 1)


def month_label(value: datetime) -> str:
    return value.strftime("%Y-%m")


def add_months(value: datetime, months: int) -> datetime:
    """Shift ``value`` by whole calendar months, clamping the day (Jan 31 + 1 -> Feb 28/29)."""
    index = value.month - 1 + months
    year, month = value.year + index // 12, index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)
