"""Tests for calendar-month helpers and month identifier parsing."""
from datetime import datetime

import pytest

from app.services.periods import (
    add_months, days_in_month, month_bounds, overlap_days, parse_month_identifier, previous_month,
)

NOW = datetime(2025, 4, 15, 12, 0, 0)


def test_month_bounds_cover_whole_month():
    start, end = month_bounds(datetime(2024, 2, 10, 8, 30))

    assert start == datetime(2024, 2, 1)
    assert end == datetime(2024, 2, 29, 23, 59, 59, 999999)
    assert days_in_month(start) == 29


def test_previous_month_crosses_year():
    assert previous_month(datetime(2025, 1, 3)) == datetime(2024, 12, 1)


def test_overlap_counts_days_from_start_up_to_end():
    start, end = month_bounds(datetime(2025, 3, 1))

    assert overlap_days(datetime(2025, 2, 1), datetime(2025, 5, 1), start, end) == 31
    assert overlap_days(datetime(2025, 3, 1), datetime(2025, 3, 16), start, end) == 15
    assert overlap_days(datetime(2025, 4, 2), datetime(2025, 5, 1), start, end) == 0


def test_overlap_midnight_end_is_exclusive():
    start, end = month_bounds(datetime(2025, 4, 1))

    # Paid through the end of March; nothing leaks into April
    assert overlap_days(datetime(2025, 3, 1), datetime(2025, 4, 1), start, end) == 0


@pytest.mark.parametrize("identifier,expected", [
    ("2025-03", datetime(2025, 3, 1)),
    ("2025-03-31", datetime(2025, 3, 1)),
    ("2025-03-14T10:00:00", datetime(2025, 3, 1)),
    ("2025-03-14T10:00:00Z", datetime(2025, 3, 1)),
    (None, datetime(2025, 3, 1)),
    ("", datetime(2025, 3, 1)),
])
def test_parse_month_identifier(identifier, expected):
    assert parse_month_identifier(identifier, NOW) == expected


@pytest.mark.parametrize("identifier", ["March", "2025-13", "2025-02-30", "2025/03"])
def test_parse_month_identifier_rejects_garbage(identifier):
    with pytest.raises(ValueError):
        parse_month_identifier(identifier, NOW)


def test_add_months_clamps_day():
    assert add_months(datetime(2025, 1, 31, 9, 0), 1) == datetime(2025, 2, 28, 9, 0)
    assert add_months(datetime(2024, 11, 30), 3) == datetime(2025, 2, 28)
    assert add_months(datetime(2024, 2, 29), 12) == datetime(2025, 2, 28)


def test_overlap_splits_day_at_renewal_time():
    start, end = month_bounds(datetime(2025, 2, 1))
    renewed = datetime(2025, 2, 15, 10, 0)

    before = overlap_days(datetime(2025, 1, 15, 10, 0), renewed, start, end)
    after = overlap_days(renewed, datetime(2025, 3, 15, 10, 0), start, end)

    assert (before, after) == (14, 14)
    assert before + after == 28
