"""
Unit tests for ISO week helpers.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from clanhub.core.errors import InvalidWeekError
from clanhub.services.weeks import (
    ensure_utc,
    get_week_iso,
    parse_week_iso,
    week_bounds,
    weeks_spanning,
)


class TestGetWeekIso:
    def test_midweek(self):
        assert get_week_iso(date(2025, 1, 8)) == "2025-W02"

    def test_december_days_belong_to_next_year(self):
        assert get_week_iso(date(2024, 12, 30)) == "2025-W01"

    def test_january_days_belong_to_previous_year(self):
        assert get_week_iso(date(2021, 1, 3)) == "2020-W53"

    def test_datetime_uses_utc_date(self):
        # Sunday 23:30 UTC is still the old week
        moment = datetime(2025, 1, 5, 23, 30, tzinfo=timezone.utc)
        assert get_week_iso(moment) == "2025-W01"
        shifted = moment.astimezone(timezone(timedelta(hours=3)))
        assert get_week_iso(shifted) == "2025-W01"


class TestWeekBounds:
    def test_monday_to_sunday(self):
        start, end = week_bounds("2025-W02")
        assert start == datetime(2025, 1, 6, tzinfo=timezone.utc)
        assert end == datetime(2025, 1, 12, 23, 59, 59, 999000, tzinfo=timezone.utc)

    def test_week_53(self):
        start, _ = week_bounds("2020-W53")
        assert start == datetime(2020, 12, 28, tzinfo=timezone.utc)

    @pytest.mark.parametrize("week", ["2025-W54", "2025-W00", "2025-1", "", "2025W01", "2021-W53"])
    def test_invalid_weeks(self, week):
        with pytest.raises(InvalidWeekError):
            parse_week_iso(week)

    def test_spanning_two_weeks(self):
        first = datetime(2025, 1, 3, 12, tzinfo=timezone.utc)
        last = datetime(2025, 1, 7, 12, tzinfo=timezone.utc)
        start, end = weeks_spanning(first, last)
        assert start == datetime(2024, 12, 30, tzinfo=timezone.utc)
        assert end.date() == date(2025, 1, 12)


class TestEnsureUtc:
    def test_naive_is_taken_as_utc(self):
        assert ensure_utc(datetime(2025, 1, 1)).tzinfo == timezone.utc

    def test_aware_is_converted(self):
        moment = datetime(2025, 1, 1, 3, tzinfo=timezone(timedelta(hours=3)))
        assert ensure_utc(moment) == datetime(2025, 1, 1, tzinfo=timezone.utc)
