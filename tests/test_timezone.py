"""
Tests for timezone utility module.

Tests the timezone handling functions including:
- utc_now() for getting current UTC time
- normalize_datetime() for stripping timezone info
- seconds_between() for mixed naive/aware arithmetic
- parse_iso_datetime() for query parameters
"""

from datetime import datetime, timedelta, timezone

import pytest
from utils.timezone import normalize_datetime, parse_iso_datetime, seconds_between, utc_now


class TestUtcNow:
    """Tests for utc_now function."""

    def test_returns_naive_datetime(self):
        """utc_now should return datetime without timezone info."""
        assert utc_now().tzinfo is None

    def test_returns_utc_time(self):
        """utc_now should return time close to current UTC."""
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        result = utc_now()
        after = datetime.now(timezone.utc).replace(tzinfo=None)

        assert before <= result <= after


class TestNormalizeDatetime:
    """Tests for normalize_datetime function."""

    def test_none_input_returns_none(self):
        """None input should return None."""
        assert normalize_datetime(None) is None

    def test_naive_datetime_unchanged(self):
        """Naive datetime should be returned unchanged."""
        dt = datetime(2024, 6, 15, 12, 30, 0)
        assert normalize_datetime(dt) == dt

    def test_utc_aware_datetime_strips_tzinfo(self):
        """UTC-aware datetime should have tzinfo stripped."""
        dt = datetime(2024, 6, 15, 12, 30, 0, tzinfo=timezone.utc)
        result = normalize_datetime(dt)

        assert result == datetime(2024, 6, 15, 12, 30, 0)
        assert result.tzinfo is None

    def test_other_timezone_converted_to_utc(self):
        """Non-UTC datetimes are converted before stripping."""
        eastern = timezone(timedelta(hours=-5))
        dt = datetime(2024, 6, 15, 7, 30, 0, tzinfo=eastern)

        assert normalize_datetime(dt) == datetime(2024, 6, 15, 12, 30, 0)


class TestSecondsBetween:
    """Tests for seconds_between function."""

    def test_mixed_naive_and_aware(self):
        """Naive and aware datetimes can be compared."""
        earlier = datetime(2024, 1, 1, 12, 0, 0)
        later = datetime(2024, 1, 1, 13, 0, 0, tzinfo=timezone.utc)

        assert seconds_between(earlier, later) == 3600.0

    def test_negative_when_reversed(self):
        """Going back in time gives a negative duration."""
        assert seconds_between(datetime(2024, 1, 1, 13), datetime(2024, 1, 1, 12)) == -3600.0

    def test_missing_value(self):
        """None on either side gives None."""
        assert seconds_between(None, datetime(2024, 1, 1)) is None


class TestParseIsoDatetime:
    """Tests for parse_iso_datetime function."""

    def test_date_only(self):
        """Plain dates parse to midnight."""
        assert parse_iso_datetime('2026-01-15') == datetime(2026, 1, 15)

    def test_trailing_z(self):
        """A trailing Z is UTC."""
        assert parse_iso_datetime('2026-01-15T08:30:00Z') == datetime(2026, 1, 15, 8, 30)

    def test_offset_converted(self):
        """Offsets are converted to naive UTC."""
        assert parse_iso_datetime('2026-01-15T08:30:00+02:00') == datetime(2026, 1, 15, 6, 30)

    def test_empty(self):
        """Empty input gives None."""
        assert parse_iso_datetime('') is None
        assert parse_iso_datetime(None) is None

    def test_malformed(self):
        """Garbage raises ValueError."""
        with pytest.raises(ValueError):
            parse_iso_datetime('yesterday')
