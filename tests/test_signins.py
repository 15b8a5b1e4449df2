"""
Tests for licaudit/signins.py sign-in merging and timestamp parsing.

Covers:
- parse_timestamp for datetimes, ISO text and placeholders
- parse_directory_timestamp for FILETIME and Export-Csv formats, in either day/month order
- merge_activity precedence (cloud over on-prem)
- Recency rounding (cloud one decimal, on-prem whole days)
"""
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from licaudit.models import ActivitySource
from licaudit.signins import (
    days_since,
    is_ambiguous_day_month,
    merge_activity,
    parse_directory_timestamp,
    parse_timestamp,
)

NOW = datetime(2024, 6, 1, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# parse_timestamp Tests
# =============================================================================

class TestParseTimestamp:
    """Tests for parse_timestamp function."""

    def test_aware_datetime(self):
        value = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert parse_timestamp(value) == value

    def test_naive_datetime_treated_as_utc(self):
        result = parse_timestamp(datetime(2024, 1, 1, 12, 0))
        assert result == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert result.tzinfo is not None

    def test_offset_datetime_converted_to_utc(self):
        value = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert parse_timestamp(value) == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)

    def test_iso_string_with_z(self):
        assert parse_timestamp("2024-05-31T08:30:00Z") == datetime(2024, 5, 31, 8, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("placeholder", ["-", "", "N/A", "null", "Never", "  -  "])
    def test_placeholders_are_absent(self, placeholder):
        """Test placeholder strings are treated as no value."""
        assert parse_timestamp(placeholder) is None

    @pytest.mark.parametrize("value", [None, 12345, 3.5, object(), "yesterday"])
    def test_non_timestamps_are_absent(self, value):
        """Test values that are not timestamps are treated as no value."""
        assert parse_timestamp(value) is None


# =============================================================================
# parse_directory_timestamp Tests
# =============================================================================

class TestParseDirectoryTimestamp:
    """Tests for parse_directory_timestamp function."""

    def test_filetime(self):
        """Test lastLogonTimestamp FILETIME conversion."""
        # 2024-01-01T00:00:00Z
        assert parse_directory_timestamp("133485408000000000") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["0", "9223372036854775807", "116444736000000000"])
    def test_filetime_never(self, value):
        """Test zero and max FILETIME mean never logged on."""
        assert parse_directory_timestamp(value) is None

    def test_us_export_format(self):
        result = parse_directory_timestamp("1/15/2024 9:30:00 AM")
        assert result == datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)

    def test_slash_dates_month_first_by_default(self):
        result = parse_directory_timestamp("05/03/2024 10:00:00")
        assert result == datetime(2024, 5, 3, 10, 0, tzinfo=timezone.utc)

    def test_slash_dates_day_first(self):
        """Test a UK-locale export reads 05/03/2024 as 5 March."""
        result = parse_directory_timestamp("05/03/2024 10:00:00", day_first=True)
        assert result == datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)

    def test_day_first_iso_unaffected(self):
        result = parse_directory_timestamp("2024-01-15 09:30:00", day_first=True)
        assert result == datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)

    def test_wrong_order_not_guessed(self):
        """Test a day-first value is not silently swapped when month-first is set."""
        assert parse_directory_timestamp("25/12/2024 10:00:00") is None

    @pytest.mark.parametrize("value,expected", [
        ("05/03/2024 10:00:00", True),
        ("5/3/2024", True),
        ("03/03/2024", False),
        ("25/12/2024 10:00:00", False),
        ("2024-03-05", False),
        ("", False),
        (None, False),
    ])
    def test_is_ambiguous_day_month(self, value, expected):
        assert is_ambiguous_day_month(value) is expected

    def test_iso_format(self):
        result = parse_directory_timestamp("2024-01-15 09:30:00")
        assert result == datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)

    def test_date_only(self):
        assert parse_directory_timestamp("2024-01-15") == datetime(2024, 1, 15, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "-", "garbage"])
    def test_unusable_values(self, value):
        assert parse_directory_timestamp(value) is None

    def test_datetime_passthrough(self):
        value = datetime(2024, 1, 15, tzinfo=timezone.utc)
        assert parse_directory_timestamp(value) == value


# =============================================================================
# merge_activity Tests
# =============================================================================

class TestMergeActivity:
    """Tests for merge_activity function."""

    def test_cloud_wins_when_present(self):
        """Test cloud is used even when on-prem is more recent."""
        cloud = datetime(2024, 1, 1, tzinfo=timezone.utc)
        onprem = datetime(2024, 5, 31, tzinfo=timezone.utc)

        result = merge_activity(cloud, onprem, NOW)

        assert result.source is ActivitySource.CLOUD
        assert result.last_activity == cloud
        assert result.days_since == 152.0

    def test_onprem_fallback(self):
        """Test on-prem is used when there is no cloud sign-in."""
        onprem = datetime(2023, 6, 1, tzinfo=timezone.utc)

        result = merge_activity(None, onprem, NOW)

        assert result.source is ActivitySource.ONPREM
        assert result.last_activity == onprem
        assert result.days_since == 366
        assert isinstance(result.days_since, int)

    def test_dash_cloud_value_equals_missing(self):
        """Test "-" behaves exactly like a missing cloud sign-in."""
        onprem = datetime(2024, 5, 1, tzinfo=timezone.utc)

        assert merge_activity("-", onprem, NOW) == merge_activity(None, onprem, NOW)

    def test_non_timestamp_cloud_value_equals_missing(self):
        """Test a non-timestamp cloud value behaves like a missing one."""
        onprem = datetime(2024, 5, 1, tzinfo=timezone.utc)

        assert merge_activity(42, onprem, NOW) == merge_activity(None, onprem, NOW)

    def test_iso_cloud_value(self):
        """Test ISO text is accepted as a cloud sign-in."""
        result = merge_activity("2024-05-31T00:00:00Z", None, NOW)

        assert result.source is ActivitySource.CLOUD
        assert result.days_since == 1.0

    def test_neither(self):
        """Test no activity at all."""
        result = merge_activity(None, None, NOW)

        assert result.source is ActivitySource.NONE
        assert result.last_activity is None
        assert result.days_since is None

    def test_cloud_rounded_to_one_decimal(self):
        cloud = NOW - timedelta(days=10, hours=3)  # 10.125 days

        result = merge_activity(cloud, None, NOW)

        assert result.days_since == 10.1

    def test_onprem_rounded_to_whole_days(self):
        onprem = NOW - timedelta(days=10, hours=15)  # 10.625 days

        result = merge_activity(None, onprem, NOW)

        assert result.days_since == 11

    def test_naive_now_treated_as_utc(self):
        cloud = datetime(2024, 5, 31, tzinfo=timezone.utc)
        assert days_since(cloud, datetime(2024, 6, 1)) == 1.0
