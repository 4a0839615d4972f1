"""Unit tests for time helpers."""

from datetime import datetime, timezone

from freezegun import freeze_time

from update_pilot.utils.time_utils import format_duration, utc_now


class TestTimeUtils:
    """Test duration and timestamp formatting."""

    def test_format_duration_milliseconds(self):
        assert format_duration(0.85) == "850ms"
        assert format_duration(0) == "0ms"

    def test_format_duration_seconds(self):
        assert format_duration(12.4) == "12s"
        assert format_duration(59.9) == "59s"

    def test_format_duration_minutes(self):
        assert format_duration(185) == "3m 5s"
        assert format_duration(600) == "10m 0s"

    def test_format_duration_none(self):
        assert format_duration(None) == ""

    @freeze_time("2025-03-01 12:30:00")
    def test_utc_now_is_timezone_aware(self):
        now = utc_now()
        assert now.tzinfo is not None
        assert now == datetime(2025, 3, 1, 12, 30, tzinfo=timezone.utc)

