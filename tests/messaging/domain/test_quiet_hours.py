"""Tests for quiet hours evaluation in the user's timezone."""

from datetime import UTC, datetime

from messaging.policy.quiet_hours import is_quiet, next_allowed_time, window_end_after


def _utc(hour, minute=0, day=2):
    return datetime(2026, 3, day, hour, minute, tzinfo=UTC)


class TestIsQuiet:
    def test_no_window_is_never_quiet(self):
        assert is_quiet(None, None, "UTC", _utc(23)) is False

    def test_empty_window_is_never_quiet(self):
        assert is_quiet("22:00", "22:00", "UTC", _utc(22)) is False

    def test_same_day_window(self):
        assert is_quiet("13:00", "15:00", "UTC", _utc(14)) is True
        assert is_quiet("13:00", "15:00", "UTC", _utc(15)) is False

    def test_window_wrapping_midnight(self):
        assert is_quiet("22:00", "08:00", "UTC", _utc(23, 30)) is True
        assert is_quiet("22:00", "08:00", "UTC", _utc(7, 59)) is True
        assert is_quiet("22:00", "08:00", "UTC", _utc(8)) is False
        assert is_quiet("22:00", "08:00", "UTC", _utc(12)) is False

    def test_window_is_evaluated_in_local_time(self):
        # 21:30 UTC is 22:30 in Madrid (CET, UTC+1)
        assert is_quiet("22:00", "08:00", "Europe/Madrid", _utc(21, 30)) is True
        assert is_quiet("22:00", "08:00", "UTC", _utc(21, 30)) is False


class TestWindowEnd:
    def test_end_later_the_same_night(self):
        assert window_end_after("22:00", "08:00", "UTC", _utc(3)) == _utc(8)

    def test_end_on_the_next_morning(self):
        assert window_end_after("22:00", "08:00", "UTC", _utc(23)) == _utc(8, day=3)

    def test_end_is_returned_in_utc(self):
        # 08:00 in Madrid is 07:00 UTC in March before DST
        end = window_end_after("22:00", "08:00", "Europe/Madrid", _utc(23))
        assert end == _utc(7, day=3)
        assert end.tzinfo == UTC


class TestNextAllowedTime:
    def test_outside_window_returns_input(self):
        assert next_allowed_time("22:00", "08:00", "UTC", _utc(12)) == _utc(12)

    def test_inside_window_returns_end(self):
        assert next_allowed_time("22:00", "08:00", "UTC", _utc(23)) == _utc(8, day=3)

    def test_no_window_returns_input(self):
        assert next_allowed_time(None, None, "UTC", _utc(23)) == _utc(23)
