"""Quiet hours evaluation in the user's local timezone.

Windows may wrap midnight (22:00–08:00). A window whose start equals its end
is treated as empty.
"""

from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo


def _parse(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def is_quiet(start: str | None, end: str | None, timezone: str, now: datetime) -> bool:
    if not start or not end or start == end:
        return False
    start_t, end_t = _parse(start), _parse(end)
    local = now.astimezone(ZoneInfo(timezone)).time().replace(tzinfo=None)
    if start_t < end_t:
        return start_t <= local < end_t
    return local >= start_t or local < end_t


def window_end_after(start: str, end: str, timezone: str, now: datetime) -> datetime:
    """Return the UTC instant at which the quiet window containing ``now`` ends."""
    tz = ZoneInfo(timezone)
    local_now = now.astimezone(tz)
    end_t = _parse(end)
    candidate = datetime.combine(local_now.date(), end_t, tzinfo=tz)
    if candidate <= local_now:
        candidate = datetime.combine(local_now.date() + timedelta(days=1), end_t, tzinfo=tz)
    return candidate.astimezone(UTC)


def next_allowed_time(start: str | None, end: str | None, timezone: str, at: datetime) -> datetime:
    """Return ``at`` itself, or the end of the quiet window it falls in."""
    if is_quiet(start, end, timezone, at):
        return window_end_after(start, end, timezone, at)
    return at
