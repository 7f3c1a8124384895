"""Counters store — per-user, per-channel send counters and channel performance.

The only hot, contended state in the system. Writers increment atomically
under a lock keyed by (user, channel, minute bucket); policy decisions read a
snapshot and accept that a limit may be exceeded by at most one in-flight
message under concurrent load.

Rolling windows are evaluated over minute buckets: a bucket counts against a
window as long as any part of it overlaps the window, so counts are never
under-reported.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta

BUCKET = timedelta(minutes=1)
SEND_RETENTION = timedelta(days=7)
PERFORMANCE_RETENTION = timedelta(days=30)

ENGAGEMENT_KINDS = ("sent", "delivered", "read", "clicked", "failed")


def _bucket(at: datetime) -> datetime:
    return at.replace(second=0, microsecond=0)


@dataclass
class ChannelPerformance:
    sent: int = 0
    delivered: int = 0
    read: int = 0
    clicked: int = 0
    failed: int = 0

    @property
    def engagement_score(self) -> float:
        """Score in [0, 100]; 50 when the channel has no history."""
        attempts = self.sent + self.failed
        if attempts == 0:
            return 50.0
        sent = max(self.sent, 1)
        engagement = min(1.0, (0.3 * self.delivered + 0.3 * self.read + 0.4 * self.clicked) / sent)
        failure_rate = self.failed / attempts
        return max(0.0, min(100.0, 50.0 + 50.0 * engagement - 50.0 * failure_rate))


class CounterStore:
    """In-process counter store with atomic increments."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sends: dict[tuple[str, str], dict[datetime, int]] = defaultdict(dict)
        self._performance: dict[tuple[str, str], dict[datetime, ChannelPerformance]] = defaultdict(dict)

    # -------------------------------------------------------------------
    # Frequency counters
    # -------------------------------------------------------------------
    def increment_sent(self, user_id, channel: str, at: datetime):
        key = (str(user_id), channel)
        bucket = _bucket(at)
        with self._lock:
            buckets = self._sends[key]
            buckets[bucket] = buckets.get(bucket, 0) + 1
            self._prune(buckets, at - SEND_RETENTION - BUCKET)

    def sent_in_window(self, user_id, channel: str, now: datetime, window: timedelta) -> int:
        start = now - window
        with self._lock:
            buckets = dict(self._sends.get((str(user_id), channel), {}))
        return sum(count for bucket, count in buckets.items() if bucket + BUCKET > start and bucket <= now)

    def window_release(self, user_id, channel: str, now: datetime, window: timedelta, limit: int) -> datetime:
        """Earliest time the rolling ``window`` count drops below ``limit``."""
        start = now - window
        with self._lock:
            buckets = dict(self._sends.get((str(user_id), channel), {}))
        in_window = sorted((b, c) for b, c in buckets.items() if b + BUCKET > start and b <= now)
        remaining = sum(count for _, count in in_window)
        if remaining < limit:
            return now
        for bucket, count in in_window:
            remaining -= count
            if remaining < limit:
                return bucket + BUCKET + window
        return now + window

    # -------------------------------------------------------------------
    # Channel performance
    # -------------------------------------------------------------------
    def record_engagement(self, user_id, channel: str, kind: str, at: datetime):
        if kind not in ENGAGEMENT_KINDS:
            raise ValueError(f"Unknown engagement kind: {kind}")
        day = at.replace(hour=0, minute=0, second=0, microsecond=0)
        with self._lock:
            days = self._performance[(str(user_id), channel)]
            performance = days.setdefault(day, ChannelPerformance())
            setattr(performance, kind, getattr(performance, kind) + 1)
            self._prune(days, at - PERFORMANCE_RETENTION)

    def performance(self, user_id, channel: str, now: datetime) -> ChannelPerformance:
        """Aggregate performance over the retention window."""
        start = now - PERFORMANCE_RETENTION
        total = ChannelPerformance()
        with self._lock:
            days = dict(self._performance.get((str(user_id), channel), {}))
        for day, performance in days.items():
            if day >= start - timedelta(days=1):
                for kind in ENGAGEMENT_KINDS:
                    setattr(total, kind, getattr(total, kind) + getattr(performance, kind))
        return total

    def engagement_score(self, user_id, channel: str, now: datetime) -> float:
        return self.performance(user_id, channel, now).engagement_score

    def reset(self):
        with self._lock:
            self._sends.clear()
            self._performance.clear()

    @staticmethod
    def _prune(buckets: dict, before: datetime):
        for stale in [bucket for bucket in buckets if bucket < before]:
            del buckets[stale]
