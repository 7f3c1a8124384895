"""Channel policy resolver — picks the channel a message goes out on.

``resolve_channel`` is a pure function over a ``PolicySnapshot``: it reads
consent, quiet hours, frequency counters and engagement scores captured at
one instant and never mutates anything. The caller records the decision.

Candidate order:
    1. The requested channel, when the template supports it and the user
       consented to it.
    2. The template's channels intersected with the user's preferred
       channels (all template channels when the user has no preference),
       ranked by engagement score, highest first.

A candidate is skipped when consent for the template's purpose is missing,
when quiet hours are active and the message may not bypass them, or when a
daily/weekly frequency limit is already reached. Frequency limits are never
bypassed.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from messaging.errors import ChannelUnavailable, ErrorCode
from messaging.message.message import Priority
from messaging.policy.quiet_hours import is_quiet, window_end_after
from messaging.settings import FrequencyLimit

DAY = timedelta(days=1)
WEEK = timedelta(days=7)


@dataclass(frozen=True)
class ChannelUsage:
    """Rolling send counts of one channel and when each limit frees up."""

    daily: int = 0
    weekly: int = 0
    daily_release: datetime | None = None
    weekly_release: datetime | None = None


@dataclass(frozen=True)
class PolicySnapshot:
    user_id: str
    timezone: str = "UTC"
    opted_out: bool = False
    consents: dict[str, frozenset] = field(default_factory=dict)  # enabled channels → purposes
    preferred_channels: tuple[str, ...] = ()
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    critical_bypass: bool = True
    limits: dict[str, FrequencyLimit] = field(default_factory=dict)
    usage: dict[str, ChannelUsage] = field(default_factory=dict)
    scores: dict[str, float] = field(default_factory=dict)

    def has_consent(self, channel: str, purpose: str | None) -> bool:
        purposes = self.consents.get(channel)
        if purposes is None:
            return False
        return purpose is None or purpose in purposes


@dataclass(frozen=True)
class ChannelDecision:
    channel: str
    fallbacks: tuple[str, ...] = ()


@dataclass(frozen=True)
class ChannelCheck:
    """Why a channel cannot be used right now (``code`` is None when it can)."""

    code: ErrorCode | None = None
    retry_at: datetime | None = None

    @property
    def eligible(self) -> bool:
        return self.code is None

    @property
    def time_blocked(self) -> bool:
        return self.code in (ErrorCode.QUIET_HOURS, ErrorCode.FREQUENCY_LIMIT)


def _purpose(template) -> str | None:
    return template.purpose.value if template.requires_consent else None


def check_channel(snapshot: PolicySnapshot, template, channel: str, priority: str, now: datetime) -> ChannelCheck:
    """Evaluate one channel against consent, quiet hours and frequency limits."""
    if snapshot.opted_out:
        return ChannelCheck(ErrorCode.USER_OPTED_OUT)

    if not snapshot.has_consent(channel, _purpose(template)):
        return ChannelCheck(ErrorCode.CHANNEL_DISABLED)

    bypass = priority == Priority.CRITICAL.value and snapshot.critical_bypass
    if not bypass and is_quiet(snapshot.quiet_hours_start, snapshot.quiet_hours_end, snapshot.timezone, now):
        retry_at = window_end_after(snapshot.quiet_hours_start, snapshot.quiet_hours_end, snapshot.timezone, now)
        return ChannelCheck(ErrorCode.QUIET_HOURS, retry_at)

    limit = snapshot.limits.get(channel, FrequencyLimit())
    usage = snapshot.usage.get(channel, ChannelUsage())
    releases = []
    if limit.daily is not None and usage.daily >= limit.daily:
        releases.append(usage.daily_release or now + DAY)
    if limit.weekly is not None and usage.weekly >= limit.weekly:
        releases.append(usage.weekly_release or now + WEEK)
    if releases:
        return ChannelCheck(ErrorCode.FREQUENCY_LIMIT, max(releases))

    return ChannelCheck()


def candidate_channels(snapshot: PolicySnapshot, template, requested_channel: str | None = None) -> list[str]:
    template_channels = [channel.value for channel in template.channels]

    if snapshot.preferred_channels:
        pool = [c for c in snapshot.preferred_channels if c in template_channels]
    else:
        pool = list(template_channels)
    # Stable sort keeps preference (or template) order between equal scores
    ranked = sorted(pool, key=lambda c: snapshot.scores.get(c, 50.0), reverse=True)

    if (
        requested_channel
        and requested_channel in template_channels
        and snapshot.has_consent(requested_channel, _purpose(template))
    ):
        return [requested_channel] + [c for c in ranked if c != requested_channel]
    return ranked


def resolve_channel(
    snapshot: PolicySnapshot,
    template,
    requested_channel: str | None = None,
    priority: str = Priority.MEDIUM.value,
    now: datetime | None = None,
) -> ChannelDecision:
    """Pick the primary channel and the ranked fallbacks that are eligible now.

    Raises:
        ChannelUnavailable: no candidate may be used. ``code`` is the reason
            that disqualified the last candidate; ``deferred_channel``,
            ``deferred_code`` and ``retry_at`` describe the earliest
            time-blocked candidate, if any.
    """
    now = now or datetime.now(UTC)
    if snapshot.opted_out:
        raise ChannelUnavailable(ErrorCode.USER_OPTED_OUT, f"User {snapshot.user_id} opted out of messaging")

    candidates = candidate_channels(snapshot, template, requested_channel)
    eligible = []
    last_code = ErrorCode.CHANNEL_DISABLED
    deferred = None
    for channel in candidates:
        check = check_channel(snapshot, template, channel, priority, now)
        if check.eligible:
            eligible.append(channel)
            continue
        last_code = check.code
        if check.time_blocked and (deferred is None or check.retry_at < deferred[1].retry_at):
            deferred = (channel, check)

    if eligible:
        return ChannelDecision(channel=eligible[0], fallbacks=tuple(eligible[1:]))

    if deferred is not None:
        channel, check = deferred
        raise ChannelUnavailable(
            last_code,
            f"No channel available for template {template.id} until {check.retry_at.isoformat()}",
            retry_at=check.retry_at,
            deferred_channel=channel,
            deferred_code=check.code,
        )
    raise ChannelUnavailable(last_code, f"No channel available for template {template.id}")
