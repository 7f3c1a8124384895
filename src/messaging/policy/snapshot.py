"""Builds policy snapshots from stored preferences, counters and settings."""

from datetime import datetime

from messaging.policy.counters import CounterStore
from messaging.policy.resolver import DAY, WEEK, ChannelUsage, PolicySnapshot
from messaging.settings import FrequencyLimit, MessagingSettings


def effective_limits(preference, settings: MessagingSettings) -> dict[str, FrequencyLimit]:
    """Default limits per channel with the user's overrides applied."""
    limits = dict(settings.default_frequency_limits)
    for channel, override in preference.frequency_limit_overrides().items():
        limits[channel] = FrequencyLimit(**override)
    return limits


def build_snapshot(preference, counters: CounterStore, settings: MessagingSettings, now: datetime) -> PolicySnapshot:
    user_id = str(preference.user_id)
    consents = {
        channel: frozenset(consent.get("purposes", []))
        for channel, consent in preference.consent_map().items()
        if consent.get("enabled")
    }
    limits = effective_limits(preference, settings)

    usage, scores = {}, {}
    for channel in ("push", "email", "whatsapp", "sms", "inapp"):
        limit = limits.get(channel, FrequencyLimit())
        daily = counters.sent_in_window(user_id, channel, now, DAY)
        weekly = counters.sent_in_window(user_id, channel, now, WEEK)
        usage[channel] = ChannelUsage(
            daily=daily,
            weekly=weekly,
            daily_release=(
                counters.window_release(user_id, channel, now, DAY, limit.daily) if limit.daily is not None else None
            ),
            weekly_release=(
                counters.window_release(user_id, channel, now, WEEK, limit.weekly)
                if limit.weekly is not None
                else None
            ),
        )
        scores[channel] = counters.engagement_score(user_id, channel, now)

    return PolicySnapshot(
        user_id=user_id,
        timezone=preference.timezone or settings.default_timezone,
        opted_out=bool(preference.opted_out),
        consents=consents,
        preferred_channels=tuple(preference.preferred_channel_list()),
        quiet_hours_start=preference.quiet_hours_start,
        quiet_hours_end=preference.quiet_hours_end,
        critical_bypass=preference.quiet_hours_critical_bypass is not False,
        limits=limits,
        usage=usage,
        scores=scores,
    )
