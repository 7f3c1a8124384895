"""UserChannelPreferences aggregate — consent, quiet hours and frequency caps.

Holds per-channel consent (with the purposes the user agreed to), an ordered
list of preferred channels, a quiet hours window evaluated in the user's
timezone, and per-channel frequency limit overrides. The rolling send counters
these limits are checked against live in the counters store, not here.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from messaging.domain import messaging
from messaging.preference.events import (
    ConsentGranted,
    ConsentRevoked,
    FrequencyLimitSet,
    PreferencesCreated,
    PreferredChannelsSet,
    QuietHoursCleared,
    QuietHoursSet,
    TimezoneChanged,
    UserOptedIn,
    UserOptedOut,
)
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, String, Text

_CHANNELS = ("push", "email", "whatsapp", "sms", "inapp")


class ConsentPurpose(Enum):
    TRANSACTIONAL = "transactional"
    MARKETING = "marketing"
    CARING = "caring"
    REMINDERS = "reminders"


def validate_hhmm(label, value):
    """Raise ValidationError unless ``value`` is an HH:MM time."""
    parts = value.split(":") if value else []
    if len(parts) != 2:
        raise ValidationError({label: [f"Invalid time format: {value}. Use HH:MM"]})
    try:
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError
    except ValueError:
        raise ValidationError({label: [f"Invalid time format: {value}. Use HH:MM"]}) from None


def _validate_channel(channel):
    if channel not in _CHANNELS:
        raise ValidationError({"channel": [f"Unknown channel: {channel}"]})


def _validate_timezone(timezone):
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError({"timezone": [f"Unknown timezone: {timezone}"]}) from None


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@messaging.aggregate
class UserChannelPreferences:
    """A user's channel consent and delivery preferences."""

    # User link
    user_id: Identifier(required=True, unique=True)

    # Consent, per channel:
    # {"email": {"enabled": true, "purposes": [...], "granted_at": ..., "revoked_at": ...}}
    consents: Text()
    opted_out: Boolean(default=False)
    opted_out_at: DateTime()

    # Channel ordering
    preferred_channels: Text()  # JSON list of channels, most preferred first

    # Quiet hours (DND)
    quiet_hours_start: String(max_length=5)  # "22:00" format
    quiet_hours_end: String(max_length=5)  # "08:00" format
    quiet_hours_critical_bypass: Boolean(default=True)
    timezone: String(max_length=64, default="UTC")

    # Frequency limit overrides: {"push": {"daily": 2, "weekly": 5}}
    frequency_limits: Text()

    # Timestamps
    created_at: DateTime()
    updated_at: DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, user_id, timezone="UTC", quiet_hours_start=None, quiet_hours_end=None):
        """Create preferences with no consent granted yet."""
        _validate_timezone(timezone)
        if quiet_hours_start or quiet_hours_end:
            validate_hhmm("quiet_hours_start", quiet_hours_start)
            validate_hhmm("quiet_hours_end", quiet_hours_end)

        now = datetime.now(UTC)
        preference = cls(
            user_id=user_id,
            consents=json.dumps({}),
            preferred_channels=json.dumps([]),
            frequency_limits=json.dumps({}),
            quiet_hours_start=quiet_hours_start,
            quiet_hours_end=quiet_hours_end,
            quiet_hours_critical_bypass=True,
            timezone=timezone,
            opted_out=False,
            created_at=now,
            updated_at=now,
        )

        preference.raise_(
            PreferencesCreated(
                preference_id=str(preference.id),
                user_id=str(user_id),
                timezone=timezone,
                created_at=now,
            )
        )

        return preference

    # -------------------------------------------------------------------
    # Consent
    # -------------------------------------------------------------------
    def grant_consent(self, channel, purposes=None):
        """Consent to a channel for the given purposes (all purposes when omitted)."""
        _validate_channel(channel)
        purposes = list(purposes) if purposes else [p.value for p in ConsentPurpose]
        unknown = [p for p in purposes if p not in {cp.value for cp in ConsentPurpose}]
        if unknown:
            raise ValidationError({"purposes": [f"Unknown consent purposes: {', '.join(unknown)}"]})

        now = datetime.now(UTC)
        consents = self.consent_map()
        consents[channel] = {
            "enabled": True,
            "purposes": sorted(set(purposes)),
            "granted_at": now.isoformat(),
            "revoked_at": None,
        }
        self.consents = json.dumps(consents)
        self.updated_at = now

        self.raise_(
            ConsentGranted(
                preference_id=str(self.id),
                user_id=str(self.user_id),
                channel=channel,
                purposes=json.dumps(consents[channel]["purposes"]),
                granted_at=now,
            )
        )

    def revoke_consent(self, channel):
        """Withdraw consent for a channel."""
        _validate_channel(channel)
        consents = self.consent_map()
        if not consents.get(channel, {}).get("enabled"):
            raise ValidationError({"consents": [f"No consent to revoke for {channel}"]})

        now = datetime.now(UTC)
        consents[channel]["enabled"] = False
        consents[channel]["revoked_at"] = now.isoformat()
        self.consents = json.dumps(consents)
        self.updated_at = now

        self.raise_(
            ConsentRevoked(
                preference_id=str(self.id),
                user_id=str(self.user_id),
                channel=channel,
                revoked_at=now,
            )
        )

    def opt_out(self):
        """Stop all messaging to this user."""
        if self.opted_out:
            raise ValidationError({"opted_out": ["User has already opted out"]})

        now = datetime.now(UTC)
        self.opted_out = True
        self.opted_out_at = now
        self.updated_at = now

        self.raise_(UserOptedOut(preference_id=str(self.id), user_id=str(self.user_id), opted_out_at=now))

    def opt_in(self):
        """Lift a previous opt-out. Channel consents are left as they were."""
        if not self.opted_out:
            raise ValidationError({"opted_out": ["User has not opted out"]})

        now = datetime.now(UTC)
        self.opted_out = False
        self.opted_out_at = None
        self.updated_at = now

        self.raise_(UserOptedIn(preference_id=str(self.id), user_id=str(self.user_id), opted_in_at=now))

    # -------------------------------------------------------------------
    # Quiet hours and timezone
    # -------------------------------------------------------------------
    def set_quiet_hours(self, start, end, critical_bypass=True):
        """Set do-not-disturb window. Both start and end required."""
        if not start or not end:
            raise ValidationError({"quiet_hours": ["Both start and end times are required"]})
        validate_hhmm("quiet_hours_start", start)
        validate_hhmm("quiet_hours_end", end)

        now = datetime.now(UTC)
        self.quiet_hours_start = start
        self.quiet_hours_end = end
        self.quiet_hours_critical_bypass = critical_bypass
        self.updated_at = now

        self.raise_(
            QuietHoursSet(
                preference_id=str(self.id),
                user_id=str(self.user_id),
                start=start,
                end=end,
                critical_bypass=critical_bypass,
                updated_at=now,
            )
        )

    def clear_quiet_hours(self):
        """Remove the quiet hours window."""
        now = datetime.now(UTC)
        self.quiet_hours_start = None
        self.quiet_hours_end = None
        self.updated_at = now

        self.raise_(QuietHoursCleared(preference_id=str(self.id), user_id=str(self.user_id), cleared_at=now))

    def change_timezone(self, timezone):
        _validate_timezone(timezone)

        now = datetime.now(UTC)
        self.timezone = timezone
        self.updated_at = now

        self.raise_(
            TimezoneChanged(
                preference_id=str(self.id),
                user_id=str(self.user_id),
                timezone=timezone,
                updated_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Channel ordering and limits
    # -------------------------------------------------------------------
    def set_preferred_channels(self, channels):
        """Set the preferred channel order. An empty list means no preference."""
        for channel in channels:
            _validate_channel(channel)
        if len(set(channels)) != len(channels):
            raise ValidationError({"preferred_channels": ["Channels must not repeat"]})

        now = datetime.now(UTC)
        self.preferred_channels = json.dumps(list(channels))
        self.updated_at = now

        self.raise_(
            PreferredChannelsSet(
                preference_id=str(self.id),
                user_id=str(self.user_id),
                channels=json.dumps(list(channels)),
                updated_at=now,
            )
        )

    def set_frequency_limit(self, channel, daily=None, weekly=None):
        """Override the default frequency limit of a channel. ``None`` means unlimited."""
        _validate_channel(channel)
        for label, value in (("daily", daily), ("weekly", weekly)):
            if value is not None and value < 0:
                raise ValidationError({label: ["Frequency limit cannot be negative"]})
        if daily is not None and weekly is not None and weekly < daily:
            raise ValidationError({"weekly": ["Weekly limit cannot be lower than the daily limit"]})

        now = datetime.now(UTC)
        limits = self.frequency_limit_overrides()
        limits[channel] = {"daily": daily, "weekly": weekly}
        self.frequency_limits = json.dumps(limits)
        self.updated_at = now

        self.raise_(
            FrequencyLimitSet(
                preference_id=str(self.id),
                user_id=str(self.user_id),
                channel=channel,
                daily=daily,
                weekly=weekly,
                updated_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Query helpers
    # -------------------------------------------------------------------
    def consent_map(self) -> dict:
        return json.loads(self.consents) if self.consents else {}

    def has_consent(self, channel, purpose=None) -> bool:
        """Check the channel is enabled and, when given, covers ``purpose``."""
        consent = self.consent_map().get(channel)
        if not consent or not consent.get("enabled"):
            return False
        return purpose is None or purpose in consent.get("purposes", [])

    def preferred_channel_list(self) -> list[str]:
        return json.loads(self.preferred_channels) if self.preferred_channels else []

    def frequency_limit_overrides(self) -> dict:
        return json.loads(self.frequency_limits) if self.frequency_limits else {}
