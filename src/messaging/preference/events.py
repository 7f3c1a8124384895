"""Domain events for the UserChannelPreferences aggregate."""

from messaging.domain import messaging
from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text


@messaging.event(part_of="UserChannelPreferences")
class PreferencesCreated:
    """Channel preferences were created for a user."""

    __version__ = 1

    preference_id: Identifier(required=True)
    user_id: Identifier(required=True)
    timezone: String(required=True)
    created_at: DateTime(required=True)


@messaging.event(part_of="UserChannelPreferences")
class ConsentGranted:
    """A user consented to receive messages on a channel."""

    __version__ = 1

    preference_id: Identifier(required=True)
    user_id: Identifier(required=True)
    channel: String(required=True)
    purposes: Text()  # JSON list
    granted_at: DateTime(required=True)


@messaging.event(part_of="UserChannelPreferences")
class ConsentRevoked:
    """A user withdrew consent for a channel."""

    __version__ = 1

    preference_id: Identifier(required=True)
    user_id: Identifier(required=True)
    channel: String(required=True)
    revoked_at: DateTime(required=True)


@messaging.event(part_of="UserChannelPreferences")
class QuietHoursSet:
    """A user set their do-not-disturb window."""

    __version__ = 1

    preference_id: Identifier(required=True)
    user_id: Identifier(required=True)
    start: String(required=True)
    end: String(required=True)
    critical_bypass: Boolean(required=True)
    updated_at: DateTime(required=True)


@messaging.event(part_of="UserChannelPreferences")
class QuietHoursCleared:
    """A user removed their do-not-disturb window."""

    __version__ = 1

    preference_id: Identifier(required=True)
    user_id: Identifier(required=True)
    cleared_at: DateTime(required=True)


@messaging.event(part_of="UserChannelPreferences")
class FrequencyLimitSet:
    """A user capped how often a channel may be used."""

    __version__ = 1

    preference_id: Identifier(required=True)
    user_id: Identifier(required=True)
    channel: String(required=True)
    daily: Integer()
    weekly: Integer()
    updated_at: DateTime(required=True)


@messaging.event(part_of="UserChannelPreferences")
class PreferredChannelsSet:
    """A user chose the channels they prefer, in order."""

    __version__ = 1

    preference_id: Identifier(required=True)
    user_id: Identifier(required=True)
    channels: Text()  # JSON list
    updated_at: DateTime(required=True)


@messaging.event(part_of="UserChannelPreferences")
class TimezoneChanged:
    """A user's timezone was changed."""

    __version__ = 1

    preference_id: Identifier(required=True)
    user_id: Identifier(required=True)
    timezone: String(required=True)
    updated_at: DateTime(required=True)


@messaging.event(part_of="UserChannelPreferences")
class UserOptedOut:
    """A user opted out of all messaging."""

    __version__ = 1

    preference_id: Identifier(required=True)
    user_id: Identifier(required=True)
    opted_out_at: DateTime(required=True)


@messaging.event(part_of="UserChannelPreferences")
class UserOptedIn:
    """A user who had opted out opted back in."""

    __version__ = 1

    preference_id: Identifier(required=True)
    user_id: Identifier(required=True)
    opted_in_at: DateTime(required=True)
