"""Preference management commands + handlers — consent, quiet hours, limits."""

import json

from messaging.domain import messaging
from messaging.preference.preference import UserChannelPreferences
from messaging.settings import get_settings
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Boolean, Identifier, Integer, String, Text
from protean.utils.globals import current_domain
from protean.utils.mixins import handle


@messaging.command(part_of="UserChannelPreferences")
class RegisterPreferences:
    """Create channel preferences for a new user."""

    user_id: Identifier(required=True)
    timezone: String(max_length=64)


@messaging.command(part_of="UserChannelPreferences")
class GrantConsent:
    """Consent to a channel for some (or all) purposes."""

    user_id: Identifier(required=True)
    channel: String(required=True, max_length=20)
    purposes: Text()  # JSON list; all purposes when omitted


@messaging.command(part_of="UserChannelPreferences")
class RevokeConsent:
    """Withdraw consent for a channel."""

    user_id: Identifier(required=True)
    channel: String(required=True, max_length=20)


@messaging.command(part_of="UserChannelPreferences")
class SetQuietHours:
    """Set a user's do-not-disturb window."""

    user_id: Identifier(required=True)
    start: String(required=True, max_length=5)
    end: String(required=True, max_length=5)
    critical_bypass: Boolean(default=True)


@messaging.command(part_of="UserChannelPreferences")
class ClearQuietHours:
    """Remove a user's do-not-disturb window."""

    user_id: Identifier(required=True)


@messaging.command(part_of="UserChannelPreferences")
class ChangeTimezone:
    user_id: Identifier(required=True)
    timezone: String(required=True, max_length=64)


@messaging.command(part_of="UserChannelPreferences")
class SetFrequencyLimit:
    """Override a channel's daily/weekly send cap for a user."""

    user_id: Identifier(required=True)
    channel: String(required=True, max_length=20)
    daily: Integer()
    weekly: Integer()


@messaging.command(part_of="UserChannelPreferences")
class SetPreferredChannels:
    user_id: Identifier(required=True)
    channels: Text(required=True)  # JSON list, most preferred first


@messaging.command(part_of="UserChannelPreferences")
class OptOut:
    """Stop all messaging to a user."""

    user_id: Identifier(required=True)


@messaging.command(part_of="UserChannelPreferences")
class OptIn:
    user_id: Identifier(required=True)


def find_preferences(user_id) -> UserChannelPreferences | None:
    """Return a user's preferences, or None when the user is unknown."""
    repo = current_domain.repository_for(UserChannelPreferences)
    prefs = repo._dao.query.filter(user_id=str(user_id)).all().items
    return prefs[0] if prefs else None


def _load(user_id) -> UserChannelPreferences:
    preference = find_preferences(user_id)
    if preference is None:
        raise ObjectNotFoundError(f"No channel preferences for user {user_id}")
    return preference


@messaging.command_handler(part_of=UserChannelPreferences)
class ManagePreferencesHandler:
    @handle(RegisterPreferences)
    def register(self, command: RegisterPreferences):
        if find_preferences(command.user_id) is not None:
            raise ValidationError({"user_id": [f"Preferences already exist for user {command.user_id}"]})

        settings = get_settings()
        preference = UserChannelPreferences.create(
            user_id=command.user_id,
            timezone=command.timezone or settings.default_timezone,
            quiet_hours_start=settings.default_quiet_hours_start,
            quiet_hours_end=settings.default_quiet_hours_end,
        )
        current_domain.repository_for(UserChannelPreferences).add(preference)
        return str(preference.id)

    @handle(GrantConsent)
    def grant_consent(self, command: GrantConsent):
        preference = _load(command.user_id)
        purposes = json.loads(command.purposes) if command.purposes else None
        preference.grant_consent(command.channel, purposes)
        current_domain.repository_for(UserChannelPreferences).add(preference)

    @handle(RevokeConsent)
    def revoke_consent(self, command: RevokeConsent):
        preference = _load(command.user_id)
        preference.revoke_consent(command.channel)
        current_domain.repository_for(UserChannelPreferences).add(preference)

    @handle(SetQuietHours)
    def set_quiet_hours(self, command: SetQuietHours):
        preference = _load(command.user_id)
        preference.set_quiet_hours(command.start, command.end, command.critical_bypass)
        current_domain.repository_for(UserChannelPreferences).add(preference)

    @handle(ClearQuietHours)
    def clear_quiet_hours(self, command: ClearQuietHours):
        preference = _load(command.user_id)
        preference.clear_quiet_hours()
        current_domain.repository_for(UserChannelPreferences).add(preference)

    @handle(ChangeTimezone)
    def change_timezone(self, command: ChangeTimezone):
        preference = _load(command.user_id)
        preference.change_timezone(command.timezone)
        current_domain.repository_for(UserChannelPreferences).add(preference)

    @handle(SetFrequencyLimit)
    def set_frequency_limit(self, command: SetFrequencyLimit):
        preference = _load(command.user_id)
        preference.set_frequency_limit(command.channel, command.daily, command.weekly)
        current_domain.repository_for(UserChannelPreferences).add(preference)

    @handle(SetPreferredChannels)
    def set_preferred_channels(self, command: SetPreferredChannels):
        preference = _load(command.user_id)
        preference.set_preferred_channels(json.loads(command.channels))
        current_domain.repository_for(UserChannelPreferences).add(preference)

    @handle(OptOut)
    def opt_out(self, command: OptOut):
        preference = _load(command.user_id)
        preference.opt_out()
        current_domain.repository_for(UserChannelPreferences).add(preference)

    @handle(OptIn)
    def opt_in(self, command: OptIn):
        preference = _load(command.user_id)
        preference.opt_in()
        current_domain.repository_for(UserChannelPreferences).add(preference)
