"""Tests for the UserChannelPreferences aggregate."""

import pytest
from messaging.preference.events import ConsentGranted, ConsentRevoked, UserOptedOut
from messaging.preference.preference import UserChannelPreferences
from protean.exceptions import ValidationError


def _make_preferences(**overrides):
    defaults = {"user_id": "user-001", "timezone": "Europe/Madrid"}
    defaults.update(overrides)
    p = UserChannelPreferences.create(**defaults)
    p._events.clear()
    return p


class TestCreation:
    def test_new_preferences_have_no_consent(self):
        p = _make_preferences()
        assert p.consent_map() == {}
        assert p.opted_out is False
        assert p.preferred_channel_list() == []

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            _make_preferences(timezone="Mars/Olympus")

    def test_quiet_hours_require_valid_times(self):
        with pytest.raises(ValidationError):
            _make_preferences(quiet_hours_start="25:00", quiet_hours_end="08:00")


class TestConsent:
    def test_grant_consent_covers_all_purposes_by_default(self):
        p = _make_preferences()
        p.grant_consent("email")
        assert p.has_consent("email")
        assert p.has_consent("email", "marketing")
        assert p.has_consent("email", "transactional")
        assert isinstance(p._events[0], ConsentGranted)

    def test_grant_consent_for_specific_purposes(self):
        p = _make_preferences()
        p.grant_consent("push", ["transactional"])
        assert p.has_consent("push", "transactional")
        assert not p.has_consent("push", "marketing")

    def test_unknown_purpose_rejected(self):
        p = _make_preferences()
        with pytest.raises(ValidationError):
            p.grant_consent("push", ["spam"])

    def test_unknown_channel_rejected(self):
        p = _make_preferences()
        with pytest.raises(ValidationError):
            p.grant_consent("pigeon")

    def test_revoke_consent(self):
        p = _make_preferences()
        p.grant_consent("sms")
        p._events.clear()
        p.revoke_consent("sms")
        assert not p.has_consent("sms")
        assert p.consent_map()["sms"]["revoked_at"] is not None
        assert isinstance(p._events[0], ConsentRevoked)

    def test_revoke_without_consent_rejected(self):
        p = _make_preferences()
        with pytest.raises(ValidationError):
            p.revoke_consent("sms")


class TestOptOut:
    def test_opt_out_and_back_in(self):
        p = _make_preferences()
        p.grant_consent("email")
        p._events.clear()

        p.opt_out()
        assert p.opted_out is True
        assert isinstance(p._events[0], UserOptedOut)

        p.opt_in()
        assert p.opted_out is False
        assert p.has_consent("email")

    def test_double_opt_out_rejected(self):
        p = _make_preferences()
        p.opt_out()
        with pytest.raises(ValidationError):
            p.opt_out()

    def test_opt_in_without_opt_out_rejected(self):
        p = _make_preferences()
        with pytest.raises(ValidationError):
            p.opt_in()


class TestQuietHoursAndTimezone:
    def test_set_and_clear_quiet_hours(self):
        p = _make_preferences()
        p.set_quiet_hours("22:00", "08:00", critical_bypass=False)
        assert (p.quiet_hours_start, p.quiet_hours_end) == ("22:00", "08:00")
        assert p.quiet_hours_critical_bypass is False

        p.clear_quiet_hours()
        assert p.quiet_hours_start is None

    def test_quiet_hours_need_both_ends(self):
        p = _make_preferences()
        with pytest.raises(ValidationError):
            p.set_quiet_hours("22:00", None)

    def test_change_timezone(self):
        p = _make_preferences()
        p.change_timezone("America/New_York")
        assert p.timezone == "America/New_York"


class TestChannelOrderingAndLimits:
    def test_preferred_channels(self):
        p = _make_preferences()
        p.set_preferred_channels(["whatsapp", "email"])
        assert p.preferred_channel_list() == ["whatsapp", "email"]

    def test_preferred_channels_must_not_repeat(self):
        p = _make_preferences()
        with pytest.raises(ValidationError):
            p.set_preferred_channels(["email", "email"])

    def test_frequency_limit_override(self):
        p = _make_preferences()
        p.set_frequency_limit("push", daily=1, weekly=4)
        assert p.frequency_limit_overrides() == {"push": {"daily": 1, "weekly": 4}}

    def test_weekly_limit_below_daily_rejected(self):
        p = _make_preferences()
        with pytest.raises(ValidationError):
            p.set_frequency_limit("push", daily=5, weekly=2)

    def test_negative_limit_rejected(self):
        p = _make_preferences()
        with pytest.raises(ValidationError):
            p.set_frequency_limit("email", daily=-1)
