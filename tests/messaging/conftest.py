import json
from datetime import UTC, datetime

import pytest
from messaging.channel import reset_channels
from messaging.directory.memory import InMemoryUserDirectory
from messaging.event.event import CommunicationEvent
from messaging.journey.management import ActivateJourney, CreateJourney, PublishJourney
from messaging.message.message import Message
from messaging.preference.management import (
    GrantConsent,
    RegisterPreferences,
    SetQuietHours,
    find_preferences,
)
from messaging.services import configure_services, reset_services
from messaging.settings import reset_settings
from messaging.templates import reset_templates
from messaging.webhook.fake import FakeWebhookClient
from protean import current_domain
from protean.integrations.pytest import DomainFixture

# Monday 2 March 2026, noon UTC
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


@pytest.fixture(scope="session")
def messaging_bed():
    from messaging.domain import messaging

    bed = DomainFixture(messaging)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(messaging_bed):
    with messaging_bed.domain_context():
        yield
        # Clear all databases
        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()


@pytest.fixture(autouse=True)
def _reset_process_state():
    """Settings, templates, channel fakes and services are process-wide."""
    reset_settings()
    reset_templates()
    reset_channels()
    reset_services()
    yield
    reset_settings()
    reset_templates()
    reset_channels()
    reset_services()


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def directory():
    return InMemoryUserDirectory()


@pytest.fixture()
def webhooks():
    return FakeWebhookClient()


@pytest.fixture()
def services(directory, webhooks):
    return configure_services(directory=directory, webhooks=webhooks)


@pytest.fixture()
def register_user():
    """Create preferences for a user and consent to the given channels."""

    def _register(user_id, channels=("push", "email"), purposes=None, timezone="UTC", quiet_hours=None):
        current_domain.process(RegisterPreferences(user_id=user_id, timezone=timezone), asynchronous=False)
        for channel in channels:
            current_domain.process(
                GrantConsent(
                    user_id=user_id,
                    channel=channel,
                    purposes=json.dumps(purposes) if purposes is not None else None,
                ),
                asynchronous=False,
            )
        if quiet_hours:
            start, end = quiet_hours
            current_domain.process(SetQuietHours(user_id=user_id, start=start, end=end), asynchronous=False)
        return find_preferences(user_id)

    return _register


@pytest.fixture()
def launch_journey():
    """Draft, publish and activate a journey; returns its id."""

    def _launch(key, definition, activate=True):
        journey_id = current_domain.process(
            CreateJourney(key=key, definition=json.dumps(definition)), asynchronous=False
        )
        current_domain.process(PublishJourney(journey_id=journey_id), asynchronous=False)
        if activate:
            current_domain.process(ActivateJourney(journey_id=journey_id), asynchronous=False)
        return journey_id

    return _launch


@pytest.fixture()
def messages_for():
    """Every message addressed to a user, oldest first."""

    def _messages(user_id):
        messages = current_domain.repository_for(Message)._dao.query.filter(user_id=str(user_id)).all().items
        return sorted(messages, key=lambda m: m.enqueued_at)

    return _messages


@pytest.fixture()
def recorded_events():
    def _events(event_type, user_id=None):
        filters = {"event_type": event_type}
        if user_id is not None:
            filters["user_id"] = str(user_id)
        return current_domain.repository_for(CommunicationEvent)._dao.query.filter(**filters).all().items

    return _events
