"""BDD tests for the message lifecycle."""

from datetime import datetime

from messaging.message.message import Message
from protean import current_domain
from pytest_bdd import parsers, scenarios, then, when

scenarios("features/message_lifecycle.feature")


@when(parsers.cfparse('the provider reports "{event_type}"'))
def provider_callback(services, sent, now, event_type):
    services.recorder.ingest_provider_callback(sent[-1].message_id, event_type, occurred_at=now)


@then(parsers.cfparse('the message is scheduled for "{at}"'))
def scheduled_for(sent, at):
    assert sent[-1].status == "queued"
    assert sent[-1].scheduled_at == datetime.fromisoformat(at)


@then("the message has a delivery time")
def has_delivery_time(sent):
    message = current_domain.repository_for(Message).get(sent[-1].message_id)
    assert message.delivered_at is not None
