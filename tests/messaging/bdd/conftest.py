"""Shared BDD fixtures and step definitions for the Messaging domain."""

from datetime import datetime

import pytest
from messaging.channel import get_channel
from messaging.message.dispatch import SendMessageRequest
from messaging.message.message import Message
from messaging.settings import configure_settings
from protean import current_domain
from pytest_bdd import given, parsers, then, when

TEMPLATE_VARIABLES = {
    "ORDER_SHIPPED": {"order_number": "A-1001"},
    "ORDER_DELIVERED": {"order_number": "A-1001"},
    "ONBOARDING_TIP": {"tip": "Fresh water daily"},
}


@pytest.fixture()
def sent():
    """Responses of the messages sent in a scenario, in order."""
    return []


# ---------------------------------------------------------------------------
# Given steps — users and channels
# ---------------------------------------------------------------------------
@given(parsers.cfparse('user "{user_id}" consents to "{channels}"'))
def user_consents(services, register_user, user_id, channels):
    register_user(user_id, channels=tuple(channels.split(",")))


@given(parsers.cfparse('user "{user_id}" has quiet hours from "{start}" to "{end}"'))
def user_quiet_hours(services, register_user, user_id, start, end):
    register_user(user_id, quiet_hours=(start, end))


@given(parsers.cfparse('the "{channel}" channel is failing'))
def channel_failing(channel):
    get_channel(channel).configure(should_succeed=False)


@given(parsers.cfparse("messages get {count:d} retries"))
def max_retries(count):
    configure_settings(max_retries=count)


# ---------------------------------------------------------------------------
# When steps — messages
# ---------------------------------------------------------------------------
@when(parsers.cfparse('a "{template_id}" message is sent to "{user_id}"'))
def send_message(services, sent, now, template_id, user_id):
    _send(services, sent, template_id, user_id, now)


@when(parsers.cfparse('at "{at}" a "{template_id}" message is sent to "{user_id}"'))
def send_message_at(services, sent, template_id, user_id, at):
    _send(services, sent, template_id, user_id, datetime.fromisoformat(at))


def _send(services, sent, template_id, user_id, at):
    request = SendMessageRequest(
        user_id=user_id,
        template_id=template_id,
        variables=TEMPLATE_VARIABLES.get(template_id, {}),
    )
    sent.append(services.dispatcher.send(request, now=at))


@when("the dispatch queue is drained")
def drain(services, now):
    services.worker.drain(now)


# ---------------------------------------------------------------------------
# Then steps — messages
# ---------------------------------------------------------------------------
def _last_message(sent):
    return current_domain.repository_for(Message).get(sent[-1].message_id)


@then(parsers.cfparse('the message status is "{status}"'))
def message_status_is(sent, status):
    assert _last_message(sent).status == status


@then(parsers.cfparse('the message went out on "{channel}"'))
def message_channel_is(sent, channel):
    assert _last_message(sent).channel == channel


@then(parsers.cfparse('the send is rejected with "{error_code}"'))
def send_rejected(sent, error_code):
    assert sent[-1].status == "failed"
    assert sent[-1].error_code == error_code


@then(parsers.cfparse('the number of messages queued for "{user_id}" is {count:d}'))
def messages_queued(messages_for, count, user_id):
    assert len(messages_for(user_id)) == count
