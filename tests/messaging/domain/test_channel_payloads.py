"""Tests for channel-specific payloads built from messages."""

from datetime import UTC, datetime

import pytest
from messaging.channel.payloads import (
    EmailPayload,
    InboxPayload,
    PushPayload,
    SmsPayload,
    WhatsAppPayload,
    build_payload,
)
from messaging.message.message import Message

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _make_message(channel, **overrides):
    defaults = {
        "user_id": "user-001",
        "template_id": "ORDER_SHIPPED",
        "channel": channel,
        "subject": "Order A-1001 has shipped",
        "body": "Order A-1001 shipped via DHL.",
        "cta_label": "Track package",
        "cta_url": "https://track.example.com/A-1001",
        "variables": {"order_number": "A-1001"},
        "now": NOW,
    }
    defaults.update(overrides)
    return Message.create(**defaults)


class TestBuildPayload:
    def test_push(self):
        message = _make_message("push")
        payload = build_payload(message)
        assert isinstance(payload, PushPayload)
        assert payload.title == "Order A-1001 has shipped"
        assert payload.deep_link == "https://track.example.com/A-1001"
        assert payload.data == {"message_id": str(message.id), "template_id": "ORDER_SHIPPED"}

    def test_email(self):
        payload = build_payload(_make_message("email"))
        assert isinstance(payload, EmailPayload)
        assert payload.subject == "Order A-1001 has shipped"
        assert payload.cta_label == "Track package"

    def test_sms_appends_link(self):
        payload = build_payload(_make_message("sms"))
        assert isinstance(payload, SmsPayload)
        assert payload.text == "Order A-1001 shipped via DHL. https://track.example.com/A-1001"

    def test_sms_without_link(self):
        payload = build_payload(_make_message("sms", cta_url=None))
        assert payload.text == "Order A-1001 shipped via DHL."

    def test_whatsapp_carries_template_variables(self):
        payload = build_payload(_make_message("whatsapp"))
        assert isinstance(payload, WhatsAppPayload)
        assert payload.template_id == "ORDER_SHIPPED"
        assert payload.variables == {"order_number": "A-1001"}

    def test_inapp(self):
        payload = build_payload(_make_message("inapp", subject=None))
        assert isinstance(payload, InboxPayload)
        assert payload.title == ""

    def test_payloads_are_immutable(self):
        payload = build_payload(_make_message("sms"))
        with pytest.raises(AttributeError):
            payload.text = "changed"
