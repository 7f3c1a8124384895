"""Tests for the Message status lattice — valid transitions and guards."""

from datetime import UTC, datetime, timedelta

import pytest
from messaging.message.events import MessageFailed, MessageSent
from messaging.message.message import Message, MessageStatus
from protean.exceptions import ValidationError

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _make_message(**overrides):
    defaults = {
        "user_id": "user-001",
        "template_id": "ORDER_SHIPPED",
        "channel": "push",
        "body": "Order A-1001 has shipped.",
        "subject": "Your order is on its way",
        "now": NOW,
    }
    defaults.update(overrides)
    return Message.create(**defaults)


def _message_at_state(target_status):
    """Create a message and advance it to the desired state."""
    m = _make_message()
    m._events.clear()

    if target_status == MessageStatus.PENDING:
        return m

    m.mark_sent("push-1", sent_at=NOW)
    if target_status == MessageStatus.SENT:
        m._events.clear()
        return m

    m.mark_delivered(NOW)
    if target_status == MessageStatus.DELIVERED:
        m._events.clear()
        return m

    if target_status == MessageStatus.READ:
        m.mark_read(NOW)
        m._events.clear()
        return m

    if target_status == MessageStatus.CLICKED:
        m.mark_clicked(NOW)
        m._events.clear()
        return m

    raise ValueError(f"Cannot create message at state {target_status}")


# ---------------------------------------------------------------
# Happy path transitions
# ---------------------------------------------------------------
class TestValidTransitions:
    def test_pending_to_sent(self):
        m = _message_at_state(MessageStatus.PENDING)
        m.mark_sent("push-1", sent_at=NOW)
        assert m.status == MessageStatus.SENT.value
        assert m.sent_at == NOW
        assert m.provider_message_id == "push-1"

    def test_pending_to_failed(self):
        m = _message_at_state(MessageStatus.PENDING)
        m.mark_failed("DELIVERY_FAILED", "Provider down", failed_at=NOW)
        assert m.status == MessageStatus.FAILED.value
        assert m.error_code == "DELIVERY_FAILED"

    def test_sent_to_failed_on_bounce(self):
        m = _message_at_state(MessageStatus.SENT)
        m.mark_failed("DELIVERY_FAILED", "Bounced", failed_at=NOW)
        assert m.status == MessageStatus.FAILED.value

    def test_sent_to_delivered(self):
        m = _message_at_state(MessageStatus.SENT)
        m.mark_delivered(NOW)
        assert m.status == MessageStatus.DELIVERED.value

    def test_delivered_to_read(self):
        m = _message_at_state(MessageStatus.DELIVERED)
        m.mark_read(NOW)
        assert m.status == MessageStatus.READ.value
        assert m.read_at == NOW

    def test_delivered_to_clicked(self):
        m = _message_at_state(MessageStatus.DELIVERED)
        m.mark_clicked(NOW)
        assert m.status == MessageStatus.CLICKED.value

    def test_read_to_clicked(self):
        m = _message_at_state(MessageStatus.READ)
        m.mark_clicked(NOW)
        assert m.status == MessageStatus.CLICKED.value


# ---------------------------------------------------------------
# Invalid transitions
# ---------------------------------------------------------------
class TestInvalidTransitions:
    def test_pending_cannot_be_delivered(self):
        m = _message_at_state(MessageStatus.PENDING)
        with pytest.raises(ValidationError):
            m.mark_delivered(NOW)

    def test_pending_cannot_be_read(self):
        m = _message_at_state(MessageStatus.PENDING)
        with pytest.raises(ValidationError):
            m.mark_read(NOW)

    def test_sent_cannot_be_sent_again(self):
        m = _message_at_state(MessageStatus.SENT)
        with pytest.raises(ValidationError):
            m.mark_sent("push-2", sent_at=NOW)

    def test_delivered_cannot_fail(self):
        m = _message_at_state(MessageStatus.DELIVERED)
        with pytest.raises(ValidationError):
            m.mark_failed("DELIVERY_FAILED", "late bounce", failed_at=NOW)

    def test_read_cannot_revert_to_delivered(self):
        m = _message_at_state(MessageStatus.READ)
        with pytest.raises(ValidationError):
            m.mark_delivered(NOW)

    def test_clicked_is_terminal(self):
        m = _message_at_state(MessageStatus.CLICKED)
        with pytest.raises(ValidationError):
            m.mark_read(NOW)

    def test_failed_is_terminal(self):
        m = _message_at_state(MessageStatus.PENDING)
        m.mark_failed("DELIVERY_FAILED", "gone", failed_at=NOW)
        with pytest.raises(ValidationError):
            m.mark_sent("push-1", sent_at=NOW)

    def test_retry_only_while_pending(self):
        m = _message_at_state(MessageStatus.SENT)
        with pytest.raises(ValidationError):
            m.schedule_retry(NOW + timedelta(minutes=1), "DELIVERY_FAILED", now=NOW)

    def test_defer_only_while_pending(self):
        m = _message_at_state(MessageStatus.SENT)
        with pytest.raises(ValidationError):
            m.defer(NOW + timedelta(hours=1), "QUIET_HOURS", now=NOW)


# ---------------------------------------------------------------
# Events
# ---------------------------------------------------------------
class TestTransitionEvents:
    def test_mark_sent_raises_message_sent(self):
        m = _message_at_state(MessageStatus.PENDING)
        m.mark_sent("push-1", sent_at=NOW)
        assert len(m._events) == 1
        assert isinstance(m._events[0], MessageSent)
        assert m._events[0].channel == "push"

    def test_mark_failed_carries_retry_count_and_fallback_flag(self):
        m = _message_at_state(MessageStatus.PENDING)
        m.mark_failed("PROVIDER_ERROR", "boom", failed_at=NOW)
        event = m._events[0]
        assert isinstance(event, MessageFailed)
        assert event.retry_count == 0
        assert event.fallback_attempted is False
