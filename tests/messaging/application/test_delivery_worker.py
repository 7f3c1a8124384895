"""Tests for DeliveryWorker — sending, retries with backoff, fallback and deferral."""

from datetime import timedelta

from messaging.channel import get_channel
from messaging.message.dispatch import SendMessageRequest
from messaging.message.message import Message, MessageStatus
from messaging.preference.management import RevokeConsent, SetQuietHours
from messaging.settings import configure_settings
from protean import current_domain


def _send(services, now, template_id="ORDER_SHIPPED", **overrides):
    variables = {"order_number": "A-1001"} if template_id.startswith("ORDER") else {}
    request = SendMessageRequest(user_id="user-001", template_id=template_id, variables=variables, **overrides)
    response = services.dispatcher.send(request, now=now)
    assert response.status == "queued", response
    return response.message_id


def _load(message_id):
    return current_domain.repository_for(Message).get(message_id)


class TestSuccessfulDelivery:
    def test_drain_sends_due_messages(self, services, register_user, recorded_events, now):
        register_user("user-001")
        message_id = _send(services, now)

        outcomes = services.worker.drain(now)

        assert [(o.message_id, o.status) for o in outcomes] == [(message_id, "sent")]
        assert len(get_channel("push").sent) == 1
        message = _load(message_id)
        assert message.status == MessageStatus.SENT.value
        assert message.provider_message_id.startswith("push-")
        assert message_id not in services.queue
        assert len(recorded_events("message.sent", "user-001")) == 1

    def test_sent_increments_frequency_counter(self, services, register_user, now):
        register_user("user-001")
        _send(services, now)
        assert services.counters.sent_in_window("user-001", "push", now, timedelta(days=1)) == 0

        services.worker.drain(now)
        assert services.counters.sent_in_window("user-001", "push", now, timedelta(days=1)) == 1

    def test_messages_not_yet_due_are_left_alone(self, services, register_user, now):
        register_user("user-001")
        _send(services, now, scheduled_at=now + timedelta(hours=1))
        assert services.worker.drain(now) == []
        assert get_channel("push").attempts == 0


class TestRetries:
    def test_transient_failure_schedules_backoff(self, services, register_user, now):
        register_user("user-001")
        get_channel("push").configure(should_succeed=False)
        message_id = _send(services, now)

        [outcome] = services.worker.drain(now)
        assert outcome.status == "pending"
        assert outcome.error_code == "DELIVERY_FAILED"
        assert outcome.next_attempt_at == now + timedelta(seconds=60)

        message = _load(message_id)
        assert message.retry_count == 1
        assert message.status == MessageStatus.PENDING.value

        # Not due again until the backoff elapses
        assert services.worker.drain(now + timedelta(seconds=30)) == []
        [outcome] = services.worker.drain(now + timedelta(seconds=60))
        assert outcome.next_attempt_at == now + timedelta(seconds=60 + 300)

    def test_provider_retry_after_is_honored(self, services, register_user, now):
        register_user("user-001")
        get_channel("push").configure(should_succeed=False, error_code="RATE_LIMITED", retry_after=timedelta(minutes=10))
        _send(services, now)

        [outcome] = services.worker.drain(now)
        assert outcome.error_code == "RATE_LIMITED"
        assert outcome.next_attempt_at == now + timedelta(minutes=10)

    def test_sender_exception_becomes_provider_error(self, services, register_user, now):
        register_user("user-001")
        get_channel("push").configure(raises=ConnectionError("socket closed"))
        _send(services, now)

        [outcome] = services.worker.drain(now)
        assert outcome.error_code == "PROVIDER_ERROR"
        assert outcome.status == "pending"

    def test_recovers_after_transient_failures(self, services, register_user, now):
        register_user("user-001")
        get_channel("push").configure(fail_times=1)
        message_id = _send(services, now)

        services.worker.drain(now)
        services.worker.drain(now + timedelta(seconds=60))
        assert _load(message_id).status == MessageStatus.SENT.value


class TestFallback:
    def test_fallback_attempted_exactly_once_before_failing(self, services, register_user, recorded_events, now):
        configure_settings(max_retries=1)
        register_user("user-001")
        get_channel("push").configure(should_succeed=False)
        get_channel("email").configure(should_succeed=False)
        message_id = _send(services, now)

        services.worker.drain(now)
        [outcome] = services.worker.drain(now + timedelta(seconds=60))

        assert outcome.status == "failed"
        assert get_channel("push").attempts == 2
        assert get_channel("email").attempts == 1
        message = _load(message_id)
        assert message.channel == "email"
        assert message.original_channel == "push"
        assert message.fallback_attempted is True
        [failed] = recorded_events("message.failed", "user-001")
        assert failed.payload_dict()["fallback_attempted"] is True

    def test_fallback_success_marks_sent_on_fallback_channel(self, services, register_user, now):
        configure_settings(max_retries=0)
        register_user("user-001")
        get_channel("push").configure(should_succeed=False)
        message_id = _send(services, now)

        [outcome] = services.worker.drain(now)

        assert outcome.status == "sent"
        assert outcome.channel == "email"
        assert get_channel("email").sent[0].subject == "Order A-1001 has shipped"
        assert _load(message_id).status == MessageStatus.SENT.value

    def test_permanent_failure_without_fallback(self, services, register_user, now):
        register_user("user-001", channels=("push",))
        get_channel("push").configure(should_succeed=False, error_code="INVALID_RECIPIENT", retryable=False)
        message_id = _send(services, now, template_id="WELCOME")

        [outcome] = services.worker.drain(now)

        assert outcome.status == "failed"
        assert outcome.error_code == "INVALID_RECIPIENT"
        assert get_channel("push").attempts == 1
        assert _load(message_id).retry_count == 0

    def test_consent_revoked_after_queueing_uses_fallback(self, services, register_user, now):
        register_user("user-001")
        message_id = _send(services, now)
        current_domain.process(RevokeConsent(user_id="user-001", channel="push"), asynchronous=False)

        [outcome] = services.worker.drain(now)

        assert outcome.status == "sent"
        assert outcome.channel == "email"
        assert get_channel("push").attempts == 0
        assert _load(message_id).fallback_attempted is True


class TestPolicyAtDeliveryTime:
    def test_quiet_hours_started_after_queueing_defer_the_message(self, services, register_user, now):
        register_user("user-001")
        message_id = _send(services, now, priority="medium")
        current_domain.process(SetQuietHours(user_id="user-001", start="11:00", end="14:00"), asynchronous=False)

        [outcome] = services.worker.drain(now)

        assert outcome.error_code == "QUIET_HOURS"
        assert outcome.next_attempt_at == now.replace(hour=14)
        message = _load(message_id)
        assert message.status == MessageStatus.PENDING.value
        assert message.retry_count == 0

    def test_daily_limit_is_never_exceeded(self, services, register_user, now):
        register_user("user-001", channels=("push",))
        ids = [_send(services, now, template_id="ORDER_DELIVERED") for _ in range(4)]

        for _ in range(4):
            services.worker.drain(now)

        statuses = [_load(message_id).status for message_id in ids]
        assert statuses == ["sent", "sent", "sent", "pending"]
        assert _load(ids[3]).deferred_reason == "FREQUENCY_LIMIT"
        assert len(get_channel("push").sent) == 3


class TestLaneOrdering:
    def test_later_message_waits_for_earlier_one_on_same_channel(self, services, register_user, now):
        register_user("user-001")
        get_channel("push").configure(fail_times=1)
        shipped = _send(services, now)
        delivered = _send(services, now, template_id="ORDER_DELIVERED")

        services.worker.drain(now)
        assert _load(shipped).status == MessageStatus.PENDING.value
        assert _load(delivered).status == MessageStatus.PENDING.value

        retry_at = now + timedelta(seconds=60)
        services.worker.drain(retry_at)
        services.worker.drain(retry_at)

        assert [payload.data["template_id"] for payload in get_channel("push").sent] == [
            "ORDER_SHIPPED",
            "ORDER_DELIVERED",
        ]
