"""Integration tests for messaging projections — projectors maintain read models.

In synchronous test mode, projectors run on events raised during aggregate save.
"""

from datetime import timedelta

import pytest
from messaging.channel import get_channel
from messaging.journey.engine import EnrollInJourneyRequest
from messaging.message.dispatch import SendMessageRequest
from messaging.projections.failed_messages import FailedMessages
from messaging.projections.journey_stats import JourneyStats
from messaging.projections.message_log import MessageLog
from messaging.projections.user_inbox import UserInbox
from messaging.settings import configure_settings
from protean import current_domain
from protean.exceptions import ObjectNotFoundError


def _send(services, now, template_id="ORDER_SHIPPED", variables=None, user_id="user-001"):
    if variables is None:
        variables = {"order_number": "A-1001"} if template_id.startswith("ORDER") else {}
    response = services.dispatcher.send(
        SendMessageRequest(user_id=user_id, template_id=template_id, variables=variables), now=now
    )
    assert response.status == "queued", response
    return response.message_id


class TestMessageLogProjection:
    def test_queued_message_is_logged(self, services, register_user, now):
        register_user("user-001")
        message_id = _send(services, now)

        log = current_domain.repository_for(MessageLog).get(message_id)
        assert log.status == "pending"
        assert log.channel == "push"
        assert log.template_id == "ORDER_SHIPPED"
        assert [entry["status"] for entry in log.entries()] == ["pending"]

    def test_send_and_engagement_are_appended(self, services, register_user, now):
        register_user("user-001")
        message_id = _send(services, now)
        services.worker.drain(now)
        services.recorder.ingest_provider_callback(message_id, "message.clicked", occurred_at=now + timedelta(minutes=5))

        log = current_domain.repository_for(MessageLog).get(message_id)
        assert log.status == "clicked"
        assert [entry["status"] for entry in log.entries()] == ["pending", "sent", "delivered", "clicked"]

    def test_retry_and_fallback_are_logged(self, services, register_user, now):
        configure_settings(max_retries=1)
        register_user("user-001")
        get_channel("push").configure(should_succeed=False)
        message_id = _send(services, now)

        services.worker.drain(now)
        services.worker.drain(now + timedelta(seconds=60))

        log = current_domain.repository_for(MessageLog).get(message_id)
        assert log.status == "sent"
        assert log.channel == "email"
        assert log.retry_count == 1
        fallback = [entry for entry in log.entries() if entry["status"] == "fallback"]
        assert fallback[0]["detail"] == "push->email"


class TestFailedMessagesProjection:
    def test_terminal_failure_is_listed(self, services, register_user, now):
        register_user("user-001", channels=("push",))
        get_channel("push").configure(should_succeed=False, error_code="INVALID_RECIPIENT", retryable=False)
        message_id = _send(services, now, template_id="WELCOME")

        services.worker.drain(now)

        failed = current_domain.repository_for(FailedMessages).get(message_id)
        assert failed.error_code == "INVALID_RECIPIENT"
        assert failed.template_id == "WELCOME"
        assert failed.channel == "push"
        assert failed.fallback_attempted is False

    def test_sent_message_is_not_listed(self, services, register_user, now):
        register_user("user-001")
        message_id = _send(services, now)
        services.worker.drain(now)

        with pytest.raises(ObjectNotFoundError):
            current_domain.repository_for(FailedMessages).get(message_id)


class TestUserInboxProjection:
    def test_only_inapp_messages_reach_the_inbox(self, services, register_user, now):
        register_user("user-001", channels=("inapp", "push"))
        tip_id = _send(services, now, template_id="ONBOARDING_TIP", variables={"tip": "Fresh water daily"})
        order_id = _send(services, now)
        services.worker.drain(now)

        repo = current_domain.repository_for(UserInbox)
        entry = repo.get(tip_id)
        assert entry.title == "Tip #1"
        assert entry.body == "Fresh water daily"
        assert entry.is_read is False
        with pytest.raises(ObjectNotFoundError):
            repo.get(order_id)

    def test_read_callback_marks_entry_read(self, services, register_user, now):
        register_user("user-001", channels=("inapp",))
        tip_id = _send(services, now, template_id="ONBOARDING_TIP", variables={"tip": "Fresh water daily"})
        services.worker.drain(now)

        services.recorder.ingest_provider_callback(tip_id, "message.read", occurred_at=now + timedelta(hours=1))

        entry = current_domain.repository_for(UserInbox).get(tip_id)
        assert entry.is_read is True
        assert entry.read_at == now + timedelta(hours=1)


class TestJourneyStatsProjection:
    DEFINITION = {
        "name": "Tagging",
        "trigger": {"type": "manual"},
        "steps": [
            {
                "id": "check",
                "conditions": [{"field": "profile.score", "operator": "greater_than", "value": 10}],
                "action": {"type": "add_tag", "tag": "seen"},
            }
        ],
    }

    def _enroll(self, services, user_id, now):
        return services.engine.enroll(EnrollInJourneyRequest(user_id=user_id, journey_id="TAGS"), now)

    def test_counts_follow_enrollment_lifecycle(self, services, launch_journey, directory, now):
        journey_id = launch_journey("TAGS", self.DEFINITION)
        directory.add_user("user-001", {"score": 1})
        directory.add_user("user-002", {"score": 50})
        directory.add_user("user-003", {"score": "high"})
        for user_id in ("user-001", "user-002", "user-003"):
            self._enroll(services, user_id, now)

        services.engine.process_due(now)

        stats = current_domain.repository_for(JourneyStats).get(journey_id)
        assert stats.journey_key == "TAGS"
        assert (stats.entered, stats.active, stats.completed, stats.exited, stats.paused) == (3, 0, 1, 1, 1)

    def test_resume_moves_paused_back_to_active(self, services, launch_journey, directory, now):
        journey_id = launch_journey("TAGS", self.DEFINITION)
        directory.add_user("user-001", {"score": "high"})
        response = self._enroll(services, "user-001", now)
        services.engine.process_due(now)

        services.engine.resume(response.enrollment_id, now + timedelta(hours=1))

        stats = current_domain.repository_for(JourneyStats).get(journey_id)
        assert (stats.active, stats.paused) == (1, 0)
