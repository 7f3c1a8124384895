"""Message aggregate — one outbound communication to one user on one channel.

Status lattice (monotonic, a message never reverts):
    PENDING → SENT → DELIVERED → READ → CLICKED
    PENDING → SENT → DELIVERED → CLICKED
    PENDING → FAILED
    SENT → FAILED  (provider bounce)

Retries and deferrals keep the message PENDING; only ``retry_count`` and
``scheduled_for`` move. The fallback channel is attempted at most once.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from messaging.domain import messaging
from messaging.message.events import (
    MessageClicked,
    MessageDeferred,
    MessageDelivered,
    MessageFailed,
    MessageFallbackSwitched,
    MessageQueued,
    MessageRead,
    MessageRetryScheduled,
    MessageSent,
)
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Channel(Enum):
    PUSH = "push"
    EMAIL = "email"
    WHATSAPP = "whatsapp"
    SMS = "sms"
    INAPP = "inapp"


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MessageStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    CLICKED = "clicked"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# State Machine
# ---------------------------------------------------------------------------
_VALID_TRANSITIONS = {
    MessageStatus.PENDING: {MessageStatus.SENT, MessageStatus.FAILED},
    MessageStatus.SENT: {MessageStatus.DELIVERED, MessageStatus.FAILED},
    MessageStatus.DELIVERED: {MessageStatus.READ, MessageStatus.CLICKED},
    MessageStatus.READ: {MessageStatus.CLICKED},
    MessageStatus.CLICKED: set(),  # Terminal
    MessageStatus.FAILED: set(),  # Terminal
}

# Position along the engagement path, used to ignore stale provider callbacks
STATUS_RANK = {
    MessageStatus.PENDING: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
    MessageStatus.CLICKED: 4,
}


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@messaging.aggregate
class Message:
    """A rendered message addressed to a user through a single channel."""

    # Recipient
    user_id: Identifier(required=True)
    dog_id: Identifier()

    # Template and channel
    template_id: String(max_length=100, required=True)
    variant: String(max_length=50)
    channel: String(choices=Channel, required=True)
    original_channel: String(choices=Channel)
    priority: String(choices=Priority, default=Priority.MEDIUM.value)

    # Payload
    subject: String(max_length=500)
    body: Text(required=True)
    cta_label: String(max_length=200)
    cta_url: String(max_length=1000)
    variables: Text()  # JSON: values used to render the template

    # Journey linkage
    journey_id: Identifier()
    step_id: String(max_length=100)
    enrollment_id: Identifier()

    # Status
    status: String(choices=MessageStatus, default=MessageStatus.PENDING.value)
    scheduled_for: DateTime()  # Next attempt; null means immediately
    deferred_reason: String(max_length=50)

    # Delivery tracking
    enqueued_at: DateTime()
    sent_at: DateTime()
    delivered_at: DateTime()
    read_at: DateTime()
    clicked_at: DateTime()
    failed_at: DateTime()
    failure_reason: String(max_length=500)
    error_code: String(max_length=50)
    provider_message_id: String(max_length=200)

    # Retry and fallback
    retry_count: Integer(default=0)
    max_retries: Integer(default=3)
    fallback_channel: String(choices=Channel)
    fallback_attempted: Boolean(default=False)

    # Timestamps
    created_at: DateTime()
    updated_at: DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        user_id,
        template_id,
        channel,
        body,
        subject=None,
        cta_label=None,
        cta_url=None,
        variables=None,
        variant=None,
        dog_id=None,
        priority=Priority.MEDIUM.value,
        journey_id=None,
        step_id=None,
        enrollment_id=None,
        scheduled_for=None,
        deferred_reason=None,
        max_retries=3,
        fallback_channel=None,
        now=None,
    ):
        """Create a new message in PENDING status."""
        now = now or datetime.now(UTC)

        message = cls(
            user_id=user_id,
            dog_id=dog_id,
            template_id=template_id,
            variant=variant,
            channel=channel,
            original_channel=channel,
            priority=priority,
            subject=subject,
            body=body,
            cta_label=cta_label,
            cta_url=cta_url,
            variables=json.dumps(variables or {}, default=str),
            journey_id=journey_id,
            step_id=step_id,
            enrollment_id=enrollment_id,
            status=MessageStatus.PENDING.value,
            scheduled_for=scheduled_for,
            deferred_reason=deferred_reason,
            enqueued_at=now,
            retry_count=0,
            max_retries=max_retries,
            fallback_channel=fallback_channel if fallback_channel != channel else None,
            fallback_attempted=False,
            created_at=now,
            updated_at=now,
        )

        message.raise_(
            MessageQueued(
                message_id=str(message.id),
                user_id=str(user_id),
                template_id=template_id,
                channel=channel,
                priority=priority,
                journey_id=journey_id,
                step_id=step_id,
                scheduled_for=scheduled_for,
                queued_at=now,
            )
        )

        return message

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_pending(self) -> bool:
        return self.status == MessageStatus.PENDING.value

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    @property
    def can_fall_back(self) -> bool:
        return bool(self.fallback_channel) and not self.fallback_attempted

    def variables_dict(self) -> dict:
        return json.loads(self.variables) if self.variables else {}

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        """Validate state machine transition."""
        current = MessageStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def _assert_pending(self, action):
        if not self.is_pending:
            raise ValidationError({"status": [f"Cannot {action} a message in {self.status} status"]})

    def defer(self, until, reason, now=None):
        """Push the next attempt back without consuming a retry."""
        self._assert_pending("defer")

        now = now or datetime.now(UTC)
        self.scheduled_for = until
        self.deferred_reason = reason
        self.updated_at = now

        self.raise_(
            MessageDeferred(
                message_id=str(self.id),
                user_id=str(self.user_id),
                channel=self.channel,
                reason=reason,
                deferred_until=until,
            )
        )

    def schedule_retry(self, next_attempt_at, error_code, reason=None, now=None):
        """Record a transient failure and schedule the next attempt."""
        self._assert_pending("retry")
        if not self.can_retry:
            raise ValidationError({"retry_count": ["Maximum retry attempts exceeded"]})

        now = now or datetime.now(UTC)
        self.retry_count = self.retry_count + 1
        self.scheduled_for = next_attempt_at
        self.error_code = error_code
        self.failure_reason = reason
        self.deferred_reason = None
        self.updated_at = now

        self.raise_(
            MessageRetryScheduled(
                message_id=str(self.id),
                user_id=str(self.user_id),
                channel=self.channel,
                error_code=error_code,
                reason=reason,
                retry_count=self.retry_count,
                max_retries=self.max_retries,
                next_attempt_at=next_attempt_at,
            )
        )

    def switch_to_fallback(self, subject, body, cta_label=None, cta_url=None, now=None):
        """Move the message onto its fallback channel with content rendered for it.

        Allowed exactly once per message.
        """
        self._assert_pending("fall back")
        if not self.can_fall_back:
            raise ValidationError({"fallback_channel": ["No fallback channel available"]})

        now = now or datetime.now(UTC)
        from_channel = self.channel
        self.channel = self.fallback_channel
        self.fallback_attempted = True
        self.subject = subject
        self.body = body
        self.cta_label = cta_label
        self.cta_url = cta_url
        self.scheduled_for = None
        self.updated_at = now

        self.raise_(
            MessageFallbackSwitched(
                message_id=str(self.id),
                user_id=str(self.user_id),
                from_channel=from_channel,
                to_channel=self.channel,
                switched_at=now,
            )
        )

    def mark_sent(self, provider_message_id=None, sent_at=None):
        """Mark the message as accepted by the channel sender."""
        self._assert_can_transition(MessageStatus.SENT)

        now = sent_at or datetime.now(UTC)
        self.status = MessageStatus.SENT.value
        self.sent_at = now
        self.provider_message_id = provider_message_id
        self.scheduled_for = None
        self.deferred_reason = None
        self.updated_at = now

        self.raise_(
            MessageSent(
                message_id=str(self.id),
                user_id=str(self.user_id),
                channel=self.channel,
                provider_message_id=provider_message_id,
                sent_at=now,
            )
        )

    def mark_failed(self, error_code, reason=None, failed_at=None):
        """Mark the message as permanently failed."""
        self._assert_can_transition(MessageStatus.FAILED)

        now = failed_at or datetime.now(UTC)
        self.status = MessageStatus.FAILED.value
        self.error_code = error_code
        self.failure_reason = reason
        self.failed_at = now
        self.scheduled_for = None
        self.updated_at = now

        self.raise_(
            MessageFailed(
                message_id=str(self.id),
                user_id=str(self.user_id),
                channel=self.channel,
                error_code=error_code,
                reason=reason,
                retry_count=self.retry_count,
                fallback_attempted=self.fallback_attempted,
                failed_at=now,
            )
        )

    def mark_delivered(self, delivered_at=None):
        """Mark the message as confirmed delivered by the provider."""
        self._assert_can_transition(MessageStatus.DELIVERED)

        now = delivered_at or datetime.now(UTC)
        self.status = MessageStatus.DELIVERED.value
        self.delivered_at = now
        self.updated_at = now

        self.raise_(
            MessageDelivered(
                message_id=str(self.id),
                user_id=str(self.user_id),
                channel=self.channel,
                delivered_at=now,
            )
        )

    def mark_read(self, read_at=None):
        """Mark the message as opened by the recipient."""
        self._assert_can_transition(MessageStatus.READ)

        now = read_at or datetime.now(UTC)
        self.status = MessageStatus.READ.value
        self.read_at = now
        self.updated_at = now

        self.raise_(
            MessageRead(
                message_id=str(self.id),
                user_id=str(self.user_id),
                channel=self.channel,
                read_at=now,
            )
        )

    def mark_clicked(self, clicked_at=None):
        """Mark the message's call to action as followed."""
        self._assert_can_transition(MessageStatus.CLICKED)

        now = clicked_at or datetime.now(UTC)
        self.status = MessageStatus.CLICKED.value
        self.clicked_at = now
        self.updated_at = now

        self.raise_(
            MessageClicked(
                message_id=str(self.id),
                user_id=str(self.user_id),
                channel=self.channel,
                clicked_at=now,
            )
        )
