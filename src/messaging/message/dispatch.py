"""Message dispatcher — turns a send request into a queued Message.

Looks up the template and the user's preferences, validates variables,
resolves the channel, renders the content and enqueues the message. Policy
blocks that only delay delivery (quiet hours, frequency limits) produce a
pending message scheduled for when the block lifts; every other rejection is
returned to the caller as a typed failure and recorded as a
``message.rejected`` event.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from messaging.errors import ChannelUnavailable, ErrorCode, MessagingError
from messaging.message.message import Message, Priority
from messaging.policy.resolver import resolve_channel
from messaging.policy.snapshot import build_snapshot
from messaging.preference.management import find_preferences
from messaging.settings import get_settings
from messaging.templates import get_template
from protean.utils.globals import current_domain

logger = structlog.get_logger(__name__)


@dataclass
class SendMessageRequest:
    user_id: str
    template_id: str
    variables: dict = field(default_factory=dict)
    dog_id: str | None = None
    channel: str | None = None
    fallback_channel: str | None = None
    priority: str | None = None  # template default when omitted
    scheduled_at: datetime | None = None
    journey_id: str | None = None
    step_id: str | None = None
    enrollment_id: str | None = None


@dataclass
class SendMessageResponse:
    status: str  # "queued", "sent" or "failed"
    message_id: str | None = None
    channel: str | None = None
    scheduled_at: datetime | None = None
    estimated_delivery: datetime | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status != "failed"


class MessageDispatcher:
    def __init__(self, counters, queue, recorder):
        self.counters = counters
        self.queue = queue
        self.recorder = recorder

    def send(self, request: SendMessageRequest, now: datetime | None = None) -> SendMessageResponse:
        """Validate, resolve and enqueue a message. Never raises for policy failures."""
        now = now or datetime.now(UTC)
        try:
            message = self._create_message(request, now)
        except MessagingError as exc:
            logger.warning(
                "Message rejected",
                user_id=str(request.user_id),
                template_id=request.template_id,
                error_code=exc.code.value,
                reason=exc.message,
            )
            self.recorder.record(
                "message.rejected",
                user_id=request.user_id,
                journey_id=request.journey_id,
                enrollment_id=request.enrollment_id,
                payload={
                    "template_id": request.template_id,
                    "error_code": exc.code.value,
                    "reason": exc.message,
                    "details": exc.details,
                },
                occurred_at=now,
            )
            return SendMessageResponse(status="failed", error_code=exc.code.value, error_message=exc.message)

        due = message.scheduled_for or now
        self.queue.enqueue(message.id, message.user_id, message.channel, due)

        logger.info(
            "Message queued",
            message_id=str(message.id),
            user_id=str(message.user_id),
            template_id=message.template_id,
            channel=message.channel,
            scheduled_for=str(message.scheduled_for) if message.scheduled_for else None,
        )
        return SendMessageResponse(
            status="queued",
            message_id=str(message.id),
            channel=message.channel,
            scheduled_at=message.scheduled_for,
            estimated_delivery=due,
        )

    def _create_message(self, request: SendMessageRequest, now: datetime) -> Message:
        settings = get_settings()
        template = get_template(request.template_id)

        preference = find_preferences(request.user_id)
        if preference is None:
            raise MessagingError(ErrorCode.INVALID_RECIPIENT, f"Unknown user {request.user_id}")
        if preference.opted_out:
            raise MessagingError(ErrorCode.USER_OPTED_OUT, f"User {request.user_id} opted out of messaging")

        # Fail fast on bad variables before any channel work
        template.resolve_variables(request.variables)

        priority = Priority(request.priority or template.default_priority.value).value
        at = request.scheduled_at if request.scheduled_at and request.scheduled_at > now else now
        scheduled_for = at if at > now else None
        deferred_reason = None

        snapshot = build_snapshot(preference, self.counters, settings, now)
        try:
            decision = resolve_channel(snapshot, template, request.channel, priority, at)
            channel, fallbacks = decision.channel, decision.fallbacks
        except ChannelUnavailable as exc:
            if not exc.deferrable:
                raise
            channel, fallbacks = exc.deferred_channel, ()
            scheduled_for, deferred_reason = exc.retry_at, exc.deferred_code.value
            logger.info(
                "Message deferred by channel policy",
                user_id=str(request.user_id),
                template_id=template.id,
                channel=channel,
                error_code=exc.deferred_code.value,
                retry_at=str(exc.retry_at),
            )

        rendered = template.render(
            channel,
            request.variables,
            user_id=request.user_id,
            ab_testing=settings.ab_testing_enabled,
        )

        message = Message.create(
            user_id=request.user_id,
            dog_id=request.dog_id,
            template_id=template.id,
            variant=rendered.variant,
            channel=channel,
            priority=priority,
            subject=rendered.subject,
            body=rendered.body,
            cta_label=rendered.cta_label,
            cta_url=rendered.cta_url,
            variables=rendered.variables,
            journey_id=request.journey_id,
            step_id=request.step_id,
            enrollment_id=request.enrollment_id,
            scheduled_for=scheduled_for,
            deferred_reason=deferred_reason,
            max_retries=settings.max_retries,
            fallback_channel=self._fallback_for(template, channel, request.fallback_channel, fallbacks),
            now=now,
        )
        current_domain.repository_for(Message).add(message)
        return message

    @staticmethod
    def _fallback_for(template, channel, requested, eligible):
        """Explicit fallback, else the template's, else the next eligible candidate."""
        supported = {c.value for c in template.channels}
        for candidate in (
            requested,
            template.fallback_channel.value if template.fallback_channel else None,
            eligible[0] if eligible else None,
        ):
            if candidate and candidate != channel and candidate in supported:
                return candidate
        return None
