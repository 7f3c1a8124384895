"""FailedMessages — messages that reached the terminal failed status."""

from messaging.domain import messaging
from messaging.message.events import MessageFailed
from messaging.message.message import Message
from protean.core.projector import on
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain


@messaging.projection
class FailedMessages:
    message_id: Identifier(identifier=True, required=True)
    user_id: Identifier(required=True)
    template_id: String()
    channel: String(required=True)
    error_code: String(required=True)
    reason: String(max_length=500)
    retry_count: Integer(default=0)
    fallback_attempted: Boolean(default=False)
    journey_id: Identifier()
    failed_at: DateTime()


@messaging.projector(projector_for=FailedMessages, aggregates=[Message])
class FailedMessagesProjector:
    @on(MessageFailed)
    def on_message_failed(self, event):
        try:
            message = current_domain.repository_for(Message).get(event.message_id)
            template_id, journey_id = message.template_id, message.journey_id
        except ObjectNotFoundError:
            template_id, journey_id = None, None

        current_domain.repository_for(FailedMessages).add(
            FailedMessages(
                message_id=event.message_id,
                user_id=event.user_id,
                template_id=template_id,
                channel=event.channel,
                error_code=event.error_code,
                reason=event.reason,
                retry_count=event.retry_count,
                fallback_attempted=event.fallback_attempted,
                journey_id=journey_id,
                failed_at=event.failed_at,
            )
        )
