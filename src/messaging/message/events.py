"""Domain events for the Message aggregate."""

from messaging.domain import messaging
from protean.fields import Boolean, DateTime, Identifier, Integer, String


@messaging.event(part_of="Message")
class MessageQueued:
    """A message was created and placed on the dispatch queue."""

    __version__ = 1

    message_id: Identifier(required=True)
    user_id: Identifier(required=True)
    template_id: String(required=True)
    channel: String(required=True)
    priority: String(required=True)
    journey_id: Identifier()
    step_id: String()
    scheduled_for: DateTime()
    queued_at: DateTime(required=True)


@messaging.event(part_of="Message")
class MessageDeferred:
    """Delivery was pushed back by quiet hours or a frequency limit."""

    __version__ = 1

    message_id: Identifier(required=True)
    user_id: Identifier(required=True)
    channel: String(required=True)
    reason: String(required=True)
    deferred_until: DateTime(required=True)


@messaging.event(part_of="Message")
class MessageRetryScheduled:
    """A transient delivery failure will be retried later."""

    __version__ = 1

    message_id: Identifier(required=True)
    user_id: Identifier(required=True)
    channel: String(required=True)
    error_code: String(required=True)
    reason: String()
    retry_count: Integer(required=True)
    max_retries: Integer(required=True)
    next_attempt_at: DateTime(required=True)


@messaging.event(part_of="Message")
class MessageFallbackSwitched:
    """The primary channel gave up and the message moved to its fallback channel."""

    __version__ = 1

    message_id: Identifier(required=True)
    user_id: Identifier(required=True)
    from_channel: String(required=True)
    to_channel: String(required=True)
    switched_at: DateTime(required=True)


@messaging.event(part_of="Message")
class MessageSent:
    """The channel sender accepted the message."""

    __version__ = 1

    message_id: Identifier(required=True)
    user_id: Identifier(required=True)
    channel: String(required=True)
    provider_message_id: String()
    sent_at: DateTime(required=True)


@messaging.event(part_of="Message")
class MessageDelivered:
    """The provider confirmed delivery."""

    __version__ = 1

    message_id: Identifier(required=True)
    user_id: Identifier(required=True)
    channel: String(required=True)
    delivered_at: DateTime(required=True)


@messaging.event(part_of="Message")
class MessageRead:
    """The recipient opened the message."""

    __version__ = 1

    message_id: Identifier(required=True)
    user_id: Identifier(required=True)
    channel: String(required=True)
    read_at: DateTime(required=True)


@messaging.event(part_of="Message")
class MessageClicked:
    """The recipient followed the message's call to action."""

    __version__ = 1

    message_id: Identifier(required=True)
    user_id: Identifier(required=True)
    channel: String(required=True)
    clicked_at: DateTime(required=True)


@messaging.event(part_of="Message")
class MessageFailed:
    """The message reached its terminal failed status."""

    __version__ = 1

    message_id: Identifier(required=True)
    user_id: Identifier(required=True)
    channel: String(required=True)
    error_code: String(required=True)
    reason: String()
    retry_count: Integer(required=True)
    fallback_attempted: Boolean(default=False)
    failed_at: DateTime(required=True)
