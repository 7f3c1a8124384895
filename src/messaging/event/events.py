"""Domain events for the CommunicationEvent aggregate."""

from messaging.domain import messaging
from protean.fields import DateTime, Identifier, String, Text


@messaging.event(part_of="CommunicationEvent")
class CommunicationEventRecorded:
    """A communication event was appended to the log."""

    __version__ = 1

    event_id: Identifier(required=True)
    event_type: String(required=True)
    user_id: Identifier()
    message_id: Identifier()
    journey_id: Identifier()
    enrollment_id: Identifier()
    channel: String()
    payload: Text()
    occurred_at: DateTime(required=True)
