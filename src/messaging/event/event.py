"""CommunicationEvent aggregate — append-only log of delivery and engagement facts.

Provider callbacks, user actions and domain facts from other systems all land
here through the event recorder. Records are created once and never changed.
"""

import json
from datetime import UTC, datetime

from messaging.domain import messaging
from messaging.event.events import CommunicationEventRecorded
from protean.fields import DateTime, Identifier, String, Text


@messaging.aggregate
class CommunicationEvent:
    event_type: String(max_length=100, required=True)
    user_id: Identifier()
    message_id: Identifier()
    journey_id: Identifier()
    enrollment_id: Identifier()
    channel: String(max_length=20)
    payload: Text()  # JSON
    occurred_at: DateTime(required=True)
    recorded_at: DateTime()

    @classmethod
    def record(
        cls,
        event_type,
        user_id=None,
        message_id=None,
        journey_id=None,
        enrollment_id=None,
        channel=None,
        payload=None,
        occurred_at=None,
    ):
        now = datetime.now(UTC)
        occurred_at = occurred_at or now
        event = cls(
            event_type=event_type,
            user_id=str(user_id) if user_id else None,
            message_id=str(message_id) if message_id else None,
            journey_id=str(journey_id) if journey_id else None,
            enrollment_id=str(enrollment_id) if enrollment_id else None,
            channel=channel,
            payload=json.dumps(payload or {}, default=str),
            occurred_at=occurred_at,
            recorded_at=now,
        )

        event.raise_(
            CommunicationEventRecorded(
                event_id=str(event.id),
                event_type=event_type,
                user_id=event.user_id,
                message_id=event.message_id,
                journey_id=event.journey_id,
                enrollment_id=event.enrollment_id,
                channel=channel,
                payload=event.payload,
                occurred_at=occurred_at,
            )
        )

        return event

    def payload_dict(self) -> dict:
        return json.loads(self.payload) if self.payload else {}
