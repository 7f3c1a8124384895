"""Event recorder — the single pipeline for delivery callbacks and user events.

Every fact is appended to the CommunicationEvent log and then handed to the
subscribed listeners (the journey engine subscribes to drive event triggers
and exit events). Provider delivery callbacks additionally advance the
message's status and the channel performance counters.
"""

from datetime import UTC, datetime

import structlog
from messaging.event.event import CommunicationEvent
from messaging.message.message import STATUS_RANK, Message, MessageStatus
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

logger = structlog.get_logger(__name__)

CALLBACK_EVENTS = {
    "message.delivered": MessageStatus.DELIVERED,
    "message.read": MessageStatus.READ,
    "message.clicked": MessageStatus.CLICKED,
    "message.failed": MessageStatus.FAILED,
}


class EventRecorder:
    def __init__(self, counters):
        self.counters = counters
        self._listeners = []

    def subscribe(self, listener):
        """Register ``listener(event)`` to be called for every recorded event."""
        self._listeners.append(listener)

    def record(
        self,
        event_type: str,
        user_id=None,
        message_id=None,
        journey_id=None,
        enrollment_id=None,
        channel=None,
        payload: dict | None = None,
        occurred_at: datetime | None = None,
    ) -> CommunicationEvent:
        event = CommunicationEvent.record(
            event_type,
            user_id=user_id,
            message_id=message_id,
            journey_id=journey_id,
            enrollment_id=enrollment_id,
            channel=channel,
            payload=payload,
            occurred_at=occurred_at,
        )
        current_domain.repository_for(CommunicationEvent).add(event)

        logger.debug("Communication event recorded", event_type=event_type, user_id=event.user_id)
        for listener in list(self._listeners):
            listener(event)
        return event

    def ingest_provider_callback(
        self,
        message_id,
        event_type: str,
        occurred_at: datetime | None = None,
        payload: dict | None = None,
    ) -> Message:
        """Apply a provider delivery callback to its message.

        A read/clicked callback for a message that is only ``sent`` first
        records the implied delivery. Callbacks for a status the message has
        already passed are ignored.
        """
        if event_type not in CALLBACK_EVENTS:
            raise ValidationError({"event_type": [f"Unsupported callback event: {event_type}"]})

        occurred_at = occurred_at or datetime.now(UTC)
        repo = current_domain.repository_for(Message)
        message = repo.get(message_id)
        target = CALLBACK_EVENTS[event_type]
        current = MessageStatus(message.status)

        applied = self._apply(message, current, target, occurred_at, payload or {})
        if not applied:
            logger.info(
                "Stale delivery callback ignored",
                message_id=str(message.id),
                status=message.status,
                event_type=event_type,
            )
            return message

        repo.add(message)
        for kind, status in applied:
            self.counters.record_engagement(message.user_id, message.channel, kind, occurred_at)
            self.record(
                f"message.{status.value}",
                user_id=message.user_id,
                message_id=message.id,
                journey_id=message.journey_id,
                enrollment_id=message.enrollment_id,
                channel=message.channel,
                payload={**(payload or {}), "template_id": message.template_id},
                occurred_at=occurred_at,
            )
        return message

    @staticmethod
    def _apply(message, current, target, at, payload):
        """Advance the message towards ``target``; return the (kind, status) steps taken."""
        if target == MessageStatus.FAILED:
            if current != MessageStatus.SENT:
                return []
            message.mark_failed("DELIVERY_FAILED", payload.get("reason", "Bounced by provider"), failed_at=at)
            return [("failed", MessageStatus.FAILED)]

        if current in (MessageStatus.PENDING, MessageStatus.FAILED):
            return []
        if STATUS_RANK[current] >= STATUS_RANK[target]:
            return []

        steps = []
        if current == MessageStatus.SENT:
            message.mark_delivered(delivered_at=at)
            steps.append(("delivered", MessageStatus.DELIVERED))
        if target == MessageStatus.READ:
            message.mark_read(read_at=at)
            steps.append(("read", MessageStatus.READ))
        elif target == MessageStatus.CLICKED:
            message.mark_clicked(clicked_at=at)
            steps.append(("clicked", MessageStatus.CLICKED))
        return steps
