"""MessageLog — status history of every message."""

import json

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
from messaging.message.message import Message
from protean.core.projector import on
from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain


@messaging.projection
class MessageLog:
    message_id: Identifier(identifier=True, required=True)
    user_id: Identifier(required=True)
    template_id: String(required=True)
    channel: String(required=True)
    priority: String()
    status: String(required=True)
    journey_id: Identifier()
    step_id: String()
    retry_count: Integer(default=0)
    error_code: String(max_length=50)
    failure_reason: String(max_length=500)
    history: Text()  # JSON list of {"status", "at", "detail"}
    created_at: DateTime()
    updated_at: DateTime()

    def entries(self) -> list[dict]:
        return json.loads(self.history) if self.history else []


@messaging.projector(projector_for=MessageLog, aggregates=[Message])
class MessageLogProjector:
    @on(MessageQueued)
    def on_message_queued(self, event):
        current_domain.repository_for(MessageLog).add(
            MessageLog(
                message_id=event.message_id,
                user_id=event.user_id,
                template_id=event.template_id,
                channel=event.channel,
                priority=event.priority,
                status="pending",
                journey_id=event.journey_id,
                step_id=event.step_id,
                history=json.dumps([{"status": "pending", "at": event.queued_at.isoformat(), "detail": None}]),
                created_at=event.queued_at,
                updated_at=event.queued_at,
            )
        )

    def _append(self, message_id, status, at, detail=None, **fields):
        repo = current_domain.repository_for(MessageLog)
        try:
            log = repo.get(message_id)
        except ObjectNotFoundError:
            return
        entries = log.entries()
        entries.append({"status": status, "at": at.isoformat(), "detail": detail})
        log.history = json.dumps(entries)
        for key, value in fields.items():
            setattr(log, key, value)
        log.updated_at = at
        repo.add(log)

    @on(MessageDeferred)
    def on_message_deferred(self, event):
        self._append(event.message_id, "deferred", event.deferred_until, detail=event.reason)

    @on(MessageRetryScheduled)
    def on_message_retry_scheduled(self, event):
        self._append(
            event.message_id,
            "retry_scheduled",
            event.next_attempt_at,
            detail=event.error_code,
            retry_count=event.retry_count,
            error_code=event.error_code,
        )

    @on(MessageFallbackSwitched)
    def on_message_fallback_switched(self, event):
        self._append(
            event.message_id,
            "fallback",
            event.switched_at,
            detail=f"{event.from_channel}->{event.to_channel}",
            channel=event.to_channel,
        )

    @on(MessageSent)
    def on_message_sent(self, event):
        self._append(event.message_id, "sent", event.sent_at, status="sent", channel=event.channel)

    @on(MessageDelivered)
    def on_message_delivered(self, event):
        self._append(event.message_id, "delivered", event.delivered_at, status="delivered")

    @on(MessageRead)
    def on_message_read(self, event):
        self._append(event.message_id, "read", event.read_at, status="read")

    @on(MessageClicked)
    def on_message_clicked(self, event):
        self._append(event.message_id, "clicked", event.clicked_at, status="clicked")

    @on(MessageFailed)
    def on_message_failed(self, event):
        self._append(
            event.message_id,
            "failed",
            event.failed_at,
            detail=event.reason,
            status="failed",
            error_code=event.error_code,
            failure_reason=event.reason,
            retry_count=event.retry_count,
        )
