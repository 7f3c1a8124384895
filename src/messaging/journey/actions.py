"""Journey step actions — send a message, update the profile, call a webhook."""

from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from messaging.errors import ErrorCode
from messaging.journey.definition import ActionType
from messaging.message.dispatch import SendMessageRequest

logger = structlog.get_logger(__name__)

# Send rejections that skip the step instead of stopping the journey
_SKIPPABLE = {
    ErrorCode.CHANNEL_DISABLED.value,
    ErrorCode.USER_OPTED_OUT.value,
    ErrorCode.INVALID_RECIPIENT.value,
}


@dataclass(frozen=True)
class ActionOutcome:
    status: str  # "done", "skipped", "defer", "retry" or "pause"
    detail: str | None = None
    message_id: str | None = None
    retry_at: datetime | None = None


class ActionExecutor:
    def __init__(self, dispatcher, directory, webhooks):
        self.dispatcher = dispatcher
        self.directory = directory
        self.webhooks = webhooks

    def execute(self, step, enrollment, settings, now: datetime) -> ActionOutcome:
        action = step.action
        if action.type == ActionType.SEND_MESSAGE:
            return self._send_message(step, enrollment, settings, now)
        elif action.type == ActionType.WEBHOOK:
            return self._call_webhook(step, enrollment)
        elif action.type == ActionType.UPDATE_PROPERTY:
            return self._update_profile(self.directory.set_property, enrollment.user_id, action.property, action.value)
        elif action.type == ActionType.ADD_TAG:
            return self._update_profile(self.directory.add_tag, enrollment.user_id, action.tag)
        elif action.type == ActionType.REMOVE_TAG:
            return self._update_profile(self.directory.remove_tag, enrollment.user_id, action.tag)
        raise ValueError(f"Unknown action type: {action.type}")

    # -------------------------------------------------------------------
    # send_message
    # -------------------------------------------------------------------
    def _send_message(self, step, enrollment, settings, now) -> ActionOutcome:
        release = journey_cap_release(enrollment, settings, now)
        if release is not None:
            return ActionOutcome(status="defer", detail="journey_frequency_cap", retry_at=release)

        action = step.action
        request = SendMessageRequest(
            user_id=str(enrollment.user_id),
            template_id=action.template_id,
            variables={**enrollment.context(), **action.variables},
            dog_id=str(enrollment.dog_id) if enrollment.dog_id else None,
            channel=action.channel.value if action.channel else None,
            fallback_channel=action.fallback_channel.value if action.fallback_channel else None,
            priority=action.priority.value if action.priority else None,
            journey_id=str(enrollment.journey_id),
            step_id=step.id,
            enrollment_id=str(enrollment.id),
        )
        response = self.dispatcher.send(request, now=now)

        if response.succeeded:
            return ActionOutcome(status="done", detail=response.status, message_id=response.message_id)
        if response.error_code in _SKIPPABLE:
            return ActionOutcome(status="skipped", detail=response.error_code)
        return ActionOutcome(status="pause", detail=f"{response.error_code}: {response.error_message}")

    # -------------------------------------------------------------------
    # webhook
    # -------------------------------------------------------------------
    def _call_webhook(self, step, enrollment) -> ActionOutcome:
        action = step.action
        payload = {
            **action.payload,
            "user_id": str(enrollment.user_id),
            "journey_id": str(enrollment.journey_id),
            "journey_key": enrollment.journey_key,
            "enrollment_id": str(enrollment.id),
            "step_id": step.id,
            "context": enrollment.context(),
        }
        result = self.webhooks.post(action.url, payload, action.headers)
        if result.ok:
            return ActionOutcome(status="done", detail=str(result.status_code))
        return ActionOutcome(status="retry", detail=result.error)

    # -------------------------------------------------------------------
    # profile updates
    # -------------------------------------------------------------------
    @staticmethod
    def _update_profile(update, *args) -> ActionOutcome:
        try:
            update(*args)
        except KeyError as exc:
            return ActionOutcome(status="pause", detail=str(exc))
        return ActionOutcome(status="done")


def journey_cap_release(enrollment, settings, now: datetime) -> datetime | None:
    """When the journey's own daily/weekly message cap is reached, the time it frees up."""
    releases = []
    for cap, window in (
        (settings.max_messages_per_day, timedelta(days=1)),
        (settings.max_messages_per_week, timedelta(days=7)),
    ):
        if cap is None:
            continue
        since = now - window
        if enrollment.messages_sent_since(since) >= cap:
            releases.append(enrollment.oldest_send_since(since) + window)
    return max(releases) if releases else None
