"""Delivery worker — executes due messages against channel senders.

For each claimed message the worker re-checks the channel policy, attempts
the send and applies the outcome:

    success                        → SENT, frequency counter incremented
    quiet hours / frequency limit  → deferred (still PENDING)
    transient failure, retries left→ retry scheduled with backoff (still PENDING)
    otherwise, fallback available  → switch channel, one attempt on it
    otherwise                      → FAILED + ``message.failed`` event

Retries honour a provider-suggested ``retry_after`` when it is longer than
the configured backoff delay.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from messaging.channel import get_channel
from messaging.channel.payloads import build_payload
from messaging.channel.port import SendResult
from messaging.errors import ErrorCode
from messaging.message.message import Message, MessageStatus
from messaging.policy.resolver import check_channel
from messaging.policy.snapshot import build_snapshot
from messaging.preference.management import find_preferences
from messaging.settings import get_settings
from messaging.templates import TEMPLATE_REGISTRY
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DeliveryOutcome:
    message_id: str
    status: str  # message status after the attempt
    channel: str
    error_code: str | None = None
    next_attempt_at: datetime | None = None

    @property
    def rescheduled(self) -> bool:
        return self.next_attempt_at is not None


def backoff_delay(retry_count: int, retry_after: timedelta | None = None) -> timedelta:
    """Delay before retry number ``retry_count + 1``; the last configured delay repeats."""
    delays = get_settings().retry_backoff_seconds
    delay = timedelta(seconds=delays[min(retry_count, len(delays) - 1)])
    if retry_after is not None and retry_after > delay:
        delay = retry_after
    return delay


def _error_code(result: SendResult) -> ErrorCode:
    try:
        return ErrorCode(result.error_code) if result.error_code else ErrorCode.DELIVERY_FAILED
    except ValueError:
        return ErrorCode.PROVIDER_ERROR


class DeliveryWorker:
    def __init__(self, counters, queue, recorder):
        self.counters = counters
        self.queue = queue
        self.recorder = recorder

    # -------------------------------------------------------------------
    # Queue draining
    # -------------------------------------------------------------------
    def drain(self, now: datetime | None = None, limit: int | None = None) -> list[DeliveryOutcome]:
        """Dispatch every message that is due at ``now``."""
        now = now or datetime.now(UTC)
        outcomes = []
        for message_id in self.queue.claim_due(now, limit):
            next_due = None
            try:
                outcome = self.dispatch_by_id(message_id, now)
                next_due = outcome.next_attempt_at
                outcomes.append(outcome)
            except ObjectNotFoundError:
                logger.error("Queued message not found", message_id=message_id)
            except Exception:
                # Keep the lane alive; the message is retried after the first backoff step
                next_due = now + backoff_delay(0)
                logger.exception("Message dispatch crashed", message_id=message_id)
            finally:
                self.queue.complete(message_id, next_due)
        return outcomes

    def dispatch_by_id(self, message_id, now: datetime | None = None) -> DeliveryOutcome:
        message = current_domain.repository_for(Message).get(message_id)
        return self.dispatch(message, now)

    # -------------------------------------------------------------------
    # Single message
    # -------------------------------------------------------------------
    def dispatch(self, message: Message, now: datetime | None = None) -> DeliveryOutcome:
        now = now or datetime.now(UTC)

        if not message.is_pending:
            logger.info(
                "Message not in pending status, skipping dispatch",
                message_id=str(message.id),
                status=message.status,
            )
            return self._outcome(message)

        template = TEMPLATE_REGISTRY.get(message.template_id)
        if template is None:
            return self._fail(message, ErrorCode.INVALID_TEMPLATE, f"Template {message.template_id} is gone", now)

        preference = find_preferences(message.user_id)
        if preference is None:
            return self._fail(message, ErrorCode.INVALID_RECIPIENT, f"Unknown user {message.user_id}", now)

        snapshot = build_snapshot(preference, self.counters, get_settings(), now)
        check = check_channel(snapshot, template, message.channel, message.priority, now)

        if check.code == ErrorCode.USER_OPTED_OUT:
            return self._fail(message, check.code, "User opted out of messaging", now)
        if check.time_blocked:
            message.defer(check.retry_at, check.code.value, now=now)
            self._save(message)
            logger.info(
                "Message deferred",
                message_id=str(message.id),
                channel=message.channel,
                error_code=check.code.value,
                deferred_until=str(check.retry_at),
            )
            return self._outcome(message, check.code.value, check.retry_at)
        if check.code == ErrorCode.CHANNEL_DISABLED:
            # Consent revoked after the message was queued
            return self._fall_back(message, snapshot, template, ErrorCode.CHANNEL_DISABLED, "Consent revoked", now)

        result = self._attempt(message)
        if result.succeeded:
            return self._mark_sent(message, result, now)

        code = _error_code(result)
        if result.retryable and code.retryable and message.can_retry:
            next_attempt_at = now + backoff_delay(message.retry_count, result.retry_after)
            message.schedule_retry(next_attempt_at, code.value, result.error, now=now)
            self._save(message)
            logger.warning(
                "Message delivery failed, retry scheduled",
                message_id=str(message.id),
                channel=message.channel,
                error_code=code.value,
                retry_count=message.retry_count,
                next_attempt_at=str(next_attempt_at),
            )
            return self._outcome(message, code.value, next_attempt_at)

        return self._fall_back(message, snapshot, template, code, result.error, now)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _attempt(self, message: Message) -> SendResult:
        try:
            return get_channel(message.channel).send(build_payload(message))
        except Exception as exc:
            logger.error(
                "Channel sender raised",
                message_id=str(message.id),
                channel=message.channel,
                error=str(exc),
            )
            return SendResult(status="failed", error=str(exc), error_code=ErrorCode.PROVIDER_ERROR.value)

    def _fall_back(self, message, snapshot, template, code, reason, now) -> DeliveryOutcome:
        """Attempt the fallback channel exactly once, or fail the message."""
        if not message.can_fall_back:
            return self._fail(message, code, reason, now)

        fallback = message.fallback_channel
        check = check_channel(snapshot, template, fallback, message.priority, now)
        if not check.eligible or fallback not in {c.value for c in template.channels}:
            logger.info(
                "Fallback channel not eligible",
                message_id=str(message.id),
                channel=fallback,
                error_code=check.code.value if check.code else None,
            )
            return self._fail(message, code, reason, now)

        rendered = template.render(
            fallback,
            message.variables_dict(),
            user_id=message.user_id,
            ab_testing=get_settings().ab_testing_enabled,
        )
        from_channel = message.channel
        message.switch_to_fallback(rendered.subject, rendered.body, rendered.cta_label, rendered.cta_url, now=now)
        logger.info(
            "Falling back to secondary channel",
            message_id=str(message.id),
            from_channel=from_channel,
            channel=fallback,
        )

        result = self._attempt(message)
        if result.succeeded:
            return self._mark_sent(message, result, now)
        return self._fail(message, _error_code(result), result.error, now)

    def _mark_sent(self, message, result, now) -> DeliveryOutcome:
        message.mark_sent(result.provider_message_id, sent_at=now)
        self._save(message)

        self.counters.increment_sent(message.user_id, message.channel, now)
        self.counters.record_engagement(message.user_id, message.channel, "sent", now)
        self.recorder.record(
            "message.sent",
            user_id=message.user_id,
            message_id=message.id,
            journey_id=message.journey_id,
            enrollment_id=message.enrollment_id,
            channel=message.channel,
            payload={"template_id": message.template_id, "provider_message_id": result.provider_message_id},
            occurred_at=now,
        )
        logger.info(
            "Message sent",
            message_id=str(message.id),
            user_id=str(message.user_id),
            channel=message.channel,
        )
        return self._outcome(message)

    def _fail(self, message, code: ErrorCode, reason, now) -> DeliveryOutcome:
        message.mark_failed(code.value, reason, failed_at=now)
        self._save(message)

        self.counters.record_engagement(message.user_id, message.channel, "failed", now)
        self.recorder.record(
            "message.failed",
            user_id=message.user_id,
            message_id=message.id,
            journey_id=message.journey_id,
            enrollment_id=message.enrollment_id,
            channel=message.channel,
            payload={
                "template_id": message.template_id,
                "error_code": code.value,
                "reason": reason,
                "retry_count": message.retry_count,
                "fallback_attempted": message.fallback_attempted,
            },
            occurred_at=now,
        )
        logger.error(
            "Message delivery failed permanently",
            message_id=str(message.id),
            user_id=str(message.user_id),
            channel=message.channel,
            error_code=code.value,
            reason=reason,
        )
        return self._outcome(message, code.value)

    @staticmethod
    def _save(message):
        current_domain.repository_for(Message).add(message)

    @staticmethod
    def _outcome(message, error_code=None, next_attempt_at=None) -> DeliveryOutcome:
        return DeliveryOutcome(
            message_id=str(message.id),
            status=message.status,
            channel=message.channel,
            error_code=error_code,
            next_attempt_at=next_attempt_at if message.status == MessageStatus.PENDING.value else None,
        )
