"""Journey engine — enrolls users and walks their enrollments through the step graph.

Enrollment happens on an event trigger, a scheduled trigger (date offset or
inactivity, evaluated on the clock tick) or a manual request. Due
enrollments are claimed from the enrollment store and run through an
interpreter loop:

    conditions  → exit (enrollment EXITED) > branch (jump) > skip (no action)
    action      → done / skipped: move on; defer: same step later;
                  retry: same step after backoff; pause: operator alert
    next step   → due now: keep going (bounded hops); later: stop
    no next     → enrollment COMPLETED

Exit events are checked on every recorded event, independently of the
clock, so a purchase ends a win-back journey before its next step runs.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

import structlog
from messaging.enrollment.enrollment import JOURNEY_DEACTIVATED, JourneyEnrollment
from messaging.errors import ConditionEvaluationError, StaleEnrollmentError
from messaging.journey.actions import ActionExecutor, ActionOutcome
from messaging.journey.definition import ActionType, ConditionEffect, TriggerType
from messaging.journey.journey import Journey
from messaging.journey.management import active_journeys, find_journey
from messaging.message.delivery import backoff_delay
from messaging.message.message import Priority
from messaging.policy.quiet_hours import next_allowed_time
from messaging.preference.management import find_preferences
from messaging.settings import get_settings
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

logger = structlog.get_logger(__name__)

_CAS_ATTEMPTS = 3


@dataclass
class EnrollInJourneyRequest:
    user_id: str
    journey_id: str  # journey id, or key of the newest published version
    dog_id: str | None = None
    context: dict = field(default_factory=dict)
    start_at: datetime | None = None


@dataclass
class EnrollInJourneyResponse:
    status: str  # "enrolled", "already_enrolled" or "failed"
    enrollment_id: str | None = None
    next_execution_at: datetime | None = None
    reason: str | None = None


class JourneyEngine:
    def __init__(self, store, dispatcher, recorder, directory, webhooks):
        self.store = store
        self.recorder = recorder
        self.directory = directory
        self.executor = ActionExecutor(dispatcher, directory, webhooks)

    # -------------------------------------------------------------------
    # Enrollment
    # -------------------------------------------------------------------
    def enroll(self, request: EnrollInJourneyRequest, now: datetime | None = None) -> EnrollInJourneyResponse:
        now = now or datetime.now(UTC)
        if not get_settings().journeys_enabled:
            return EnrollInJourneyResponse(status="failed", reason="journeys_disabled")

        try:
            journey = find_journey(request.journey_id)
        except ObjectNotFoundError:
            return EnrollInJourneyResponse(status="failed", reason="journey_not_found")
        if not journey.is_active:
            return EnrollInJourneyResponse(status="failed", reason="journey_inactive")

        definition = journey.parsed_definition()
        settings = definition.settings
        first = definition.first_step
        start = request.start_at if request.start_at and request.start_at > now else now

        enrollment = JourneyEnrollment.create(
            journey,
            user_id=request.user_id,
            step_id=first.id,
            next_execution_at=self._schedule(request.user_id, first, settings, start),
            dog_id=request.dog_id,
            context=request.context,
            now=now,
        )

        def admit(previous):
            previous = [enrollment for enrollment in previous if enrollment.exit_reason != JOURNEY_DEACTIVATED]
            if previous:
                latest = previous[0]
                if not settings.allow_re_entry:
                    return "re_entry_not_allowed"
                if not latest.re_entry_allowed(settings.re_entry_cooldown_days, now):
                    return "re_entry_cooldown"
            if settings.max_participants and self.store.count_open(journey.key) >= settings.max_participants:
                return "journey_full"
            return None

        stored, created, reason = self.store.create_if_absent(enrollment, admit)
        if not created:
            logger.info(
                "Enrollment rejected",
                journey_id=str(journey.id),
                journey_key=journey.key,
                user_id=str(request.user_id),
                reason=reason,
            )
            status = "failed" if reason == "journey_full" else "already_enrolled"
            return EnrollInJourneyResponse(
                status=status,
                enrollment_id=str(stored.id) if stored is not None and status == "already_enrolled" else None,
                next_execution_at=stored.next_execution_at if stored is not None and stored.is_open else None,
                reason=reason,
            )

        self.recorder.record(
            "journey.enrolled",
            user_id=request.user_id,
            journey_id=journey.id,
            enrollment_id=stored.id,
            payload={"journey_key": journey.key, "version": journey.version},
            occurred_at=now,
        )
        logger.info(
            "User enrolled in journey",
            journey_id=str(journey.id),
            journey_key=journey.key,
            user_id=str(request.user_id),
            enrollment_id=str(stored.id),
            next_execution_at=str(stored.next_execution_at),
        )
        return EnrollInJourneyResponse(
            status="enrolled",
            enrollment_id=str(stored.id),
            next_execution_at=stored.next_execution_at,
        )

    def resume(self, enrollment_id, now: datetime | None = None) -> JourneyEnrollment:
        """Reactivate a paused enrollment; its current step runs on the next tick."""
        now = now or datetime.now(UTC)
        enrollment = self.store.get(enrollment_id)
        enrollment.resume(now)
        self.store.save(enrollment)
        logger.info("Enrollment resumed", enrollment_id=str(enrollment.id), journey_key=enrollment.journey_key)
        return enrollment

    # -------------------------------------------------------------------
    # Event-driven triggers and exits
    # -------------------------------------------------------------------
    def handle_event(self, event):
        """React to a recorded communication event (recorder listener).

        Exit events apply even while journeys are disabled; only triggers are gated.
        """
        if not event.user_id or event.event_type.startswith("journey."):
            return

        at = event.occurred_at
        if not event.event_type.startswith("message."):
            self.directory.record_activity(event.user_id, at)

        self._apply_exit_events(event.user_id, event.event_type, at)

        if not get_settings().journeys_enabled:
            return

        payload = event.payload_dict()
        profile = None
        for journey in active_journeys(TriggerType.EVENT.value):
            if journey.trigger_event != event.event_type:
                continue
            if profile is None:
                profile = self.directory.profile(event.user_id) or {}
            trigger = journey.parsed_definition().trigger
            try:
                matched = trigger.matches(event.event_type, {"event": payload, "profile": profile})
            except ConditionEvaluationError as exc:
                logger.error(
                    "Journey trigger condition could not be evaluated",
                    alert=True,
                    journey_id=str(journey.id),
                    user_id=str(event.user_id),
                    error=str(exc),
                )
                continue
            if matched:
                self.enroll(EnrollInJourneyRequest(user_id=event.user_id, journey_id=str(journey.id), context=payload), at)

    def _apply_exit_events(self, user_id, event_type, at):
        definitions = {}
        for enrollment in self.store.open_for_user(user_id):
            key = str(enrollment.journey_id)
            if key not in definitions:
                definitions[key] = current_domain.repository_for(Journey).get(key).parsed_definition()
            if event_type not in definitions[key].settings.exit_events:
                continue
            if self._exit(enrollment, f"exit_event:{event_type}", at):
                logger.info(
                    "Enrollment exited on event",
                    enrollment_id=str(enrollment.id),
                    journey_key=enrollment.journey_key,
                    user_id=str(user_id),
                    event_type=event_type,
                )

    def _exit(self, enrollment, reason, at) -> bool:
        """Exit an open enrollment, re-reading it when another writer got there first."""
        for _ in range(_CAS_ATTEMPTS):
            if not enrollment.is_open:
                return False
            enrollment.exit(reason, at)
            try:
                self.store.save(enrollment)
                return True
            except StaleEnrollmentError:
                enrollment = self.store.get(enrollment.id)
        raise StaleEnrollmentError(f"Enrollment {enrollment.id} kept changing")

    # -------------------------------------------------------------------
    # Scheduled triggers
    # -------------------------------------------------------------------
    def evaluate_scheduled_triggers(self, now: datetime | None = None) -> int:
        """Enroll users whose date offset is today or whose inactivity crossed the threshold."""
        now = now or datetime.now(UTC)
        if not get_settings().journeys_enabled:
            return 0

        enrolled = 0
        for journey in active_journeys():
            trigger = journey.parsed_definition().trigger
            if trigger.type not in (TriggerType.DATE_OFFSET, TriggerType.INACTIVITY):
                continue
            tz = ZoneInfo(journey.parsed_definition().settings.timezone)
            for user_id in self.directory.user_ids():
                profile = self.directory.profile(user_id)
                if not profile or not self._scheduled_trigger_due(trigger, profile, now, tz):
                    continue
                try:
                    if not all(condition.evaluate({"profile": profile}) for condition in trigger.conditions):
                        continue
                except ConditionEvaluationError as exc:
                    logger.error(
                        "Journey trigger condition could not be evaluated",
                        alert=True,
                        journey_id=str(journey.id),
                        user_id=str(user_id),
                        error=str(exc),
                    )
                    continue
                response = self.enroll(EnrollInJourneyRequest(user_id=user_id, journey_id=str(journey.id)), now)
                enrolled += response.status == "enrolled"
        return enrolled

    @staticmethod
    def _scheduled_trigger_due(trigger, profile, now, tz) -> bool:
        if trigger.type == TriggerType.DATE_OFFSET:
            anchor = _as_date(profile.get(trigger.date_property))
            if anchor is None:
                return False
            return now.astimezone(tz).date() == anchor + timedelta(days=trigger.offset_days)

        last_active = profile.get("last_active_at")
        if last_active is None:
            return False
        if last_active.tzinfo is None:
            last_active = last_active.replace(tzinfo=UTC)
        return now - last_active >= timedelta(days=trigger.inactivity_days)

    # -------------------------------------------------------------------
    # Step execution
    # -------------------------------------------------------------------
    def process_due(self, now: datetime | None = None) -> list[str]:
        """Claim and run every due enrollment. Returns the ids that were processed."""
        now = now or datetime.now(UTC)
        settings = get_settings()
        if not settings.journeys_enabled:
            return []

        lease_until = now + timedelta(seconds=settings.claim_lease_seconds)
        processed = []
        for enrollment in self.store.due(now):
            try:
                self.store.claim(enrollment, lease_until)
            except StaleEnrollmentError:
                continue  # claimed by another worker
            try:
                self._run(enrollment, now)
            except StaleEnrollmentError:
                logger.info("Enrollment changed while running, skipped", enrollment_id=str(enrollment.id))
            except Exception:
                # The lease expires and the step is retried on a later tick
                logger.exception("Enrollment step crashed", enrollment_id=str(enrollment.id))
            processed.append(str(enrollment.id))
        return processed

    def tick(self, now: datetime | None = None) -> dict:
        now = now or datetime.now(UTC)
        enrolled = self.evaluate_scheduled_triggers(now)
        processed = self.process_due(now)
        return {"enrolled": enrolled, "processed": len(processed)}

    def _run(self, enrollment: JourneyEnrollment, now: datetime):
        journey = current_domain.repository_for(Journey).get(enrollment.journey_id)
        definition = journey.parsed_definition()
        settings = definition.settings
        max_hops = get_settings().max_step_hops

        for _ in range(max_hops):
            step = definition.step(enrollment.current_step_id)
            context = self._context(enrollment)

            try:
                effect, branch = self._evaluate_conditions(step, context)
            except ConditionEvaluationError as exc:
                self._pause(enrollment, f"condition_error: {exc}", now)
                return

            next_step_id = step.next
            if effect == ConditionEffect.EXIT:
                enrollment.record_step(step.id, "condition", "exit", now)
                enrollment.exit(f"condition:{step.id}", now)
                self.store.save(enrollment)
                logger.info("Enrollment exited on condition", enrollment_id=str(enrollment.id), step_id=step.id)
                return
            elif effect == ConditionEffect.BRANCH:
                enrollment.record_step(step.id, "condition", f"branch:{branch}", now)
                next_step_id = definition.branches[branch]
            elif effect == ConditionEffect.SKIP or step.action is None:
                enrollment.record_step(step.id, "condition" if step.action else "none", "skipped", now)
            else:
                outcome = self.executor.execute(step, enrollment, settings, now)
                if not self._apply_outcome(enrollment, step, outcome, now):
                    return

            if next_step_id is None:
                enrollment.complete(now)
                self.store.save(enrollment)
                logger.info("Enrollment completed", enrollment_id=str(enrollment.id), journey_key=enrollment.journey_key)
                return

            next_step = definition.step(next_step_id)
            next_at = self._schedule(enrollment.user_id, next_step, settings, now)
            self.store.advance(enrollment, next_step_id, next_at)
            if not journey.is_active or next_at > now:
                return

        logger.warning("Step hop limit reached", enrollment_id=str(enrollment.id), step_id=enrollment.current_step_id)

    def _apply_outcome(self, enrollment, step, outcome: ActionOutcome, now) -> bool:
        """Record an action outcome. Returns True when the enrollment moves on."""
        action = step.action.type.value
        sent = outcome.status == "done" and step.action.type == ActionType.SEND_MESSAGE
        enrollment.record_step(
            step.id,
            action,
            "queued" if sent else outcome.status,
            now,
            message_id=outcome.message_id,
            detail=outcome.detail,
        )

        if outcome.status in ("done", "skipped"):
            return True

        if outcome.status == "defer":
            enrollment.reschedule(outcome.retry_at)
            self.store.save(enrollment)
            logger.info(
                "Journey step deferred",
                enrollment_id=str(enrollment.id),
                step_id=step.id,
                reason=outcome.detail,
                until=str(outcome.retry_at),
            )
        elif outcome.status == "retry":
            enrollment.action_attempts = (enrollment.action_attempts or 0) + 1
            if enrollment.action_attempts > get_settings().webhook_max_retries:
                self._pause(enrollment, f"{action}_failed: {outcome.detail}", now)
                return False
            enrollment.reschedule(now + backoff_delay(enrollment.action_attempts - 1))
            self.store.save(enrollment)
            logger.warning(
                "Journey action failed, retry scheduled",
                enrollment_id=str(enrollment.id),
                step_id=step.id,
                attempts=enrollment.action_attempts,
                error=outcome.detail,
            )
        else:
            self._pause(enrollment, f"{action}_failed: {outcome.detail}", now)
        return False

    def _pause(self, enrollment, reason, now):
        enrollment.pause(reason, now)
        self.store.save(enrollment)
        logger.error(
            "Journey enrollment paused",
            alert=True,
            enrollment_id=str(enrollment.id),
            journey_id=str(enrollment.journey_id),
            user_id=str(enrollment.user_id),
            step_id=enrollment.current_step_id,
            reason=reason,
        )
        self.recorder.record(
            "journey.paused",
            user_id=enrollment.user_id,
            journey_id=enrollment.journey_id,
            enrollment_id=enrollment.id,
            payload={"reason": reason, "step_id": enrollment.current_step_id},
            occurred_at=now,
        )

    @staticmethod
    def _evaluate_conditions(step, context):
        """Evaluate every condition; exit beats branch beats skip."""
        matched = [condition for condition in step.conditions if condition.evaluate(context)]
        for effect in (ConditionEffect.EXIT, ConditionEffect.BRANCH, ConditionEffect.SKIP):
            for condition in matched:
                if condition.effect == effect:
                    return effect, condition.branch
        return None, None

    def _context(self, enrollment) -> dict:
        return {
            "profile": self.directory.profile(enrollment.user_id) or {},
            "context": enrollment.context(),
            "enrollment": {
                "id": str(enrollment.id),
                "journey_key": enrollment.journey_key,
                "step_id": enrollment.current_step_id,
                "steps_completed": len(enrollment.history()),
            },
        }

    @staticmethod
    def _schedule(user_id, step, settings, base: datetime) -> datetime:
        """Execution time of ``step``: base + delay, moved out of quiet hours for non-critical sends."""
        at = base + step.delay.as_timedelta()
        if settings.respect_quiet_hours and step.action is not None and step.action.type == ActionType.SEND_MESSAGE:
            preference = find_preferences(user_id)
            if preference is not None and not (
                step.action.priority == Priority.CRITICAL and preference.quiet_hours_critical_bypass is not False
            ):
                at = next_allowed_time(
                    preference.quiet_hours_start,
                    preference.quiet_hours_end,
                    preference.timezone or "UTC",
                    at,
                )
        return at


def _as_date(value) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        return None
