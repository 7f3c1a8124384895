"""JourneyEnrollment aggregate — one user's progress through one journey version.

State Machine:
    ACTIVE → COMPLETED
    ACTIVE → EXITED
    ACTIVE ⇄ PAUSED
    PAUSED → EXITED

``next_execution_at`` is always set: the engine polls for enrollments whose
time has come. ``revision`` is bumped by the enrollment store on every write
and is the compare-and-swap token that keeps two workers from advancing the
same enrollment.
"""

import json
from datetime import UTC, datetime, timedelta
from enum import Enum

from messaging.domain import messaging
from messaging.enrollment.events import (
    EnrollmentAdvanced,
    EnrollmentCompleted,
    EnrollmentExited,
    EnrollmentPaused,
    EnrollmentResumed,
    UserEnrolled,
)
from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String, Text


class EnrollmentStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXITED = "exited"
    PAUSED = "paused"


_VALID_TRANSITIONS = {
    EnrollmentStatus.ACTIVE: {
        EnrollmentStatus.COMPLETED,
        EnrollmentStatus.EXITED,
        EnrollmentStatus.PAUSED,
    },
    EnrollmentStatus.PAUSED: {
        EnrollmentStatus.ACTIVE,
        EnrollmentStatus.EXITED,
    },
    EnrollmentStatus.COMPLETED: set(),  # Terminal
    EnrollmentStatus.EXITED: set(),  # Terminal
}

# Exit reason for enrollments ended because their journey version was deactivated.
# Such an exit does not count against re-entry rules.
JOURNEY_DEACTIVATED = "journey_deactivated"


@messaging.aggregate
class JourneyEnrollment:
    """Progress record keyed by (journey, user, enrollment id)."""

    # Journey version this enrollment is pinned to
    journey_id: Identifier(required=True)
    journey_key: String(max_length=100, required=True)
    journey_version: Integer(default=1)

    # Participant
    user_id: Identifier(required=True)
    dog_id: Identifier()
    context_data: Text()  # JSON: enrollment context merged into message variables

    # Position
    current_step_id: String(max_length=100)
    next_execution_at: DateTime(required=True)
    status: String(choices=EnrollmentStatus, default=EnrollmentStatus.ACTIVE.value)

    # Outcome
    enrolled_at: DateTime()
    completed_at: DateTime()
    exited_at: DateTime()
    exit_reason: String(max_length=200)
    paused_at: DateTime()
    pause_reason: String(max_length=500)

    # JSON list of {"step_id", "action", "outcome", "at", "message_id", "detail"}
    step_history: Text()
    action_attempts: Integer(default=0)  # failed attempts of the current step's action

    # Compare-and-swap token
    revision: Integer(default=0)

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, journey, user_id, step_id, next_execution_at, dog_id=None, context=None, now=None):
        now = now or datetime.now(UTC)

        enrollment = cls(
            journey_id=str(journey.id),
            journey_key=journey.key,
            journey_version=journey.version,
            user_id=user_id,
            dog_id=dog_id,
            context_data=json.dumps(context or {}, default=str),
            current_step_id=step_id,
            next_execution_at=next_execution_at,
            status=EnrollmentStatus.ACTIVE.value,
            enrolled_at=now,
            step_history=json.dumps([]),
            action_attempts=0,
            revision=0,
        )

        enrollment.raise_(
            UserEnrolled(
                enrollment_id=str(enrollment.id),
                journey_id=str(journey.id),
                journey_key=journey.key,
                journey_version=journey.version,
                user_id=str(user_id),
                step_id=step_id,
                next_execution_at=next_execution_at,
                enrolled_at=now,
            )
        )

        return enrollment

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_active(self) -> bool:
        return self.status == EnrollmentStatus.ACTIVE.value

    @property
    def is_open(self) -> bool:
        """Active or paused: the user still occupies the journey."""
        return self.status in (EnrollmentStatus.ACTIVE.value, EnrollmentStatus.PAUSED.value)

    @property
    def ended_at(self):
        return self.completed_at or self.exited_at

    def context(self) -> dict:
        return json.loads(self.context_data) if self.context_data else {}

    def history(self) -> list[dict]:
        return json.loads(self.step_history) if self.step_history else []

    def messages_sent_since(self, since: datetime) -> int:
        """Messages this enrollment queued at or after ``since``."""
        count = 0
        for entry in self.history():
            if entry.get("action") == "send_message" and entry.get("outcome") == "queued":
                if datetime.fromisoformat(entry["at"]) >= since:
                    count += 1
        return count

    def oldest_send_since(self, since: datetime) -> datetime | None:
        times = [
            datetime.fromisoformat(entry["at"])
            for entry in self.history()
            if entry.get("action") == "send_message" and entry.get("outcome") == "queued"
        ]
        times = [at for at in times if at >= since]
        return min(times) if times else None

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        current = EnrollmentStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def _assert_active(self, action):
        if not self.is_active:
            raise ValidationError({"status": [f"Cannot {action} an enrollment in {self.status} status"]})

    def record_step(self, step_id, action, outcome, at, message_id=None, detail=None):
        """Append an entry to the step history."""
        history = self.history()
        history.append(
            {
                "step_id": step_id,
                "action": action,
                "outcome": outcome,
                "at": at.isoformat(),
                "message_id": str(message_id) if message_id else None,
                "detail": detail,
            }
        )
        self.step_history = json.dumps(history, default=str)

    def reschedule(self, next_execution_at):
        """Move the next execution time without changing step (lease, retry or deferral)."""
        self._assert_active("reschedule")
        self.next_execution_at = next_execution_at

    def move_to(self, step_id, next_execution_at):
        self._assert_active("advance")

        from_step = self.current_step_id
        self.current_step_id = step_id
        self.next_execution_at = next_execution_at
        self.action_attempts = 0

        self.raise_(
            EnrollmentAdvanced(
                enrollment_id=str(self.id),
                journey_id=str(self.journey_id),
                user_id=str(self.user_id),
                from_step_id=from_step,
                step_id=step_id,
                next_execution_at=next_execution_at,
            )
        )

    def complete(self, at=None):
        self._assert_can_transition(EnrollmentStatus.COMPLETED)

        now = at or datetime.now(UTC)
        self.status = EnrollmentStatus.COMPLETED.value
        self.completed_at = now
        self.next_execution_at = now

        self.raise_(
            EnrollmentCompleted(
                enrollment_id=str(self.id),
                journey_id=str(self.journey_id),
                journey_key=self.journey_key,
                user_id=str(self.user_id),
                completed_at=now,
            )
        )

    def exit(self, reason, at=None):
        self._assert_can_transition(EnrollmentStatus.EXITED)

        previous_status = self.status
        now = at or datetime.now(UTC)
        self.status = EnrollmentStatus.EXITED.value
        self.exited_at = now
        self.exit_reason = reason
        self.next_execution_at = now

        self.raise_(
            EnrollmentExited(
                enrollment_id=str(self.id),
                journey_id=str(self.journey_id),
                journey_key=self.journey_key,
                user_id=str(self.user_id),
                reason=reason,
                previous_status=previous_status,
                exited_at=now,
            )
        )

    def pause(self, reason, at=None):
        self._assert_can_transition(EnrollmentStatus.PAUSED)

        now = at or datetime.now(UTC)
        self.status = EnrollmentStatus.PAUSED.value
        self.paused_at = now
        self.pause_reason = reason

        self.raise_(
            EnrollmentPaused(
                enrollment_id=str(self.id),
                journey_id=str(self.journey_id),
                journey_key=self.journey_key,
                user_id=str(self.user_id),
                step_id=self.current_step_id,
                reason=reason,
                paused_at=now,
            )
        )

    def resume(self, at=None):
        """Reactivate a paused enrollment; its current step is due immediately."""
        self._assert_can_transition(EnrollmentStatus.ACTIVE)

        now = at or datetime.now(UTC)
        self.status = EnrollmentStatus.ACTIVE.value
        self.paused_at = None
        self.pause_reason = None
        self.action_attempts = 0
        self.next_execution_at = now

        self.raise_(
            EnrollmentResumed(
                enrollment_id=str(self.id),
                journey_id=str(self.journey_id),
                journey_key=self.journey_key,
                user_id=str(self.user_id),
                resumed_at=now,
            )
        )

    def re_entry_allowed(self, cooldown_days, now) -> bool:
        """True when this ended enrollment no longer blocks a new one."""
        ended = self.ended_at
        if ended is None:
            return False
        if ended.tzinfo is None:
            ended = ended.replace(tzinfo=UTC)
        return now >= ended + timedelta(days=cooldown_days)
