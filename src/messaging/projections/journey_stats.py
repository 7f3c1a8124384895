"""JourneyStats — enrollment counts per journey version."""

from messaging.domain import messaging
from messaging.enrollment.enrollment import JourneyEnrollment
from messaging.enrollment.events import (
    EnrollmentCompleted,
    EnrollmentExited,
    EnrollmentPaused,
    EnrollmentResumed,
    UserEnrolled,
)
from protean.core.projector import on
from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain


@messaging.projection
class JourneyStats:
    journey_id: Identifier(identifier=True, required=True)
    journey_key: String(required=True)
    entered: Integer(default=0)
    active: Integer(default=0)
    paused: Integer(default=0)
    completed: Integer(default=0)
    exited: Integer(default=0)
    updated_at: DateTime()


@messaging.projector(projector_for=JourneyStats, aggregates=[JourneyEnrollment])
class JourneyStatsProjector:
    def _bump(self, journey_id, journey_key, at, **deltas):
        repo = current_domain.repository_for(JourneyStats)
        try:
            stats = repo.get(journey_id)
        except ObjectNotFoundError:
            stats = JourneyStats(journey_id=journey_id, journey_key=journey_key)
        for counter, delta in deltas.items():
            setattr(stats, counter, max((getattr(stats, counter) or 0) + delta, 0))
        stats.updated_at = at
        repo.add(stats)

    @on(UserEnrolled)
    def on_user_enrolled(self, event):
        self._bump(event.journey_id, event.journey_key, event.enrolled_at, entered=1, active=1)

    @on(EnrollmentCompleted)
    def on_enrollment_completed(self, event):
        self._bump(event.journey_id, event.journey_key, event.completed_at, active=-1, completed=1)

    @on(EnrollmentExited)
    def on_enrollment_exited(self, event):
        if event.previous_status == "paused":
            self._bump(event.journey_id, event.journey_key, event.exited_at, paused=-1, exited=1)
        else:
            self._bump(event.journey_id, event.journey_key, event.exited_at, active=-1, exited=1)

    @on(EnrollmentPaused)
    def on_enrollment_paused(self, event):
        self._bump(event.journey_id, event.journey_key, event.paused_at, active=-1, paused=1)

    @on(EnrollmentResumed)
    def on_enrollment_resumed(self, event):
        self._bump(event.journey_id, event.journey_key, event.resumed_at, paused=-1, active=1)
