"""Domain events for the JourneyEnrollment aggregate."""

from messaging.domain import messaging
from protean.fields import DateTime, Identifier, Integer, String


@messaging.event(part_of="JourneyEnrollment")
class UserEnrolled:
    """A user entered a journey."""

    __version__ = 1

    enrollment_id: Identifier(required=True)
    journey_id: Identifier(required=True)
    journey_key: String(required=True)
    journey_version: Integer(required=True)
    user_id: Identifier(required=True)
    step_id: String(required=True)
    next_execution_at: DateTime(required=True)
    enrolled_at: DateTime(required=True)


@messaging.event(part_of="JourneyEnrollment")
class EnrollmentAdvanced:
    """An enrollment moved on to another step."""

    __version__ = 1

    enrollment_id: Identifier(required=True)
    journey_id: Identifier(required=True)
    user_id: Identifier(required=True)
    from_step_id: String()
    step_id: String(required=True)
    next_execution_at: DateTime(required=True)


@messaging.event(part_of="JourneyEnrollment")
class EnrollmentCompleted:
    __version__ = 1

    enrollment_id: Identifier(required=True)
    journey_id: Identifier(required=True)
    journey_key: String(required=True)
    user_id: Identifier(required=True)
    completed_at: DateTime(required=True)


@messaging.event(part_of="JourneyEnrollment")
class EnrollmentExited:
    """An enrollment left its journey early (exit condition or exit event)."""

    __version__ = 1

    enrollment_id: Identifier(required=True)
    journey_id: Identifier(required=True)
    journey_key: String(required=True)
    user_id: Identifier(required=True)
    reason: String(required=True)
    previous_status: String()  # active or paused
    exited_at: DateTime(required=True)


@messaging.event(part_of="JourneyEnrollment")
class EnrollmentPaused:
    """An enrollment was frozen and needs operator attention."""

    __version__ = 1

    enrollment_id: Identifier(required=True)
    journey_id: Identifier(required=True)
    journey_key: String(required=True)
    user_id: Identifier(required=True)
    step_id: String()
    reason: String(required=True)
    paused_at: DateTime(required=True)


@messaging.event(part_of="JourneyEnrollment")
class EnrollmentResumed:
    __version__ = 1

    enrollment_id: Identifier(required=True)
    journey_id: Identifier(required=True)
    journey_key: String(required=True)
    user_id: Identifier(required=True)
    resumed_at: DateTime(required=True)
