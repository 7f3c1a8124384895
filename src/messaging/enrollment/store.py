"""Enrollment store — durable per-(journey, user) progress with compare-and-swap writes.

``due(now)`` yields enrollments lazily, one keyset page at a time, so the
poller never loads the whole table. Every write goes through a revision
check: a writer holding a stale copy gets ``StaleEnrollmentError`` instead of
overwriting another worker's progress. ``claim`` pushes the enrollment's
next execution time out by a lease so concurrent pollers skip it.

Atomicity is guaranteed within a process (one lock around check + write).
"""

import threading
from collections.abc import Iterator
from datetime import UTC, datetime

import structlog
from messaging.enrollment.enrollment import EnrollmentStatus, JourneyEnrollment
from messaging.errors import StaleEnrollmentError
from messaging.journey.journey import Journey
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

logger = structlog.get_logger(__name__)

_STORE_LOCK = threading.RLock()


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class EnrollmentStore:
    def __init__(self, page_size: int = 100):
        self.page_size = page_size

    @staticmethod
    def _repo():
        return current_domain.repository_for(JourneyEnrollment)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get(self, enrollment_id) -> JourneyEnrollment:
        return self._repo().get(enrollment_id)

    def for_user(self, journey_key, user_id) -> list[JourneyEnrollment]:
        """Every enrollment of a user in any version of a journey, newest first."""
        enrollments = self._repo()._dao.query.filter(journey_key=journey_key, user_id=str(user_id)).all().items
        return sorted(enrollments, key=lambda e: _aware(e.enrolled_at), reverse=True)

    def open_for_user(self, user_id) -> list[JourneyEnrollment]:
        """Active and paused enrollments of a user across all journeys."""
        enrollments = self._repo()._dao.query.filter(user_id=str(user_id)).all().items
        return [enrollment for enrollment in enrollments if enrollment.is_open]

    def count_open(self, journey_key) -> int:
        enrollments = self._repo()._dao.query.filter(journey_key=journey_key).all().items
        return sum(1 for enrollment in enrollments if enrollment.is_open)

    def due(self, now: datetime, page_size: int | None = None) -> Iterator[JourneyEnrollment]:
        """Yield active enrollments with ``next_execution_at <= now``, oldest first.

        Pages are keyed on ``next_execution_at``; ids already yielded are
        skipped, and a page made only of already-seen rows (many rows sharing
        one timestamp) is re-read with a doubled limit. Enrollments of
        inactive journeys are skipped.
        """
        page_size = page_size or self.page_size
        limit = page_size
        cursor = None
        seen: set[str] = set()
        journey_active: dict[str, bool] = {}

        while True:
            filters = {"status": EnrollmentStatus.ACTIVE.value, "next_execution_at__lte": now}
            if cursor is not None:
                filters["next_execution_at__gte"] = cursor
            page = self._repo()._dao.query.filter(**filters).order_by("next_execution_at").limit(limit).all().items

            fresh = [enrollment for enrollment in page if str(enrollment.id) not in seen]
            if not fresh:
                if len(page) < limit:
                    return
                limit *= 2
                continue

            exhausted = len(page) < limit
            limit = page_size
            for enrollment in fresh:
                seen.add(str(enrollment.id))
                cursor = enrollment.next_execution_at
                if not self._journey_is_active(enrollment.journey_id, journey_active):
                    continue
                yield enrollment
            if exhausted:
                return

    @staticmethod
    def _journey_is_active(journey_id, cache: dict) -> bool:
        key = str(journey_id)
        if key not in cache:
            try:
                cache[key] = bool(current_domain.repository_for(Journey).get(key).is_active)
            except ObjectNotFoundError:
                cache[key] = False
        return cache[key]

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def create_if_absent(self, enrollment: JourneyEnrollment, admit=None):
        """Insert ``enrollment`` unless the user already occupies the journey.

        ``admit(existing)`` is called under the store lock with the user's
        previous enrollments (newest first) and returns a rejection reason or
        None.

        Returns:
            (enrollment, created, reason): the new enrollment, or the
            blocking one (None when the rejection has no enrollment).
        """
        with _STORE_LOCK:
            existing = self.for_user(enrollment.journey_key, enrollment.user_id)
            for previous in existing:
                if previous.is_open:
                    return previous, False, "already_enrolled"
            if admit is not None:
                reason = admit(existing)
                if reason:
                    return (existing[0] if existing else None), False, reason
            self._write(enrollment)
            return enrollment, True, None

    def claim(self, enrollment: JourneyEnrollment, lease_until: datetime) -> JourneyEnrollment:
        """Hide a due enrollment from other pollers until ``lease_until``."""
        enrollment.reschedule(lease_until)
        return self._write(enrollment)

    def advance(self, enrollment: JourneyEnrollment, next_step_id: str, next_execution_at: datetime) -> JourneyEnrollment:
        enrollment.move_to(next_step_id, next_execution_at)
        return self._write(enrollment)

    def save(self, enrollment: JourneyEnrollment) -> JourneyEnrollment:
        return self._write(enrollment)

    def exit_open(self, journey_id, reason: str, at: datetime) -> list[JourneyEnrollment]:
        """Exit every active or paused enrollment pinned to ``journey_id``."""
        ended = []
        with _STORE_LOCK:
            enrollments = self._repo()._dao.query.filter(journey_id=str(journey_id)).all().items
            for enrollment in enrollments:
                if not enrollment.is_open:
                    continue
                enrollment.exit(reason, at)
                ended.append(self._write(enrollment))
        if ended:
            logger.info("Open enrollments exited", journey_id=str(journey_id), reason=reason, count=len(ended))
        return ended

    def _write(self, enrollment: JourneyEnrollment) -> JourneyEnrollment:
        repo = self._repo()
        with _STORE_LOCK:
            try:
                stored_revision = repo.get(enrollment.id).revision
            except ObjectNotFoundError:
                stored_revision = None

            expected = enrollment.revision or 0
            if (stored_revision is None and expected != 0) or (
                stored_revision is not None and stored_revision != expected
            ):
                logger.info(
                    "Enrollment write lost compare-and-swap",
                    enrollment_id=str(enrollment.id),
                    expected_revision=expected,
                    stored_revision=stored_revision,
                )
                raise StaleEnrollmentError(f"Enrollment {enrollment.id} changed since it was read")

            enrollment.revision = expected + 1
            repo.add(enrollment)
        return enrollment
