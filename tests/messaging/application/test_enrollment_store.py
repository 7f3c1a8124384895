"""Tests for EnrollmentStore — compare-and-swap writes, uniqueness and due paging."""

import threading
from datetime import timedelta

import pytest
from messaging.domain import messaging
from messaging.enrollment.enrollment import JourneyEnrollment
from messaging.enrollment.store import EnrollmentStore
from messaging.errors import StaleEnrollmentError
from messaging.journey.management import DeactivateJourney, find_journey
from protean import current_domain

DEFINITION = {
    "name": "Tagging",
    "trigger": {"type": "manual"},
    "steps": [{"id": "tag", "action": {"type": "add_tag", "tag": "seen"}}],
}


@pytest.fixture
def journey(launch_journey):
    return find_journey(launch_journey("TAGS", DEFINITION))


@pytest.fixture
def store():
    return EnrollmentStore(page_size=2)


def _enrollment(journey, user_id, at):
    return JourneyEnrollment.create(journey, user_id=user_id, step_id="tag", next_execution_at=at, now=at)


class TestCompareAndSwap:
    def test_writes_bump_the_revision(self, store, journey, now):
        enrollment, created, reason = store.create_if_absent(_enrollment(journey, "user-001", now))
        assert (created, reason) == (True, None)
        assert store.get(enrollment.id).revision == 1

        store.claim(enrollment, now + timedelta(minutes=5))
        assert store.get(enrollment.id).revision == 2

    def test_stale_copy_cannot_overwrite(self, store, journey, now):
        enrollment, _, _ = store.create_if_absent(_enrollment(journey, "user-001", now))
        first = store.get(enrollment.id)
        second = store.get(enrollment.id)

        store.claim(first, now + timedelta(minutes=5))

        with pytest.raises(StaleEnrollmentError):
            store.claim(second, now + timedelta(minutes=5))
        assert store.get(enrollment.id).revision == 2

    @pytest.mark.parametrize("workers", [2, 8])
    def test_concurrent_claims_have_one_winner(self, store, journey, now, workers):
        enrollment, _, _ = store.create_if_absent(_enrollment(journey, "user-001", now))
        copies = [store.get(enrollment.id) for _ in range(workers)]
        lease_until = now + timedelta(minutes=5)
        barrier = threading.Barrier(workers)
        won, lost = [], []

        def claim(copy):
            with messaging.domain_context():
                barrier.wait()
                try:
                    store.claim(copy, lease_until)
                    won.append(copy)
                except StaleEnrollmentError:
                    lost.append(copy)

        threads = [threading.Thread(target=claim, args=(copy,)) for copy in copies]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert len(won) == 1
        assert len(lost) == workers - 1
        assert store.get(enrollment.id).revision == 2

    def test_concurrent_advance_and_exit_have_one_winner(self, store, journey, now):
        enrollment, _, _ = store.create_if_absent(_enrollment(journey, "user-001", now))
        advancing = store.get(enrollment.id)
        exiting = store.get(enrollment.id)
        barrier = threading.Barrier(2)
        errors = []

        def run(write):
            with messaging.domain_context():
                barrier.wait()
                try:
                    write()
                except StaleEnrollmentError as exc:
                    errors.append(exc)

        def advance():
            store.advance(advancing, "tag", now + timedelta(days=1))

        def exit_():
            exiting.exit("exit_event:order.placed", now)
            store.save(exiting)

        threads = [threading.Thread(target=run, args=(write,)) for write in (advance, exit_)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert len(errors) == 1
        stored = store.get(enrollment.id)
        assert stored.revision == 2
        assert stored.status in ("active", "exited")

    def test_unsaved_enrollment_with_revision_is_rejected(self, store, journey, now):
        enrollment = _enrollment(journey, "user-001", now)
        enrollment.revision = 3
        with pytest.raises(StaleEnrollmentError):
            store.save(enrollment)


class TestUniqueness:
    def test_open_enrollment_blocks_a_second_one(self, store, journey, now):
        original, _, _ = store.create_if_absent(_enrollment(journey, "user-001", now))

        existing, created, reason = store.create_if_absent(_enrollment(journey, "user-001", now))

        assert not created
        assert reason == "already_enrolled"
        assert existing.id == original.id
        assert len(store.for_user("TAGS", "user-001")) == 1

    def test_admit_sees_previous_enrollments(self, store, journey, now):
        original, _, _ = store.create_if_absent(_enrollment(journey, "user-001", now))
        original.complete(now)
        store.save(original)

        seen = []

        def admit(previous):
            seen.extend(previous)
            return "re_entry_not_allowed"

        blocking, created, reason = store.create_if_absent(_enrollment(journey, "user-001", now), admit)

        assert not created
        assert reason == "re_entry_not_allowed"
        assert [e.id for e in seen] == [original.id]
        assert blocking.id == original.id

    def test_open_counts(self, store, journey, now):
        for user_id in ("user-001", "user-002", "user-003"):
            store.create_if_absent(_enrollment(journey, user_id, now))
        done = store.for_user("TAGS", "user-003")[0]
        done.exit("manual", now)
        store.save(done)

        assert store.count_open("TAGS") == 2
        assert [e.journey_key for e in store.open_for_user("user-001")] == ["TAGS"]
        assert store.open_for_user("user-003") == []


class TestDue:
    def test_pages_through_rows_sharing_a_timestamp(self, store, journey, now):
        ids = {str(store.create_if_absent(_enrollment(journey, f"user-{i}", now))[0].id) for i in range(5)}

        due = {str(e.id) for e in store.due(now)}

        assert due == ids

    def test_oldest_first_and_future_excluded(self, store, journey, now):
        for i, offset in enumerate((3, 1, 2)):
            store.create_if_absent(_enrollment(journey, f"user-{i}", now - timedelta(minutes=offset)))
        store.create_if_absent(_enrollment(journey, "user-later", now + timedelta(minutes=1)))

        users = [e.user_id for e in store.due(now)]

        assert users == ["user-0", "user-2", "user-1"]

    def test_paused_and_finished_are_not_due(self, store, journey, now):
        paused, _, _ = store.create_if_absent(_enrollment(journey, "user-001", now))
        paused.pause("operator", now)
        store.save(paused)
        store.create_if_absent(_enrollment(journey, "user-002", now))

        assert [e.user_id for e in store.due(now)] == ["user-002"]

    def test_inactive_journeys_are_skipped(self, store, journey, now):
        store.create_if_absent(_enrollment(journey, "user-001", now))
        current_domain.process(DeactivateJourney(journey_id=str(journey.id)), asynchronous=False)

        assert list(store.due(now)) == []
