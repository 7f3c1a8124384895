"""Journey management commands and handlers: draft, publish, activate, deactivate."""

from datetime import UTC, datetime

import structlog
from messaging.domain import messaging
from messaging.enrollment.enrollment import JOURNEY_DEACTIVATED
from messaging.enrollment.store import EnrollmentStore
from messaging.journey.journey import Journey, JourneyStatus
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

logger = structlog.get_logger(__name__)


@messaging.command(part_of="Journey")
class CreateJourney:
    """Draft a journey. A key that already exists gets the next version."""

    key: String(required=True, max_length=100)
    definition: Text(required=True)  # JSON JourneyDefinition


@messaging.command(part_of="Journey")
class ReviseJourney:
    journey_id: Identifier(required=True)
    definition: Text(required=True)


@messaging.command(part_of="Journey")
class PublishJourney:
    journey_id: Identifier(required=True)


@messaging.command(part_of="Journey")
class ActivateJourney:
    journey_id: Identifier(required=True)


@messaging.command(part_of="Journey")
class DeactivateJourney:
    journey_id: Identifier(required=True)


def journey_versions(key) -> list[Journey]:
    """All versions of a journey, newest first."""
    repo = current_domain.repository_for(Journey)
    versions = repo._dao.query.filter(key=key).all().items
    return sorted(versions, key=lambda journey: journey.version, reverse=True)


def find_journey(journey_ref) -> Journey:
    """Resolve a journey id, or a key to its newest published version."""
    repo = current_domain.repository_for(Journey)
    try:
        return repo.get(journey_ref)
    except ObjectNotFoundError:
        pass
    for journey in journey_versions(journey_ref):
        if journey.status == JourneyStatus.PUBLISHED.value:
            return journey
    raise ObjectNotFoundError(f"Journey {journey_ref} not found")


def active_journeys(trigger_type=None) -> list[Journey]:
    repo = current_domain.repository_for(Journey)
    filters = {"is_active": True}
    if trigger_type is not None:
        filters["trigger_type"] = trigger_type
    return repo._dao.query.filter(**filters).all().items


def _deactivate(repo, journey):
    """Deactivate a journey version and end the enrollments pinned to it."""
    journey.deactivate()
    repo.add(journey)
    EnrollmentStore().exit_open(journey.id, JOURNEY_DEACTIVATED, datetime.now(UTC))


@messaging.command_handler(part_of=Journey)
class ManageJourneysHandler:
    @handle(CreateJourney)
    def create_journey(self, command: CreateJourney):
        existing = journey_versions(command.key)
        version = existing[0].version + 1 if existing else 1
        journey = Journey.create(command.key, command.definition, version=version)
        current_domain.repository_for(Journey).add(journey)

        logger.info("Journey drafted", journey_id=str(journey.id), key=journey.key, version=version)
        return str(journey.id)

    @handle(ReviseJourney)
    def revise_journey(self, command: ReviseJourney):
        repo = current_domain.repository_for(Journey)
        journey = repo.get(command.journey_id)
        journey.revise(command.definition)
        repo.add(journey)

    @handle(PublishJourney)
    def publish_journey(self, command: PublishJourney):
        repo = current_domain.repository_for(Journey)
        journey = repo.get(command.journey_id)
        journey.publish()
        repo.add(journey)

    @handle(ActivateJourney)
    def activate_journey(self, command: ActivateJourney):
        repo = current_domain.repository_for(Journey)
        journey = repo.get(command.journey_id)
        # One active version per key
        for other in journey_versions(journey.key):
            if other.id != journey.id and other.is_active:
                _deactivate(repo, other)
        journey.activate()
        repo.add(journey)
        logger.info("Journey activated", journey_id=str(journey.id), key=journey.key, version=journey.version)

    @handle(DeactivateJourney)
    def deactivate_journey(self, command: DeactivateJourney):
        repo = current_domain.repository_for(Journey)
        journey = repo.get(command.journey_id)
        _deactivate(repo, journey)
        logger.info("Journey deactivated", journey_id=str(journey.id), key=journey.key)
