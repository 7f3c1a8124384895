"""Journey aggregate — a versioned, publishable multi-step campaign.

Lifecycle:
    DRAFT → PUBLISHED
A draft's definition may be revised; a published definition is immutable and
changes ship as a new version (same key, version + 1). Only published
journeys can be activated, and only active journeys enroll users or have
their enrollments advanced.
"""

from datetime import UTC, datetime
from enum import Enum

import pydantic
from messaging.domain import messaging
from messaging.journey.definition import JourneyDefinition
from messaging.journey.events import (
    JourneyActivated,
    JourneyCreated,
    JourneyDeactivated,
    JourneyPublished,
    JourneyRevised,
)
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String, Text


class JourneyStatus(Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


def parse_definition(definition) -> JourneyDefinition:
    """Validate a definition (dict, JSON string or model), raising ValidationError."""
    if isinstance(definition, JourneyDefinition):
        return definition
    try:
        if isinstance(definition, str):
            return JourneyDefinition.model_validate_json(definition)
        return JourneyDefinition.model_validate(definition)
    except pydantic.ValidationError as exc:
        raise ValidationError({"definition": [error["msg"] for error in exc.errors()]}) from None


@messaging.aggregate
class Journey:
    """One version of a journey and its step graph."""

    key: String(max_length=100, required=True)
    version: Integer(default=1)
    name: String(max_length=200, required=True)
    definition: Text(required=True)  # JSON JourneyDefinition

    # Denormalized for trigger lookups
    trigger_type: String(max_length=20)
    trigger_event: String(max_length=100)

    status: String(choices=JourneyStatus, default=JourneyStatus.DRAFT.value)
    is_active: Boolean(default=False)

    # Timestamps
    created_at: DateTime()
    published_at: DateTime()
    activated_at: DateTime()
    deactivated_at: DateTime()
    updated_at: DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, key, definition, version=1):
        """Draft a new journey version."""
        parsed = parse_definition(definition)
        now = datetime.now(UTC)

        journey = cls(
            key=key,
            version=version,
            name=parsed.name,
            definition=parsed.model_dump_json(),
            trigger_type=parsed.trigger.type.value,
            trigger_event=parsed.trigger.event,
            status=JourneyStatus.DRAFT.value,
            is_active=False,
            created_at=now,
            updated_at=now,
        )

        journey.raise_(
            JourneyCreated(
                journey_id=str(journey.id),
                key=key,
                version=version,
                name=parsed.name,
                created_at=now,
            )
        )

        return journey

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def revise(self, definition):
        """Replace the definition of a draft."""
        if self.status != JourneyStatus.DRAFT.value:
            raise ValidationError({"status": ["Published journeys are immutable; create a new version"]})

        parsed = parse_definition(definition)
        now = datetime.now(UTC)
        self.name = parsed.name
        self.definition = parsed.model_dump_json()
        self.trigger_type = parsed.trigger.type.value
        self.trigger_event = parsed.trigger.event
        self.updated_at = now

        self.raise_(JourneyRevised(journey_id=str(self.id), key=self.key, version=self.version, revised_at=now))

    def publish(self):
        if self.status != JourneyStatus.DRAFT.value:
            raise ValidationError({"status": ["Journey is already published"]})

        now = datetime.now(UTC)
        self.status = JourneyStatus.PUBLISHED.value
        self.published_at = now
        self.updated_at = now

        self.raise_(
            JourneyPublished(
                journey_id=str(self.id),
                key=self.key,
                version=self.version,
                trigger_type=self.trigger_type,
                published_at=now,
            )
        )

    def activate(self):
        if self.status != JourneyStatus.PUBLISHED.value:
            raise ValidationError({"status": ["Only published journeys can be activated"]})
        if self.is_active:
            raise ValidationError({"is_active": ["Journey is already active"]})

        now = datetime.now(UTC)
        self.is_active = True
        self.activated_at = now
        self.updated_at = now

        self.raise_(JourneyActivated(journey_id=str(self.id), key=self.key, activated_at=now))

    def deactivate(self):
        """Stop scheduling new steps. In-flight step executions still finish."""
        if not self.is_active:
            raise ValidationError({"is_active": ["Journey is not active"]})

        now = datetime.now(UTC)
        self.is_active = False
        self.deactivated_at = now
        self.updated_at = now

        self.raise_(JourneyDeactivated(journey_id=str(self.id), key=self.key, deactivated_at=now))

    # -------------------------------------------------------------------
    # Query helpers
    # -------------------------------------------------------------------
    @property
    def is_published(self) -> bool:
        return self.status == JourneyStatus.PUBLISHED.value

    def parsed_definition(self) -> JourneyDefinition:
        return JourneyDefinition.model_validate_json(self.definition)
