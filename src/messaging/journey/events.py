"""Domain events for the Journey aggregate."""

from messaging.domain import messaging
from protean.fields import DateTime, Identifier, Integer, String


@messaging.event(part_of="Journey")
class JourneyCreated:
    """A journey version was drafted."""

    __version__ = 1

    journey_id: Identifier(required=True)
    key: String(required=True)
    version: Integer(required=True)
    name: String(required=True)
    created_at: DateTime(required=True)


@messaging.event(part_of="Journey")
class JourneyRevised:
    """A draft journey's definition was replaced."""

    __version__ = 1

    journey_id: Identifier(required=True)
    key: String(required=True)
    version: Integer(required=True)
    revised_at: DateTime(required=True)


@messaging.event(part_of="Journey")
class JourneyPublished:
    """A journey version was frozen and can now enroll users."""

    __version__ = 1

    journey_id: Identifier(required=True)
    key: String(required=True)
    version: Integer(required=True)
    trigger_type: String(required=True)
    published_at: DateTime(required=True)


@messaging.event(part_of="Journey")
class JourneyActivated:
    __version__ = 1

    journey_id: Identifier(required=True)
    key: String(required=True)
    activated_at: DateTime(required=True)


@messaging.event(part_of="Journey")
class JourneyDeactivated:
    """No new steps are scheduled for a deactivated journey."""

    __version__ = 1

    journey_id: Identifier(required=True)
    key: String(required=True)
    deactivated_at: DateTime(required=True)
