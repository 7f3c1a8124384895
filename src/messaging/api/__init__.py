"""Messaging domain API package."""

from messaging.api.routes import (
    event_router,
    inbox_router,
    journey_router,
    maintenance_router,
    message_router,
    preference_router,
    register_error_handlers,
)

__all__ = [
    "message_router",
    "journey_router",
    "preference_router",
    "event_router",
    "inbox_router",
    "maintenance_router",
    "register_error_handlers",
]
