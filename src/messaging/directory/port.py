"""User directory port — profile, property and tag lookups for journeys.

Profiles are flat dicts: the user's properties plus ``user_id``, ``tags``
and ``last_active_at``. Journey conditions address them as
``profile.<name>``.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime


class UserDirectory(ABC):
    @abstractmethod
    def profile(self, user_id) -> dict | None:
        """Return the user's profile, or None for an unknown user."""
        ...

    @abstractmethod
    def user_ids(self) -> Iterable[str]:
        """All known users, for scheduled (date offset / inactivity) triggers."""
        ...

    @abstractmethod
    def set_property(self, user_id, name: str, value) -> None: ...

    @abstractmethod
    def add_tag(self, user_id, tag: str) -> None: ...

    @abstractmethod
    def remove_tag(self, user_id, tag: str) -> None: ...

    @abstractmethod
    def record_activity(self, user_id, at: datetime) -> None: ...
