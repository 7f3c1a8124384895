"""In-memory user directory."""

import threading
from datetime import datetime

from messaging.directory.port import UserDirectory


class InMemoryUserDirectory(UserDirectory):
    def __init__(self):
        self._lock = threading.Lock()
        self._users: dict[str, dict] = {}

    def add_user(self, user_id, properties: dict | None = None, tags=(), last_active_at: datetime | None = None):
        with self._lock:
            self._users[str(user_id)] = {
                "properties": dict(properties or {}),
                "tags": set(tags),
                "last_active_at": last_active_at,
            }

    def profile(self, user_id) -> dict | None:
        with self._lock:
            user = self._users.get(str(user_id))
            if user is None:
                return None
            return {
                **user["properties"],
                "user_id": str(user_id),
                "tags": sorted(user["tags"]),
                "last_active_at": user["last_active_at"],
            }

    def user_ids(self):
        with self._lock:
            return list(self._users)

    def set_property(self, user_id, name, value):
        with self._lock:
            self._user(user_id)["properties"][name] = value

    def add_tag(self, user_id, tag):
        with self._lock:
            self._user(user_id)["tags"].add(tag)

    def remove_tag(self, user_id, tag):
        with self._lock:
            self._user(user_id)["tags"].discard(tag)

    def record_activity(self, user_id, at):
        with self._lock:
            user = self._users.setdefault(
                str(user_id), {"properties": {}, "tags": set(), "last_active_at": None}
            )
            if user["last_active_at"] is None or at > user["last_active_at"]:
                user["last_active_at"] = at

    def clear(self):
        with self._lock:
            self._users.clear()

    def _user(self, user_id):
        try:
            return self._users[str(user_id)]
        except KeyError:
            raise KeyError(f"Unknown user: {user_id}") from None
