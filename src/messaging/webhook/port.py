"""Webhook port — outbound HTTP calls made by journey webhook actions."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WebhookResult:
    ok: bool
    status_code: int | None = None
    error: str | None = None


class WebhookPort(ABC):
    @abstractmethod
    def post(self, url: str, payload: dict, headers: dict | None = None) -> WebhookResult:
        """POST ``payload`` as JSON. Never raises for transport errors."""
        ...
