"""Channel sender port — the uniform contract every delivery provider implements."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class SendResult:
    """Outcome of a single send attempt.

    ``retry_after`` is the provider-suggested delay before trying again, used
    for rate limiting.
    """

    status: str  # "sent" or "failed"
    provider_message_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    retryable: bool = True
    retry_after: timedelta | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "sent"


class ChannelSender(ABC):
    """Abstract interface for channel delivery adapters."""

    channel: str

    @abstractmethod
    def send(self, payload) -> SendResult:
        """Hand a channel-specific payload to the provider."""
        ...
