"""Error taxonomy of the Messaging domain.

Policy violations (quiet hours, frequency limits) are retryable and are
resolved by rescheduling; consent and template problems are permanent and are
returned to the caller as typed failures.
"""

from enum import Enum


class ErrorCode(Enum):
    INVALID_TEMPLATE = "INVALID_TEMPLATE"
    CHANNEL_DISABLED = "CHANNEL_DISABLED"
    USER_OPTED_OUT = "USER_OPTED_OUT"
    QUIET_HOURS = "QUIET_HOURS"
    FREQUENCY_LIMIT = "FREQUENCY_LIMIT"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    INVALID_RECIPIENT = "INVALID_RECIPIENT"
    TEMPLATE_ERROR = "TEMPLATE_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    RATE_LIMITED = "RATE_LIMITED"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = {
    ErrorCode.QUIET_HOURS,
    ErrorCode.FREQUENCY_LIMIT,
    ErrorCode.DELIVERY_FAILED,
    ErrorCode.PROVIDER_ERROR,
    ErrorCode.RATE_LIMITED,
}


class MessagingError(Exception):
    """Base error carrying a taxonomy code."""

    def __init__(self, code: ErrorCode, message: str = "", retry_at=None, details: dict | None = None):
        self.code = code
        self.message = message or code.value
        self.retry_at = retry_at
        self.details = details or {}
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.code.retryable

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


class ChannelUnavailable(MessagingError):
    """No candidate channel may be used right now.

    ``deferred_channel``, ``deferred_code`` and ``retry_at`` are set when at
    least one consented channel was blocked only by quiet hours or a frequency
    limit.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str = "",
        retry_at=None,
        deferred_channel: str | None = None,
        deferred_code: ErrorCode | None = None,
    ):
        super().__init__(code, message, retry_at=retry_at)
        self.deferred_channel = deferred_channel
        self.deferred_code = deferred_code

    @property
    def deferrable(self) -> bool:
        return self.deferred_channel is not None and self.retry_at is not None


class TemplateError(MessagingError):
    """Variables supplied at send time do not satisfy the template."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(ErrorCode.TEMPLATE_ERROR, message, details=details)


class InvalidTemplate(MessagingError):
    """The template is unknown, inactive or malformed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(ErrorCode.INVALID_TEMPLATE, message, details=details)


class ConditionEvaluationError(Exception):
    """A journey condition could not be evaluated against the user context."""


class StaleEnrollmentError(Exception):
    """The enrollment changed since it was read (compare-and-swap lost)."""
