"""Runtime configuration for the Messaging domain.

Values come from ``MESSAGING_*`` environment variables through pydantic-settings
and fall back to the defaults below. Lists and dicts are read as JSON, except
``retry_backoff_seconds`` which also takes a comma separated list. Provider
credentials live in ``channel_config`` and are handed to channel adapters untouched.
"""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class FrequencyLimit(BaseModel):
    """Maximum sends on one channel per rolling day and week. ``None`` means unlimited."""

    model_config = ConfigDict(frozen=True)

    daily: int | None = Field(default=None, ge=0)
    weekly: int | None = Field(default=None, ge=0)


def _default_frequency_limits() -> dict[str, FrequencyLimit]:
    return {
        "push": FrequencyLimit(daily=3, weekly=10),
        "email": FrequencyLimit(daily=2, weekly=7),
        "sms": FrequencyLimit(daily=1, weekly=3),
        "whatsapp": FrequencyLimit(daily=1, weekly=4),
        "inapp": FrequencyLimit(),
    }


class MessagingSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MESSAGING_",
        extra="ignore",
        frozen=True,
    )

    # Delivery
    retry_backoff_seconds: Annotated[list[int], NoDecode] = Field(default_factory=lambda: [60, 300, 1800])
    max_retries: int = Field(default=3, ge=0)
    dispatch_workers: int = Field(default=4, ge=1)
    dispatch_poll_seconds: float = Field(default=1.0, gt=0)

    # Policy defaults
    default_quiet_hours_start: str | None = None
    default_quiet_hours_end: str | None = None
    default_timezone: str = "UTC"
    default_frequency_limits: dict[str, FrequencyLimit] = Field(default_factory=_default_frequency_limits)

    # Journeys
    enrollment_tick_seconds: int = Field(default=60, ge=1)
    claim_lease_seconds: int = Field(default=300, ge=1)
    max_step_hops: int = Field(default=25, ge=1)
    webhook_max_retries: int = Field(default=3, ge=0)
    webhook_timeout_seconds: float = Field(default=10.0, gt=0)

    # Feature flags
    journeys_enabled: bool = True
    ab_testing_enabled: bool = True

    # Opaque provider configuration, keyed by channel
    channel_config: dict[str, dict] = Field(default_factory=dict)

    @field_validator("retry_backoff_seconds", mode="before")
    @classmethod
    def _split_backoff(cls, value):
        # "10,20,40" and "[10, 20, 40]" both arrive undecoded
        if isinstance(value, str):
            value = [int(part) for part in value.strip("[] ").split(",") if part.strip()]
        return value

    @field_validator("retry_backoff_seconds")
    @classmethod
    def _backoff_not_empty(cls, value):
        if not value or any(delay <= 0 for delay in value):
            raise ValueError("retry_backoff_seconds needs at least one positive delay")
        return value


_settings: MessagingSettings | None = None


def get_settings() -> MessagingSettings:
    """Return the process-wide settings, loading them from the environment once."""
    global _settings
    if _settings is None:
        _settings = MessagingSettings()
    return _settings


def configure_settings(**overrides) -> MessagingSettings:
    """Replace the active settings with the environment values plus ``overrides``."""
    global _settings
    _settings = MessagingSettings().model_copy(update=overrides)
    return _settings


def reset_settings():
    """Drop cached settings (useful for testing)."""
    global _settings
    _settings = None
