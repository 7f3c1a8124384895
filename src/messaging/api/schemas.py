"""Pydantic request/response models for the Messaging API.

API schemas are separate from Protean commands (anti-corruption pattern).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------
class SendMessageBody(BaseModel):
    user_id: str
    template_id: str = Field(..., examples=["ORDER_SHIPPED"])
    variables: dict[str, Any] = Field(default_factory=dict)
    dog_id: str | None = None
    channel: str | None = Field(None, examples=["push"])
    fallback_channel: str | None = Field(None, examples=["email"])
    priority: str | None = Field(None, pattern=r"^(low|medium|high|critical)$")
    scheduled_at: datetime | None = None


class EnrollBody(BaseModel):
    user_id: str
    dog_id: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    start_at: datetime | None = None


class ExternalEventBody(BaseModel):
    event_type: str = Field(..., examples=["order.placed"])
    user_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime | None = None


class DeliveryCallbackBody(BaseModel):
    message_id: str
    event_type: str = Field(..., pattern=r"^message\.(delivered|read|clicked|failed)$")
    occurred_at: datetime | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class RegisterPreferencesBody(BaseModel):
    timezone: str | None = Field(None, examples=["Europe/Paris"])


class ConsentBody(BaseModel):
    channel: str = Field(..., examples=["email"])
    purposes: list[str] | None = Field(None, examples=[["transactional", "marketing"]])


class RevokeConsentBody(BaseModel):
    channel: str


class QuietHoursBody(BaseModel):
    start: str = Field(..., pattern=r"^\d{2}:\d{2}$", examples=["22:00"])
    end: str = Field(..., pattern=r"^\d{2}:\d{2}$", examples=["08:00"])
    critical_bypass: bool = True


class TimezoneBody(BaseModel):
    timezone: str


class FrequencyLimitBody(BaseModel):
    channel: str
    daily: int | None = Field(None, ge=0)
    weekly: int | None = Field(None, ge=0)


class PreferredChannelsBody(BaseModel):
    channels: list[str] = Field(..., examples=[["push", "email"]])


class JourneyBody(BaseModel):
    key: str = Field(..., examples=["WINBACK_60D"])
    definition: dict[str, Any]


class JourneyRevisionBody(BaseModel):
    definition: dict[str, Any]


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------
class StatusResponse(BaseModel):
    status: str = "ok"


class IdResponse(BaseModel):
    id: str


class SendMessageResult(BaseModel):
    status: str
    message_id: str | None = None
    channel: str | None = None
    scheduled_at: datetime | None = None
    estimated_delivery: datetime | None = None
    error_code: str | None = None
    error_message: str | None = None


class MessageResponse(BaseModel):
    message_id: str
    user_id: str
    template_id: str
    variant: str | None = None
    channel: str
    original_channel: str | None = None
    fallback_channel: str | None = None
    priority: str
    status: str
    subject: str | None = None
    body: str
    scheduled_for: datetime | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    clicked_at: datetime | None = None
    failed_at: datetime | None = None
    error_code: str | None = None
    failure_reason: str | None = None
    retry_count: int = 0
    fallback_attempted: bool = False
    journey_id: str | None = None
    enrollment_id: str | None = None


class EnrollResult(BaseModel):
    status: str
    enrollment_id: str | None = None
    next_execution_at: datetime | None = None
    reason: str | None = None


class EnrollmentResponse(BaseModel):
    enrollment_id: str
    journey_id: str
    journey_key: str
    journey_version: int
    user_id: str
    status: str
    current_step_id: str | None = None
    next_execution_at: datetime | None = None
    exit_reason: str | None = None
    pause_reason: str | None = None
    history: list[dict[str, Any]] = Field(default_factory=list)


class PreferencesResponse(BaseModel):
    user_id: str
    timezone: str
    opted_out: bool
    consents: dict[str, list[str]] = Field(default_factory=dict)
    preferred_channels: list[str] = Field(default_factory=list)
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    quiet_hours_critical_bypass: bool = True
    frequency_limits: dict[str, dict[str, int | None]] = Field(default_factory=dict)


class InboxEntryResponse(BaseModel):
    message_id: str
    template_id: str | None = None
    title: str | None = None
    body: str | None = None
    cta_label: str | None = None
    cta_url: str | None = None
    is_read: bool
    received_at: datetime | None = None
    read_at: datetime | None = None


class InboxResponse(BaseModel):
    entries: list[InboxEntryResponse]
    unread: int


class DrainResponse(BaseModel):
    dispatched: int
    outcomes: list[dict[str, Any]] = Field(default_factory=list)


class TickResponse(BaseModel):
    enrolled: int
    processed: int
