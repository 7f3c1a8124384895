"""FastAPI routes for the Messaging domain.

Thin adapters that translate HTTP requests into domain commands and service
calls. No business logic — just schema→command→response translation.
"""

import json
from dataclasses import asdict

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from messaging.api.schemas import (
    ConsentBody,
    DeliveryCallbackBody,
    DrainResponse,
    EnrollBody,
    EnrollmentResponse,
    EnrollResult,
    ExternalEventBody,
    FrequencyLimitBody,
    IdResponse,
    InboxEntryResponse,
    InboxResponse,
    JourneyBody,
    JourneyRevisionBody,
    MessageResponse,
    PreferencesResponse,
    PreferredChannelsBody,
    QuietHoursBody,
    RegisterPreferencesBody,
    RevokeConsentBody,
    SendMessageBody,
    SendMessageResult,
    StatusResponse,
    TickResponse,
    TimezoneBody,
)
from messaging.errors import MessagingError
from messaging.journey.engine import EnrollInJourneyRequest
from messaging.journey.management import (
    ActivateJourney,
    CreateJourney,
    DeactivateJourney,
    PublishJourney,
    ReviseJourney,
)
from messaging.message.dispatch import SendMessageRequest
from messaging.message.message import Message
from messaging.preference.management import (
    ChangeTimezone,
    ClearQuietHours,
    GrantConsent,
    OptIn,
    OptOut,
    RegisterPreferences,
    RevokeConsent,
    SetFrequencyLimit,
    SetPreferredChannels,
    SetQuietHours,
    find_preferences,
)
from messaging.projections.user_inbox import UserInbox
from messaging.services import get_services
from protean.exceptions import ObjectNotFoundError
from protean.integrations.fastapi import register_exception_handlers
from protean.utils.globals import current_domain

message_router = APIRouter(prefix="/messages", tags=["messages"])
journey_router = APIRouter(prefix="/journeys", tags=["journeys"])
preference_router = APIRouter(prefix="/preferences", tags=["preferences"])
event_router = APIRouter(prefix="/events", tags=["events"])
inbox_router = APIRouter(prefix="/inbox", tags=["inbox"])
maintenance_router = APIRouter(prefix="/maintenance", tags=["maintenance"])


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------
@message_router.post("", status_code=202, response_model=SendMessageResult)
async def send_message(body: SendMessageBody) -> SendMessageResult:
    """Validate, resolve and queue a message. Rejections come back as status=failed."""
    response = get_services().dispatcher.send(SendMessageRequest(**body.model_dump()))
    return SendMessageResult(**asdict(response))


@message_router.get("/{message_id}", response_model=MessageResponse)
async def get_message(message_id: str) -> MessageResponse:
    message = current_domain.repository_for(Message).get(message_id)
    return MessageResponse(
        message_id=str(message.id),
        user_id=str(message.user_id),
        template_id=message.template_id,
        variant=message.variant,
        channel=message.channel,
        original_channel=message.original_channel,
        fallback_channel=message.fallback_channel,
        priority=message.priority,
        status=message.status,
        subject=message.subject,
        body=message.body,
        scheduled_for=message.scheduled_for,
        sent_at=message.sent_at,
        delivered_at=message.delivered_at,
        read_at=message.read_at,
        clicked_at=message.clicked_at,
        failed_at=message.failed_at,
        error_code=message.error_code,
        failure_reason=message.failure_reason,
        retry_count=message.retry_count or 0,
        fallback_attempted=bool(message.fallback_attempted),
        journey_id=str(message.journey_id) if message.journey_id else None,
        enrollment_id=str(message.enrollment_id) if message.enrollment_id else None,
    )


@message_router.post("/callbacks", response_model=StatusResponse)
async def delivery_callback(body: DeliveryCallbackBody) -> StatusResponse:
    """Provider delivery/engagement callback."""
    message = get_services().recorder.ingest_provider_callback(
        body.message_id,
        body.event_type,
        occurred_at=body.occurred_at,
        payload=body.payload,
    )
    return StatusResponse(status=message.status)


# ---------------------------------------------------------------------------
# Journeys
# ---------------------------------------------------------------------------
@journey_router.post("", status_code=201, response_model=IdResponse)
async def create_journey(body: JourneyBody) -> IdResponse:
    command = CreateJourney(key=body.key, definition=json.dumps(body.definition))
    journey_id = current_domain.process(command, asynchronous=False)
    return IdResponse(id=journey_id)


@journey_router.put("/{journey_id}", response_model=StatusResponse)
async def revise_journey(journey_id: str, body: JourneyRevisionBody) -> StatusResponse:
    command = ReviseJourney(journey_id=journey_id, definition=json.dumps(body.definition))
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@journey_router.post("/{journey_id}/publish", response_model=StatusResponse)
async def publish_journey(journey_id: str) -> StatusResponse:
    current_domain.process(PublishJourney(journey_id=journey_id), asynchronous=False)
    return StatusResponse()


@journey_router.post("/{journey_id}/activate", response_model=StatusResponse)
async def activate_journey(journey_id: str) -> StatusResponse:
    current_domain.process(ActivateJourney(journey_id=journey_id), asynchronous=False)
    return StatusResponse()


@journey_router.post("/{journey_id}/deactivate", response_model=StatusResponse)
async def deactivate_journey(journey_id: str) -> StatusResponse:
    current_domain.process(DeactivateJourney(journey_id=journey_id), asynchronous=False)
    return StatusResponse()


@journey_router.post("/{journey_id}/enrollments", response_model=EnrollResult)
async def enroll(journey_id: str, body: EnrollBody) -> EnrollResult:
    """Manually enroll a user. ``journey_id`` may also be a journey key."""
    request = EnrollInJourneyRequest(journey_id=journey_id, **body.model_dump())
    response = get_services().engine.enroll(request)
    return EnrollResult(**asdict(response))


@journey_router.get("/enrollments/{enrollment_id}", response_model=EnrollmentResponse)
async def get_enrollment(enrollment_id: str) -> EnrollmentResponse:
    enrollment = get_services().store.get(enrollment_id)
    return _enrollment_response(enrollment)


@journey_router.post("/enrollments/{enrollment_id}/resume", response_model=EnrollmentResponse)
async def resume_enrollment(enrollment_id: str) -> EnrollmentResponse:
    enrollment = get_services().engine.resume(enrollment_id)
    return _enrollment_response(enrollment)


def _enrollment_response(enrollment) -> EnrollmentResponse:
    return EnrollmentResponse(
        enrollment_id=str(enrollment.id),
        journey_id=str(enrollment.journey_id),
        journey_key=enrollment.journey_key,
        journey_version=enrollment.journey_version,
        user_id=str(enrollment.user_id),
        status=enrollment.status,
        current_step_id=enrollment.current_step_id,
        next_execution_at=enrollment.next_execution_at if enrollment.is_active else None,
        exit_reason=enrollment.exit_reason,
        pause_reason=enrollment.pause_reason,
        history=enrollment.history(),
    )


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------
@preference_router.post("/{user_id}", status_code=201, response_model=IdResponse)
async def register_preferences(user_id: str, body: RegisterPreferencesBody) -> IdResponse:
    command = RegisterPreferences(user_id=user_id, timezone=body.timezone)
    preference_id = current_domain.process(command, asynchronous=False)
    return IdResponse(id=preference_id)


@preference_router.get("/{user_id}", response_model=PreferencesResponse)
async def get_preferences(user_id: str) -> PreferencesResponse:
    preference = find_preferences(user_id)
    if preference is None:
        raise ObjectNotFoundError(f"No channel preferences for user {user_id}")
    return PreferencesResponse(
        user_id=str(preference.user_id),
        timezone=preference.timezone,
        opted_out=bool(preference.opted_out),
        consents={
            channel: consent.get("purposes", [])
            for channel, consent in preference.consent_map().items()
            if consent.get("enabled")
        },
        preferred_channels=preference.preferred_channel_list(),
        quiet_hours_start=preference.quiet_hours_start,
        quiet_hours_end=preference.quiet_hours_end,
        quiet_hours_critical_bypass=bool(preference.quiet_hours_critical_bypass),
        frequency_limits=preference.frequency_limit_overrides(),
    )


@preference_router.post("/{user_id}/consents", response_model=StatusResponse)
async def grant_consent(user_id: str, body: ConsentBody) -> StatusResponse:
    command = GrantConsent(
        user_id=user_id,
        channel=body.channel,
        purposes=json.dumps(body.purposes) if body.purposes is not None else None,
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@preference_router.post("/{user_id}/consents/revoke", response_model=StatusResponse)
async def revoke_consent(user_id: str, body: RevokeConsentBody) -> StatusResponse:
    current_domain.process(RevokeConsent(user_id=user_id, channel=body.channel), asynchronous=False)
    return StatusResponse()


@preference_router.put("/{user_id}/quiet-hours", response_model=StatusResponse)
async def set_quiet_hours(user_id: str, body: QuietHoursBody) -> StatusResponse:
    """Set a user's do-not-disturb window."""
    command = SetQuietHours(
        user_id=user_id,
        start=body.start,
        end=body.end,
        critical_bypass=body.critical_bypass,
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@preference_router.delete("/{user_id}/quiet-hours", response_model=StatusResponse)
async def clear_quiet_hours(user_id: str) -> StatusResponse:
    current_domain.process(ClearQuietHours(user_id=user_id), asynchronous=False)
    return StatusResponse()


@preference_router.put("/{user_id}/timezone", response_model=StatusResponse)
async def change_timezone(user_id: str, body: TimezoneBody) -> StatusResponse:
    current_domain.process(ChangeTimezone(user_id=user_id, timezone=body.timezone), asynchronous=False)
    return StatusResponse()


@preference_router.put("/{user_id}/frequency-limits", response_model=StatusResponse)
async def set_frequency_limit(user_id: str, body: FrequencyLimitBody) -> StatusResponse:
    command = SetFrequencyLimit(user_id=user_id, channel=body.channel, daily=body.daily, weekly=body.weekly)
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@preference_router.put("/{user_id}/preferred-channels", response_model=StatusResponse)
async def set_preferred_channels(user_id: str, body: PreferredChannelsBody) -> StatusResponse:
    command = SetPreferredChannels(user_id=user_id, channels=json.dumps(body.channels))
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@preference_router.post("/{user_id}/opt-out", response_model=StatusResponse)
async def opt_out(user_id: str) -> StatusResponse:
    current_domain.process(OptOut(user_id=user_id), asynchronous=False)
    return StatusResponse()


@preference_router.post("/{user_id}/opt-in", response_model=StatusResponse)
async def opt_in(user_id: str) -> StatusResponse:
    current_domain.process(OptIn(user_id=user_id), asynchronous=False)
    return StatusResponse()


# ---------------------------------------------------------------------------
# External events
# ---------------------------------------------------------------------------
@event_router.post("", status_code=202, response_model=IdResponse)
async def ingest_event(body: ExternalEventBody) -> IdResponse:
    """Record a user or business event (drives journey triggers and exits)."""
    event = get_services().recorder.record(
        body.event_type,
        user_id=body.user_id,
        payload=body.payload,
        occurred_at=body.occurred_at,
    )
    return IdResponse(id=str(event.id))


# ---------------------------------------------------------------------------
# In-app inbox
# ---------------------------------------------------------------------------
@inbox_router.get("/{user_id}", response_model=InboxResponse)
async def list_inbox(user_id: str) -> InboxResponse:
    repo = current_domain.repository_for(UserInbox)
    entries = repo._dao.query.filter(user_id=user_id).order_by("-received_at").all().items
    return InboxResponse(
        entries=[
            InboxEntryResponse(
                message_id=str(entry.message_id),
                template_id=entry.template_id,
                title=entry.title,
                body=entry.body,
                cta_label=entry.cta_label,
                cta_url=entry.cta_url,
                is_read=bool(entry.is_read),
                received_at=entry.received_at,
                read_at=entry.read_at,
            )
            for entry in entries
        ],
        unread=sum(1 for entry in entries if not entry.is_read),
    )


@inbox_router.post("/{user_id}/{message_id}/read", response_model=StatusResponse)
async def mark_inbox_read(user_id: str, message_id: str) -> StatusResponse:
    entry = current_domain.repository_for(UserInbox).get(message_id)
    if str(entry.user_id) != user_id:
        raise ObjectNotFoundError(f"Inbox entry {message_id} not found")
    get_services().recorder.ingest_provider_callback(message_id, "message.read")
    return StatusResponse()


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------
@maintenance_router.post("/drain", response_model=DrainResponse)
async def drain_queue() -> DrainResponse:
    """Dispatch every due message now (normally done by the worker pool)."""
    outcomes = get_services().worker.drain()
    return DrainResponse(
        dispatched=len(outcomes),
        outcomes=[asdict(outcome) for outcome in outcomes],
    )


@maintenance_router.post("/tick", response_model=TickResponse)
async def run_tick() -> TickResponse:
    """Run scheduled triggers and due enrollments now."""
    return TickResponse(**get_services().engine.tick())


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
def register_error_handlers(app: FastAPI):
    """Protean's exception handlers plus MessagingError → 422 {code, message}."""
    register_exception_handlers(app)

    @app.exception_handler(MessagingError)
    async def messaging_error_handler(request: Request, exc: MessagingError):
        return JSONResponse(status_code=422, content={"code": exc.code.value, "message": exc.message})
