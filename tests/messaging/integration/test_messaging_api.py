"""Integration tests for the Messaging API endpoints via TestClient."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from messaging.api.routes import (
    event_router,
    inbox_router,
    journey_router,
    maintenance_router,
    message_router,
    preference_router,
    register_error_handlers,
)
from messaging.channel import get_channel
from messaging.errors import InvalidTemplate

WINBACK = {
    "name": "Win-back",
    "trigger": {"type": "manual"},
    "steps": [
        {
            "id": "offer",
            "action": {
                "type": "send_message",
                "template_id": "WINBACK_OFFER",
                "variables": {"discount": 15, "code": "BACK15"},
            },
        },
        {
            "id": "reminder",
            "delay": {"days": 3},
            "action": {
                "type": "send_message",
                "template_id": "WINBACK_OFFER",
                "variables": {"discount": 20, "code": "BACK20"},
            },
        },
    ],
    "settings": {"exit_events": ["order.placed"]},
}


@pytest.fixture()
def client(services):
    app = FastAPI()
    for router in (
        message_router,
        journey_router,
        preference_router,
        event_router,
        inbox_router,
        maintenance_router,
    ):
        app.include_router(router)
    register_error_handlers(app)

    @app.get("/boom")
    async def boom():
        raise InvalidTemplate("No template registered with id: NOPE")

    return TestClient(app)


def _register(client, user_id="user-api-1", channels=("push", "email")):
    response = client.post(f"/preferences/{user_id}", json={"timezone": "UTC"})
    assert response.status_code == 201
    for channel in channels:
        assert client.post(f"/preferences/{user_id}/consents", json={"channel": channel}).status_code == 200
    return user_id


def _send(client, user_id="user-api-1", **overrides):
    body = {"user_id": user_id, "template_id": "ORDER_SHIPPED", "variables": {"order_number": "A-1001"}}
    body.update(overrides)
    response = client.post("/messages", json=body)
    assert response.status_code == 202
    return response.json()


def _launch(client, key="WINBACK_API", definition=WINBACK):
    journey_id = client.post("/journeys", json={"key": key, "definition": definition}).json()["id"]
    assert client.post(f"/journeys/{journey_id}/publish").status_code == 200
    assert client.post(f"/journeys/{journey_id}/activate").status_code == 200
    return journey_id


# ---------------------------------------------------------------
# Messages
# ---------------------------------------------------------------
class TestMessagesAPI:
    def test_send_queues_message(self, client):
        _register(client)
        data = _send(client)
        assert data["status"] == "queued"
        assert data["channel"] == "push"
        assert data["error_code"] is None

    def test_rejection_is_reported_in_body(self, client):
        data = _send(client, user_id="nobody")
        assert data["status"] == "failed"
        assert data["error_code"] == "INVALID_RECIPIENT"
        assert data["message_id"] is None

    def test_invalid_priority_rejected(self, client):
        _register(client)
        response = client.post(
            "/messages",
            json={"user_id": "user-api-1", "template_id": "ORDER_SHIPPED", "priority": "urgent"},
        )
        assert response.status_code == 422

    def test_get_message(self, client):
        _register(client)
        message_id = _send(client)["message_id"]

        response = client.get(f"/messages/{message_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "pending"
        assert data["template_id"] == "ORDER_SHIPPED"
        assert "A-1001" in data["body"]

    def test_get_unknown_message(self, client):
        assert client.get("/messages/does-not-exist").status_code == 404

    def test_drain_then_callbacks(self, client):
        _register(client)
        message_id = _send(client)["message_id"]

        drained = client.post("/maintenance/drain").json()
        assert drained["dispatched"] == 1
        assert drained["outcomes"][0]["status"] == "sent"
        assert len(get_channel("push").sent) == 1

        response = client.post("/messages/callbacks", json={"message_id": message_id, "event_type": "message.read"})
        assert response.json() == {"status": "read"}
        assert client.get(f"/messages/{message_id}").json()["delivered_at"] is not None

    def test_unsupported_callback_rejected(self, client):
        response = client.post("/messages/callbacks", json={"message_id": "m-1", "event_type": "message.sent"})
        assert response.status_code == 422


# ---------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------
class TestPreferencesAPI:
    def test_register_and_read(self, client):
        _register(client, channels=("email",))

        data = client.get("/preferences/user-api-1").json()

        assert data["timezone"] == "UTC"
        assert list(data["consents"]) == ["email"]
        assert data["opted_out"] is False

    def test_unknown_user(self, client):
        assert client.get("/preferences/nobody").status_code == 404

    def test_quiet_hours_round_trip(self, client):
        _register(client)
        response = client.put("/preferences/user-api-1/quiet-hours", json={"start": "22:00", "end": "07:30"})
        assert response.status_code == 200

        data = client.get("/preferences/user-api-1").json()
        assert (data["quiet_hours_start"], data["quiet_hours_end"]) == ("22:00", "07:30")

        assert client.delete("/preferences/user-api-1/quiet-hours").status_code == 200
        assert client.get("/preferences/user-api-1").json()["quiet_hours_start"] is None

    def test_malformed_quiet_hours(self, client):
        _register(client)
        response = client.put("/preferences/user-api-1/quiet-hours", json={"start": "10pm", "end": "08:00"})
        assert response.status_code == 422

    def test_revoke_consent_and_opt_out(self, client):
        _register(client)
        client.post("/preferences/user-api-1/consents/revoke", json={"channel": "push"})
        client.post("/preferences/user-api-1/opt-out")

        data = client.get("/preferences/user-api-1").json()
        assert list(data["consents"]) == ["email"]
        assert data["opted_out"] is True
        assert _send(client)["error_code"] == "USER_OPTED_OUT"

    def test_frequency_limits_and_preferred_channels(self, client):
        _register(client)
        client.put("/preferences/user-api-1/frequency-limits", json={"channel": "push", "daily": 1})
        client.put("/preferences/user-api-1/preferred-channels", json={"channels": ["email", "push"]})

        data = client.get("/preferences/user-api-1").json()
        assert data["frequency_limits"]["push"]["daily"] == 1
        assert data["preferred_channels"] == ["email", "push"]


# ---------------------------------------------------------------
# Journeys
# ---------------------------------------------------------------
class TestJourneysAPI:
    def test_invalid_definition_rejected(self, client):
        response = client.post("/journeys", json={"key": "BROKEN", "definition": {"name": "x", "steps": []}})
        assert response.status_code == 400

    def test_enroll_run_and_exit(self, client):
        _register(client)
        _launch(client)

        enrolled = client.post("/journeys/WINBACK_API/enrollments", json={"user_id": "user-api-1"}).json()
        assert enrolled["status"] == "enrolled"
        enrollment_id = enrolled["enrollment_id"]

        tick = client.post("/maintenance/tick").json()
        assert tick == {"enrolled": 0, "processed": 1}

        enrollment = client.get(f"/journeys/enrollments/{enrollment_id}").json()
        assert enrollment["current_step_id"] == "reminder"
        assert enrollment["history"][0]["outcome"] == "queued"

        response = client.post("/events", json={"event_type": "order.placed", "user_id": "user-api-1"})
        assert response.status_code == 202

        enrollment = client.get(f"/journeys/enrollments/{enrollment_id}").json()
        assert enrollment["status"] == "exited"
        assert enrollment["exit_reason"] == "exit_event:order.placed"
        assert enrollment["next_execution_at"] is None

    def test_second_enrollment_is_idempotent(self, client):
        journey_id = _launch(client)
        first = client.post(f"/journeys/{journey_id}/enrollments", json={"user_id": "user-api-2"}).json()
        second = client.post(f"/journeys/{journey_id}/enrollments", json={"user_id": "user-api-2"}).json()

        assert second["status"] == "already_enrolled"
        assert second["enrollment_id"] == first["enrollment_id"]

    def test_deactivated_journey_refuses_enrollment(self, client):
        journey_id = _launch(client)
        client.post(f"/journeys/{journey_id}/deactivate")

        data = client.post(f"/journeys/{journey_id}/enrollments", json={"user_id": "user-api-3"}).json()

        assert (data["status"], data["reason"]) == ("failed", "journey_inactive")

    def test_revise_published_journey_rejected(self, client):
        journey_id = _launch(client)
        response = client.put(f"/journeys/{journey_id}", json={"definition": WINBACK})
        assert response.status_code == 400


# ---------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------
class TestInboxAPI:
    def test_inapp_message_lands_in_inbox(self, client):
        _register(client, channels=("inapp",))
        _send(client, template_id="ONBOARDING_TIP", variables={"tip": "Walk twice a day"})
        client.post("/maintenance/drain")

        inbox = client.get("/inbox/user-api-1").json()
        assert inbox["unread"] == 1
        [entry] = inbox["entries"]
        assert "Walk twice a day" in entry["body"]

        assert client.post(f"/inbox/user-api-1/{entry['message_id']}/read").status_code == 200
        assert client.get("/inbox/user-api-1").json()["unread"] == 0

    def test_other_users_entry_not_found(self, client):
        _register(client, channels=("inapp",))
        _send(client, template_id="ONBOARDING_TIP", variables={"tip": "Walk twice a day"})
        client.post("/maintenance/drain")
        message_id = client.get("/inbox/user-api-1").json()["entries"][0]["message_id"]

        assert client.post(f"/inbox/someone-else/{message_id}/read").status_code == 404


class TestErrorMapping:
    def test_messaging_error_maps_to_422(self, client):
        response = client.get("/boom")
        assert response.status_code == 422
        assert response.json() == {
            "code": "INVALID_TEMPLATE",
            "message": "No template registered with id: NOPE",
        }
