"""
Tests for the HTTP surface: Twilio webhooks, the web-form webhook, cron
triggers and health checks.
"""
import pytest

from autoflow.models.call_event import CallEvent
from autoflow.models.enums import CallStatus
from autoflow.models.lead import Lead
from autoflow.services import orchestrator

from conftest import BUSINESS_NUMBER, CUSTOMER_NUMBER

CRON_AUTH = {"Authorization": "Bearer test-cron-secret"}


# =============================================================================
# Twilio
# =============================================================================

@pytest.mark.asyncio
async def test_sms_webhook_acknowledges_with_empty_twiml(client, profile, outbox, classifier):
    classifier.queue(reply="Hi! How can we help?")

    response = await client.post(
        "/api/twilio/sms",
        data={"From": CUSTOMER_NUMBER, "To": BUSINESS_NUMBER, "Body": "Hello", "MessageSid": "SM1"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/xml")
    assert "<Response" in response.text
    assert "<Message" not in response.text
    # the reply goes out over the REST client instead
    assert outbox.sms[0]["body"] == "Hi! How can we help?"


@pytest.mark.asyncio
async def test_sms_webhook_swallows_internal_errors(client, profile, monkeypatch):
    async def boom(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(orchestrator, "handle_inbound_sms", boom)

    response = await client.post(
        "/api/twilio/sms", data={"From": CUSTOMER_NUMBER, "To": BUSINESS_NUMBER, "Body": "Hello"}
    )

    assert response.status_code == 200
    assert "<Response" in response.text


@pytest.mark.asyncio
async def test_voice_unknown_number_says_not_configured(client, db):
    response = await client.post("/api/twilio/voice", data={"From": CUSTOMER_NUMBER, "To": "+61899999999", "CallSid": "CA1"})

    assert response.status_code == 200
    assert "not currently configured" in response.text
    assert "<Hangup" in response.text


@pytest.mark.asyncio
async def test_voice_dials_forwarding_number(client, db, profile):
    response = await client.post(
        "/api/twilio/voice", data={"From": CUSTOMER_NUMBER, "To": BUSINESS_NUMBER, "CallSid": "CA2"}
    )

    assert "<Dial" in response.text
    assert profile.forwarding_number in response.text
    assert "/api/twilio/voice/status" in response.text
    event = db.query(CallEvent).filter(CallEvent.twilio_call_sid == "CA2").one()
    assert event.status == CallStatus.RINGING


@pytest.mark.asyncio
async def test_forwarded_call_goes_to_voicemail(client, profile):
    response = await client.post(
        "/api/twilio/voice",
        data={"From": CUSTOMER_NUMBER, "To": BUSINESS_NUMBER, "CallSid": "CA3", "ForwardedFrom": "+61400999888"},
    )

    assert "<Record" in response.text
    assert "<Dial" not in response.text


@pytest.mark.asyncio
async def test_unanswered_dial_triggers_text_back_and_voicemail(client, db, profile, outbox):
    await client.post("/api/twilio/voice", data={"From": CUSTOMER_NUMBER, "To": BUSINESS_NUMBER, "CallSid": "CA4"})

    response = await client.post(
        "/api/twilio/voice/status",
        data={"From": CUSTOMER_NUMBER, "To": BUSINESS_NUMBER, "CallSid": "CA4", "DialCallStatus": "no-answer"},
    )

    assert "<Record" in response.text
    assert len(outbox.sms_to(CUSTOMER_NUMBER)) == 1
    assert db.query(Lead).count() == 1


@pytest.mark.asyncio
async def test_answered_dial_does_nothing(client, db, profile, outbox):
    response = await client.post(
        "/api/twilio/voice/status",
        data={"From": CUSTOMER_NUMBER, "To": BUSINESS_NUMBER, "CallSid": "CA5", "DialCallStatus": "completed"},
    )

    assert response.status_code == 200
    assert outbox.sms == []
    assert db.query(Lead).count() == 0


@pytest.mark.asyncio
async def test_recording_callback_hangs_up(client, db, profile, classifier):
    response = await client.post(
        "/api/twilio/recording",
        data={
            "From": CUSTOMER_NUMBER,
            "To": BUSINESS_NUMBER,
            "CallSid": "CA6",
            "RecordingUrl": "https://api.twilio.com/rec/RE6",
            "RecordingDuration": "17",
            "TranscriptionText": "Please call me about a quote",
        },
    )

    assert "<Hangup" in response.text
    assert db.query(Lead).count() == 1


# =============================================================================
# Web form
# =============================================================================

@pytest.mark.asyncio
async def test_web_lead_success(client, profile, outbox):
    response = await client.post(
        "/api/webhook/lead",
        json={"name": "Priya", "email": "priya@example.com", "message": "Quote please", "api_key": profile.api_key},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["urgency"] == "warm"
    assert body["auto_reply_sent"] is True


@pytest.mark.asyncio
async def test_web_lead_missing_fields(client, profile):
    response = await client.post("/api/webhook/lead", json={"name": "Priya", "api_key": profile.api_key})

    assert response.status_code == 400
    assert response.json()["error"] == "Missing required fields: name, email, message, api_key"


@pytest.mark.asyncio
async def test_web_lead_invalid_email(client, profile):
    response = await client.post(
        "/api/webhook/lead",
        json={"name": "Priya", "email": "not-an-email", "message": "Hi", "api_key": profile.api_key},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid email format"


@pytest.mark.asyncio
async def test_web_lead_unknown_api_key(client, profile):
    response = await client.post(
        "/api/webhook/lead",
        json={"name": "Priya", "email": "priya@example.com", "message": "Hi", "api_key": "nope"},
    )

    assert response.status_code == 401


# =============================================================================
# Cron and health
# =============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "test-cron-secret"}])
async def test_cron_rejects_bad_secret(client, headers):
    for path in ("/api/cron/reminders", "/api/cron/follow-ups"):
        response = await client.get(path, headers=headers)
        assert response.status_code == 401


@pytest.mark.asyncio
async def test_cron_reminders_reports_counts(client, profile):
    response = await client.get("/api/cron/reminders", headers=CRON_AUTH)

    assert response.status_code == 200
    assert response.json() == {"success": True, "sent24h": 0, "sent2h": 0, "errors": 0}


@pytest.mark.asyncio
async def test_cron_follow_ups_reports_counts(client, profile):
    response = await client.get("/api/cron/follow-ups", headers=CRON_AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["processed"] == 0
    assert "timestamp" in body


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_health_ready(client):
    response = await client.get("/health/ready")

    assert response.status_code == 200
    assert response.json()["database"] == "ok"
