"""
Test configuration and fixtures.

Provides:
- SQLite in-memory database, schema created and dropped per test
- In-memory stand-in for the Redis idempotency client
- Recorders for outbound SMS / email and a scripted intent classifier
- HTTPX AsyncClient bound to the FastAPI app
"""
import os
import uuid
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from typing import AsyncGenerator, Generator

# Settings are read at import time
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["OPENAI_API_KEY"] = "dummy"
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = ""
os.environ["TWILIO_VALIDATE_SIGNATURES"] = "false"
os.environ["SMTP_USERNAME"] = ""
os.environ["SMTP_PASSWORD"] = ""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

from autoflow.main import app
from autoflow.models import Base, engine
from autoflow.models.db import SessionLocal, get_db
from autoflow.models.enums import ResponseTone
from autoflow.models.profile import Profile
from autoflow.services import email_service, openai_service, sms_service, state_service
from autoflow.services.ai_schemas import ConversationTurn, LeadAnalysis


BUSINESS_NUMBER = "+61870000000"
CUSTOMER_NUMBER = "+61400111222"


# =============================================================================
# Database
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def profile(db: Session) -> Profile:
    """A telephony-enabled business with no availability rules (default hours)."""
    p = Profile(
        id=uuid.uuid4(),
        email="owner@sparkyco.com.au",
        full_name="Sam Owner",
        business_name="Sparky Co",
        industry="Electrical",
        business_services="Wiring, switchboards, lighting",
        response_tone=ResponseTone.FRIENDLY,
        auto_reply_enabled=True,
        twilio_phone_number=BUSINESS_NUMBER,
        forwarding_number="+61400999888",
        timezone="Australia/Adelaide",
        api_key=f"key-{uuid.uuid4().hex[:12]}",
    )
    db.add(p)
    db.commit()
    return p


# =============================================================================
# Redis stand-in
# =============================================================================

class FakeRedis:
    """Just enough of redis.Redis for SET NX EX claims."""

    def __init__(self):
        self.store = {}

    def set(self, name, value, nx=False, ex=None):
        if nx and name in self.store:
            return None
        self.store[name] = value
        return True

    def delete(self, *names):
        removed = 0
        for name in names:
            removed += 1 if self.store.pop(name, None) is not None else 0
        return removed

    def ping(self):
        return True


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> FakeRedis:
    fake = FakeRedis()
    monkeypatch.setattr(state_service, "r", fake)
    return fake


# =============================================================================
# Outbound transports
# =============================================================================

@dataclass
class Outbox:
    sms: list = field(default_factory=list)
    emails: list = field(default_factory=list)
    fail_sms: bool = False

    def sms_to(self, number: str) -> list:
        return [m for m in self.sms if m["to"] == number]


@pytest.fixture(autouse=True)
def outbox(monkeypatch) -> Outbox:
    box = Outbox()

    async def fake_send_sms(to, body, from_number=None):
        if box.fail_sms:
            raise sms_service.SmsSendError("carrier rejected")
        box.sms.append({"to": to, "body": body, "from": from_number})
        return f"SM{len(box.sms):032d}"

    async def fake_send_email(to_email, subject, html_content, from_name=None, reply_to=None):
        box.emails.append({"to": to_email, "subject": subject, "html": html_content, "reply_to": reply_to})
        return {"success": True, "id": f"<{len(box.emails)}@test>", "error": None}

    monkeypatch.setattr(sms_service, "send_sms", fake_send_sms)
    monkeypatch.setattr(email_service, "send_email", fake_send_email)
    return box


# =============================================================================
# Intent classifier
# =============================================================================

@dataclass
class ScriptedClassifier:
    turns: list = field(default_factory=list)
    calls: list = field(default_factory=list)
    analysis: LeadAnalysis = None
    classify_calls: list = field(default_factory=list)

    def queue(self, **turn):
        """Queue a converse() result, given as the classifier's camelCase JSON."""
        self.turns.append(ConversationTurn.model_validate(turn))


@pytest.fixture(autouse=True)
def classifier(monkeypatch) -> ScriptedClassifier:
    script = ScriptedClassifier(
        analysis=LeadAnalysis(
            urgency="warm",
            category="Quote Request",
            summary="Customer wants a quote",
            suggested_response="Hi there, thanks for reaching out to Sparky Co!",
        )
    )

    async def fake_converse(message, history, business, stage, available_slots=None):
        script.calls.append(
            {"message": message, "history": history, "stage": stage, "available_slots": available_slots}
        )
        if not script.turns:
            raise openai_service.ClassifierError("no scripted turn")
        return script.turns.pop(0)

    async def fake_classify(lead_name, lead_message, business):
        script.classify_calls.append({"name": lead_name, "message": lead_message})
        return script.analysis

    async def fake_generate_follow_up(lead_name, original_message, follow_up_number, business):
        return f"Hi {lead_name}, following up (#{follow_up_number})."

    monkeypatch.setattr(openai_service, "converse", fake_converse)
    monkeypatch.setattr(openai_service, "classify", fake_classify)
    monkeypatch.setattr(openai_service, "generate_follow_up", fake_generate_follow_up)
    return script


# =============================================================================
# HTTP client
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_db] = lambda: db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


# =============================================================================
# Helpers
# =============================================================================

def next_weekday(start: date) -> date:
    d = start
    while d.weekday() >= 5:
        d += timedelta(days=1)
    return d


@pytest.fixture
def open_slot_date() -> date:
    """A weekday safely in the future in any timezone; open 07:00-17:00 by default."""
    return next_weekday(date.today() + timedelta(days=3))


TEN_AM = time(10, 0)
