"""
Tests for lead, conversation and booking record rules: status
transitions, the follow-up invariant, field merges, the conversation
state machine and the booking commit guard.
"""
from datetime import datetime, time, timedelta, timezone

import pytest

from autoflow.models.enums import (
    ConversationStage,
    ConversationStatus,
    InvalidTransitionError,
    LeadSource,
    LeadStatus,
)
from autoflow.services import booking_service, conversation_service, lead_service

from conftest import BUSINESS_NUMBER, CUSTOMER_NUMBER, next_weekday


def make_lead(db, profile, **kwargs):
    kwargs.setdefault("phone", CUSTOMER_NUMBER)
    return lead_service.create_lead(db, profile, source=LeadSource.SMS, **kwargs)


def make_conversation(db, profile, lead=None, customer=CUSTOMER_NUMBER):
    return conversation_service.create_conversation(db, profile, customer, BUSINESS_NUMBER, lead=lead)


# =============================================================================
# Leads
# =============================================================================

def test_lead_requires_a_contact_channel(db, profile):
    with pytest.raises(ValueError):
        lead_service.create_lead(db, profile, source=LeadSource.WEB, name="Nobody")


def test_lead_name_defaults_to_phone(db, profile):
    lead = make_lead(db, profile)

    assert lead.name == CUSTOMER_NUMBER
    assert lead.has_real_name is False
    assert lead_service.missing_booking_details(lead) == ["name", "address", "email"]


def test_status_moves_forward_and_may_skip(db, profile):
    lead = make_lead(db, profile)

    assert lead_service.set_status(lead, LeadStatus.QUALIFIED) is True
    assert lead_service.set_status(lead, LeadStatus.QUALIFIED) is False
    with pytest.raises(InvalidTransitionError):
        lead_service.set_status(lead, LeadStatus.CONTACTED)


@pytest.mark.parametrize("terminal", [LeadStatus.CONVERTED, LeadStatus.LOST])
def test_terminal_status_is_final_and_clears_follow_up(db, profile, terminal):
    lead = make_lead(db, profile, next_follow_up_at=datetime.now(timezone.utc) + timedelta(days=1))

    lead_service.set_status(lead, terminal)

    assert lead.next_follow_up_at is None
    with pytest.raises(InvalidTransitionError):
        lead_service.set_status(lead, LeadStatus.NEW)
    assert lead_service.advance_status(lead, LeadStatus.CONTACTED) is False
    # a closed lead refuses a new follow-up date
    lead.next_follow_up_at = datetime.now(timezone.utc)
    assert lead.next_follow_up_at is None


def test_merge_is_non_destructive(db, profile):
    lead = make_lead(db, profile, email="jo@example.com")

    changed = lead_service.merge_extracted_fields(lead, {"name": "Jo Smith", "email": "", "needs": "New switchboard"})

    assert set(changed) == {"name", "ai_summary"}
    assert lead.email == "jo@example.com"
    assert lead.ai_summary == "New switchboard"
    assert lead_service.missing_booking_details(lead) == ["address"]


# =============================================================================
# Conversations
# =============================================================================

def test_new_conversation_starts_active_greeting(db, profile):
    conversation = make_conversation(db, profile)

    assert conversation.status == ConversationStatus.ACTIVE
    assert conversation.stage == ConversationStage.GREETING
    assert conversation.message_count == 0


def test_stage_only_advances(db, profile):
    conversation = make_conversation(db, profile)

    assert conversation_service.advance_stage(conversation, ConversationStage.DETAILS) is True
    assert conversation_service.advance_stage(conversation, ConversationStage.QUALIFYING) is False
    assert conversation_service.advance_stage(conversation, None) is False
    assert conversation.stage == ConversationStage.DETAILS


def test_escalation_is_sticky_until_reactivated(db, profile):
    conversation = make_conversation(db, profile)

    assert conversation_service.escalate(conversation, "Complaint") is True
    assert conversation_service.escalate(conversation, "Again") is False
    assert conversation.escalation_reason == "Complaint"
    with pytest.raises(InvalidTransitionError):
        conversation_service.close(conversation)

    conversation_service.reactivate(conversation)

    assert conversation.status == ConversationStatus.ACTIVE
    assert conversation.escalation_reason is None


def test_closed_conversation_cannot_escalate(db, profile):
    conversation = make_conversation(db, profile)
    conversation_service.close(conversation)

    with pytest.raises(InvalidTransitionError):
        conversation_service.escalate(conversation, "Too late")
    with pytest.raises(InvalidTransitionError):
        conversation_service.reactivate(conversation)


def test_latest_open_ignores_closed(db, profile):
    old = make_conversation(db, profile)
    conversation_service.close(old)
    db.commit()

    assert conversation_service.latest_open(db, CUSTOMER_NUMBER, BUSINESS_NUMBER) is None


# =============================================================================
# Booking commit
# =============================================================================

@pytest.fixture
def booking_day():
    return next_weekday(datetime.now(timezone.utc).date() + timedelta(days=3))


def _booked_lead(db, profile, phone, name):
    lead = make_lead(db, profile, phone=phone, name=name, email=f"{name.split()[0].lower()}@example.com")
    lead.address = "1 Main St"
    return lead


def test_commit_booking_rejects_overlap(db, profile, booking_day):
    jo = _booked_lead(db, profile, CUSTOMER_NUMBER, "Jo Smith")
    alex = _booked_lead(db, profile, "+61400333444", "Alex Brown")
    first_conv = make_conversation(db, profile, jo)
    second_conv = make_conversation(db, profile, alex, customer="+61400333444")
    db.commit()

    booking_service.commit_booking(db, profile, first_conv, jo, booking_day, time(10))

    with pytest.raises(booking_service.BookingConflictError) as exc:
        booking_service.commit_booking(db, profile, second_conv, alex, booking_day, time(10, 30))
    assert exc.value.reason == "slot conflict"


def test_commit_booking_allows_adjacent_slot(db, profile, booking_day):
    jo = _booked_lead(db, profile, CUSTOMER_NUMBER, "Jo Smith")
    alex = _booked_lead(db, profile, "+61400333444", "Alex Brown")
    first_conv = make_conversation(db, profile, jo)
    second_conv = make_conversation(db, profile, alex, customer="+61400333444")
    db.commit()

    booking_service.commit_booking(db, profile, first_conv, jo, booking_day, time(10))
    second = booking_service.commit_booking(db, profile, second_conv, alex, booking_day, time(11))

    assert second.end_time == time(12)


def test_commit_booking_once_per_conversation(db, profile, booking_day):
    jo = _booked_lead(db, profile, CUSTOMER_NUMBER, "Jo Smith")
    conversation = make_conversation(db, profile, jo)
    db.commit()

    booking_service.commit_booking(db, profile, conversation, jo, booking_day, time(9))

    with pytest.raises(booking_service.BookingExistsError):
        booking_service.commit_booking(db, profile, conversation, jo, booking_day, time(14))


def test_commit_booking_refuses_closed_hours(db, profile, booking_day):
    jo = _booked_lead(db, profile, CUSTOMER_NUMBER, "Jo Smith")
    conversation = make_conversation(db, profile, jo)
    db.commit()

    with pytest.raises(booking_service.BookingConflictError) as exc:
        booking_service.commit_booking(db, profile, conversation, jo, booking_day, time(16, 30))
    assert exc.value.reason == "slot unavailable"
