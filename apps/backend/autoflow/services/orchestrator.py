"""
Conversation Orchestrator

Handles one inbound SMS end to end:

1. De-duplicate the provider delivery (MessageSid)
2. Resolve the business, the open conversation and its lead
3. Append the inbound turn
4. Escalated conversations stop here: the owner gets the raw message
5. Build context (profile, recent transcript, stage, open slots when relevant)
6. Ask the classifier for the next turn (fallback turn + escalation on failure)
7. Apply side effects: field merge, booking, escalation, stage
8. Send the reply, append the outbound turn, log the lead activity

Commits happen at checkpoints so a failure late in the turn never loses
the inbound message or the lead.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from autoflow.config import settings
from autoflow.models.booking import Booking
from autoflow.models.conversation import Conversation
from autoflow.models.enums import (
    ConversationStage,
    ConversationStatus,
    LeadActivityType,
    LeadSource,
    LeadStatus,
    MessageDirection,
    MessageSender,
    Urgency,
)
from autoflow.models.lead import Lead
from autoflow.models.profile import Profile
from autoflow.services import (
    availability_service,
    booking_service,
    conversation_service,
    email_service,
    lead_service,
    openai_service,
    profile_service,
    sms_service,
    state_service,
)
from autoflow.services.ai_schemas import ConversationTurn
from autoflow.services.datetime_parser import (
    format_day_label,
    format_time_label,
    now_in,
    parse_booking_date,
    parse_booking_time,
)
from autoflow.services.scoring_service import has_booking_intent

logger = logging.getLogger(__name__)

ELLIPSIS = "…"
SLOT_STAGES = (ConversationStage.DETAILS, ConversationStage.BOOKING)


@dataclass
class SmsOutcome:
    """What a single inbound SMS turned into."""
    status: str  # "replied" | "escalated_notified" | "duplicate" | "unknown_number"
    conversation_id: Optional[object] = None
    reply: Optional[str] = None
    reply_sent: bool = False
    escalated: bool = False
    booking_id: Optional[object] = None


def cap_reply(text: str, limit: Optional[int] = None) -> str:
    """Trim to the SMS reply limit, marking the cut with an ellipsis."""
    limit = limit or settings.SMS_MAX_REPLY_LENGTH
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - len(ELLIPSIS)].rstrip() + ELLIPSIS


def fallback_turn(business_name: str, reason: str) -> ConversationTurn:
    return ConversationTurn(
        reply=(
            f"Thanks for your message! Let me get someone from {business_name} "
            "to help you. They'll be in touch shortly."
        ),
        should_escalate=True,
        reason=reason,
    )


def slot_taken_reply(business_name: str) -> str:
    return (
        "Sorry, that time is no longer available. Someone from "
        f"{business_name} will be in touch shortly to find another time."
    )


def _resolve_lead(db: Session, profile: Profile, customer_number: str, body: str) -> Lead:
    lead = lead_service.find_latest_by_phone(db, profile.id, customer_number)
    if lead is not None:
        return lead
    return lead_service.create_lead(
        db,
        profile,
        source=LeadSource.SMS,
        phone=customer_number,
        message=body,
        urgency=Urgency.WARM,
        category="SMS Enquiry",
        ai_summary=f'Customer initiated SMS conversation: "{body[:100]}"',
    )


def _resolve_conversation(
    db: Session,
    profile: Profile,
    customer_number: str,
    business_number: str,
    body: str,
) -> tuple[Conversation, Optional[Lead]]:
    conversation = conversation_service.latest_open(db, customer_number, business_number)
    if conversation is None:
        lead = _resolve_lead(db, profile, customer_number, body)
        conversation = conversation_service.create_conversation(
            db, profile, customer_number, business_number, lead=lead
        )
        return conversation, lead

    lead = conversation.lead
    if lead is None and ConversationStatus(conversation.status) == ConversationStatus.ACTIVE:
        lead = _resolve_lead(db, profile, customer_number, body)
        conversation.lead_id = lead.id
    return conversation, lead


async def _handle_escalated(db: Session, profile: Profile, conversation: Conversation, body: str) -> SmsOutcome:
    logger.info("⚠️ Conversation %s is escalated - skipping AI reply, notifying owner", conversation.id)
    await email_service.notify_escalated_message(profile.email, conversation.customer_number, body)
    return SmsOutcome(status="escalated_notified", conversation_id=conversation.id, escalated=True)


async def _try_booking(
    db: Session,
    profile: Profile,
    conversation: Conversation,
    lead: Lead,
    turn: ConversationTurn,
    today: date,
) -> tuple[Optional[Booking], Optional[str], bool]:
    """
    Attempt the booking the classifier asked for.

    Returns:
        (booking, escalation_reason, details_missing)
    """
    request = turn.booking_request
    if booking_service.for_conversation(db, conversation.id) is not None:
        logger.info("📅 Conversation %s already has a booking - ignoring repeat request", conversation.id)
        return None, None, False

    missing = lead_service.missing_booking_details(lead)
    if missing:
        logger.info("📝 Booking deferred for lead %s, missing: %s", lead.id, ", ".join(missing))
        return None, None, True

    booking_date = parse_booking_date(request.date, today)
    start_time = parse_booking_time(request.time)
    if booking_date is None or start_time is None or booking_date < today:
        logger.info("📅 Unusable booking request %r %r on conversation %s", request.date, request.time, conversation.id)
        return None, None, False

    try:
        booking = booking_service.commit_booking(
            db, profile, conversation, lead, booking_date, start_time, description=request.description
        )
    except booking_service.BookingConflictError as e:
        db.rollback()
        logger.warning("⚠️ Booking rejected on conversation %s: %s", conversation.id, e)
        return None, e.reason, False
    except booking_service.BookingExistsError:
        db.rollback()
        logger.info("📅 Conversation %s was booked concurrently - ignoring", conversation.id)
        return None, None, False

    lead_service.advance_status(lead, LeadStatus.CONVERTED)
    day_label, time_label = format_day_label(booking_date), format_time_label(start_time)
    lead_service.log_activity(
        db, lead, LeadActivityType.BOOKING,
        f"Booked via SMS for {day_label} at {time_label}",
        {"booking_id": str(booking.id)},
    )
    db.commit()
    if lead.email:
        await email_service.send_booking_confirmation(
            lead.email, lead.name, profile.display_name, day_label, time_label, lead.address
        )
    return booking, None, False


async def handle_inbound_sms(
    db: Session,
    *,
    from_number: str,
    to_number: str,
    body: str,
    message_sid: Optional[str] = None,
) -> SmsOutcome:
    """
    Process one inbound SMS and send the automated reply.

    Args:
        db: Request-scoped session
        from_number: Customer number (Twilio ``From``)
        to_number: Business Twilio number (Twilio ``To``)
        body: Message text
        message_sid: Twilio ``MessageSid`` used for delivery de-duplication

    Returns:
        SmsOutcome
    """
    if state_service.is_duplicate_webhook(message_sid):
        logger.info("🔁 Duplicate delivery of %s ignored", message_sid)
        return SmsOutcome(status="duplicate")

    profile = profile_service.get_by_twilio_number(db, to_number)
    if profile is None:
        logger.error("❌ No profile found for number: %s", to_number)
        return SmsOutcome(status="unknown_number")

    body = (body or "").strip()
    logger.info("📩 SMS from %s to %s: %s", from_number, profile.display_name, sms_service.preview(body))

    conversation, lead = _resolve_conversation(db, profile, from_number, to_number, body)
    inbound = conversation_service.append_message(
        db, conversation, MessageDirection.INBOUND, MessageSender.CUSTOMER, body, message_sid
    )
    db.commit()

    if ConversationStatus(conversation.status) == ConversationStatus.ESCALATED:
        return await _handle_escalated(db, profile, conversation, body)

    business = openai_service.BusinessContext.from_profile(profile)
    stage = ConversationStage(conversation.stage)
    history = conversation_service.recent_history(db, conversation, exclude_id=inbound.id)

    availability = None
    if stage in SLOT_STAGES or has_booking_intent(body):
        availability = availability_service.get_available_slots(db, profile)

    classifier_failed = False
    try:
        turn = await openai_service.converse(
            body, history, business, stage,
            available_slots=availability.summary() if availability is not None else None,
        )
    except openai_service.ClassifierError as e:
        logger.error("❌ Classifier failed on conversation %s: %s", conversation.id, e)
        classifier_failed = True
        turn = fallback_turn(profile.display_name, "AI unavailable")

    escalation_reason = turn.reason if turn.should_escalate else None
    should_escalate = turn.should_escalate
    if availability is not None and not availability.has_openings:
        should_escalate = True
        escalation_reason = escalation_reason or "no availability"

    # Lead field merge (non-destructive)
    if lead is not None and turn.extracted_fields is not None:
        changed = lead_service.merge_extracted_fields(lead, turn.extracted_fields.present())
        if changed:
            logger.info("📝 Lead %s updated: %s", lead.id, ", ".join(changed))
            db.commit()

    proposed_stage = None if classifier_failed else turn.new_stage
    booking = None
    request = turn.booking_request
    if lead is not None and request is not None and request.wants_to_book and not classifier_failed:
        today = now_in(profile.timezone).date()
        booking, conflict_reason, details_missing = await _try_booking(db, profile, conversation, lead, turn, today)
        if booking is not None:
            proposed_stage = ConversationStage.COMPLETE
        elif conflict_reason is not None:
            should_escalate = True
            escalation_reason = conflict_reason
            proposed_stage = None
            turn = turn.model_copy(update={"reply": slot_taken_reply(profile.display_name)})
        elif details_missing:
            proposed_stage = ConversationStage.DETAILS

    escalated_now = False
    if should_escalate:
        escalated_now = conversation_service.escalate(conversation, escalation_reason)
        if escalated_now:
            if lead is not None:
                lead.urgency = Urgency.HOT
                lead_service.log_activity(
                    db, lead, LeadActivityType.ESCALATION,
                    f"SMS conversation escalated: {escalation_reason or 'Customer needs personal attention'}",
                )
            db.commit()
            await email_service.notify_escalation(profile.email, conversation.customer_number, escalation_reason, body)

    conversation_service.advance_stage(conversation, proposed_stage)
    db.commit()

    reply = cap_reply(turn.reply)
    reply_sid = None
    try:
        reply_sid = await sms_service.send_sms(from_number, reply, from_number=to_number)
    except sms_service.SmsSendError as e:
        logger.error("❌ Reply to %s not sent: %s", from_number, e)

    if reply_sid is not None:
        conversation_service.append_message(
            db, conversation, MessageDirection.OUTBOUND, MessageSender.AI, reply, reply_sid
        )
    if lead is not None:
        if reply_sid is not None:
            lead_service.advance_status(lead, LeadStatus.CONTACTED)
        lead_service.log_activity(
            db, lead, LeadActivityType.AUTO_REPLY,
            f'AI SMS reply {"sent" if reply_sid else "failed"}: "{sms_service.preview(reply)}"',
        )
    db.commit()

    logger.info("✅ AI replied to %s: %s", from_number, sms_service.preview(reply))
    return SmsOutcome(
        status="replied",
        conversation_id=conversation.id,
        reply=reply,
        reply_sent=reply_sid is not None,
        escalated=ConversationStatus(conversation.status) == ConversationStatus.ESCALATED,
        booking_id=booking.id if booking is not None else None,
    )
