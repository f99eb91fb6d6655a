"""
Lead intake from telephony and web forms.

- Missed call: lead (5-minute de-dup), templated text-back, initiating
  conversation, owner alert. No classifier call: there is nothing to
  classify yet.
- Voicemail: attach the recording to the call, one-shot classify the
  transcript, update the missed-call lead in place or create a new one.
- Web form: classify, create the lead with its first follow-up, auto-reply
  and owner notification by email.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from autoflow.config import settings
from autoflow.models.call_event import CallEvent
from autoflow.models.db import utcnow
from autoflow.models.enums import (
    CallStatus,
    LeadActivityType,
    LeadSource,
    MessageDirection,
    MessageSender,
    ResponseTone,
    Urgency,
)
from autoflow.models.lead import Lead
from autoflow.models.profile import Profile
from autoflow.services import conversation_service, email_service, lead_service, openai_service, sms_service
from autoflow.services.scoring_service import first_follow_up_delay

logger = logging.getLogger(__name__)

MISSED_DIAL_STATUSES = ("no-answer", "busy", "failed", "cancelled")

TEXT_BACK_TEMPLATES = {
    ResponseTone.PROFESSIONAL: (
        "Hi, Thanks for calling {business}. We missed your call but want to help. "
        "Could you let us know what you need?"
    ),
    ResponseTone.CASUAL: (
        "Hey! Sorry we missed your call to {business}. We're probably on a job right now. "
        "What can we help you with?"
    ),
    ResponseTone.FRIENDLY: (
        "Hi, Thanks for calling {business}. Sorry we couldn't get to the phone - "
        "we're likely on a job. How can we help?"
    ),
}


@dataclass
class MissedCallOutcome:
    lead_id: Optional[object]
    conversation_id: Optional[object]
    text_back_sent: bool
    duplicate: bool = False


def text_back_message(profile: Profile) -> str:
    tone = ResponseTone.coerce(profile.response_tone)
    return TEXT_BACK_TEMPLATES[tone].format(business=profile.display_name)


def get_call_event(db: Session, call_sid: Optional[str]) -> Optional[CallEvent]:
    if not call_sid:
        return None
    return db.query(CallEvent).filter(CallEvent.twilio_call_sid == call_sid).first()


def log_incoming_call(
    db: Session,
    profile: Profile,
    call_sid: str,
    caller_number: str,
    called_number: str,
    forwarded_from: Optional[str] = None,
) -> CallEvent:
    """Record a ringing call; repeat deliveries of the same CallSid are ignored."""
    event = get_call_event(db, call_sid)
    if event is None:
        event = CallEvent(
            user_id=profile.id,
            twilio_call_sid=call_sid,
            caller_number=caller_number,
            called_number=called_number,
            forwarded_from=forwarded_from or None,
            status=CallStatus.RINGING,
        )
        db.add(event)
        db.commit()
    return event


def is_missed_call(
    db: Session,
    call_sid: Optional[str],
    dial_call_status: Optional[str],
    recording_url: Optional[str],
) -> bool:
    """
    A status callback counts as missed when the owner's phone did not
    pick up, when a forwarded call finished recording, or when the call was
    forwarded in the first place (the owner already missed it).
    """
    if dial_call_status in MISSED_DIAL_STATUSES:
        return True
    if not dial_call_status and recording_url:
        return True
    event = get_call_event(db, call_sid)
    return bool(event and event.forwarded_from)


async def handle_missed_call(
    db: Session,
    profile: Profile,
    *,
    call_sid: Optional[str],
    caller_number: str,
    called_number: str,
) -> MissedCallOutcome:
    """
    Turn a missed call into a lead plus a text-back conversation.

    Args:
        db: Request-scoped session
        profile: Business that owns ``called_number``
        call_sid: Twilio CallSid, used to skip repeat status callbacks
        caller_number: Customer number
        called_number: Business Twilio number (SMS sender)

    Returns:
        MissedCallOutcome
    """
    event = get_call_event(db, call_sid)
    if event is not None and event.text_back_sent:
        logger.info("🔁 Text-back already sent for call %s", call_sid)
        return MissedCallOutcome(lead_id=event.lead_id, conversation_id=None, text_back_sent=True, duplicate=True)

    lead = lead_service.find_recent_duplicate(db, profile.id, caller_number, settings.LEAD_DEDUP_WINDOW_MINUTES)
    if lead is not None:
        logger.info("✅ Found existing lead: %s", lead.id)
    else:
        lead = lead_service.create_lead(
            db,
            profile,
            source=LeadSource.MISSED_CALL,
            phone=caller_number,
            message=f"Missed call from {caller_number}",
            urgency=Urgency.HOT,
            category="Missed Call",
            ai_summary="Customer called but nobody answered. Automatic text-back sent.",
        )

    if event is None:
        event = CallEvent(
            user_id=profile.id,
            twilio_call_sid=call_sid,
            caller_number=caller_number,
            called_number=called_number,
        )
        db.add(event)
    event.lead_id = lead.id
    event.status = CallStatus.MISSED
    event.text_back_sent = False
    db.commit()

    message = text_back_message(profile)
    sid = None
    try:
        sid = await sms_service.send_sms(caller_number, message, from_number=called_number)
    except sms_service.SmsSendError as e:
        logger.error("❌ Failed to send text-back SMS to %s: %s", caller_number, e)
    sent = sid is not None

    conversation = None
    if sent:
        conversation = conversation_service.latest_active(db, caller_number, called_number)
        if conversation is None:
            conversation = conversation_service.create_conversation(
                db, profile, caller_number, called_number, lead=lead
            )
        elif conversation.lead_id is None:
            conversation.lead_id = lead.id
        conversation_service.append_message(
            db, conversation, MessageDirection.OUTBOUND, MessageSender.AI, message, sid
        )

    lead_service.log_activity(
        db, lead, LeadActivityType.AUTO_REPLY,
        f'Missed call detected. Instant text-back {"sent" if sent else "failed"}: "{sms_service.preview(message)}"',
    )
    event.text_back_sent = sent
    db.commit()

    await email_service.notify_missed_call(profile.email, caller_number, message, sent)
    logger.info("📵 Missed call from %s handled, text-back sent: %s", caller_number, sent)
    return MissedCallOutcome(
        lead_id=lead.id,
        conversation_id=conversation.id if conversation is not None else None,
        text_back_sent=sent,
    )


async def handle_voicemail(
    db: Session,
    profile: Profile,
    *,
    call_sid: Optional[str],
    caller_number: str,
    called_number: Optional[str] = None,
    recording_url: Optional[str] = None,
    duration_seconds: Optional[int] = None,
    transcription: Optional[str] = None,
) -> Optional[Lead]:
    """
    Attach a recording / transcript to the call and the caller's lead.

    Returns:
        Lead updated or created from the transcript, or None when no
        transcript has arrived yet
    """
    mp3_url = f"{recording_url}.mp3" if recording_url else None
    event = get_call_event(db, call_sid)
    if event is None:
        event = CallEvent(
            user_id=profile.id,
            twilio_call_sid=call_sid,
            caller_number=caller_number,
            called_number=called_number,
        )
        db.add(event)
    event.status = CallStatus.VOICEMAIL
    if mp3_url:
        event.recording_url = mp3_url
    if duration_seconds is not None:
        event.duration_seconds = duration_seconds
    if transcription:
        event.transcription = transcription
    db.commit()

    transcription = (transcription or "").strip()
    if not transcription:
        return None

    business = openai_service.BusinessContext.from_profile(profile)
    analysis = await openai_service.classify(caller_number, f"[Voicemail transcription]: {transcription}", business)

    lead = lead_service.find_latest_by_phone(db, profile.id, caller_number, source=LeadSource.MISSED_CALL)
    if lead is not None:
        lead.source = LeadSource.VOICEMAIL
        lead.message = transcription
        lead.urgency = analysis.urgency
        lead.category = analysis.category
        lead.ai_summary = analysis.summary
        lead.ai_response_sent = analysis.suggested_response
        lead_service.log_activity(
            db, lead, LeadActivityType.NOTE,
            f'Voicemail received and transcribed: "{transcription[:100]}"',
            {"recording_url": mp3_url, "duration": duration_seconds},
        )
    else:
        lead = lead_service.create_lead(
            db,
            profile,
            source=LeadSource.VOICEMAIL,
            phone=caller_number,
            message=transcription,
            urgency=analysis.urgency,
            category=analysis.category,
            ai_summary=analysis.summary,
        )
        lead.ai_response_sent = analysis.suggested_response
    event.lead_id = lead.id
    db.commit()

    await email_service.notify_voicemail(
        profile.email,
        caller_number,
        analysis.urgency.value,
        analysis.category,
        transcription,
        analysis.summary,
        mp3_url,
    )
    logger.info("🎙️ Voicemail processed for %s (lead %s)", caller_number, lead.id)
    return lead


async def handle_web_lead(
    db: Session,
    profile: Profile,
    *,
    name: str,
    email: str,
    message: str,
    phone: Optional[str] = None,
    source: Optional[str] = None,
) -> dict:
    """
    Web-form enquiry: classify, store with first follow-up, auto-reply.

    Returns:
        dict: {"lead_id", "urgency", "category", "auto_reply_sent"}
    """
    business = openai_service.BusinessContext.from_profile(profile)
    analysis = await openai_service.classify(name, message, business)

    lead = lead_service.create_lead(
        db,
        profile,
        source=LeadSource(source) if LeadSource.has_value(source) else LeadSource.WEB,
        name=name,
        email=email,
        phone=phone or None,
        message=message,
        urgency=analysis.urgency,
        category=analysis.category,
        ai_summary=analysis.summary,
        next_follow_up_at=utcnow() + first_follow_up_delay(analysis.urgency),
    )
    db.commit()

    auto_reply_sent = False
    if profile.auto_reply_enabled:
        result = await email_service.send_auto_reply(
            email, profile.business_name or "Business", analysis.suggested_response, reply_to=profile.email
        )
        if result["success"]:
            auto_reply_sent = True
            lead.ai_response_sent = analysis.suggested_response
            lead_service.log_activity(
                db, lead, LeadActivityType.AUTO_REPLY,
                f"AI auto-reply sent to {email}",
                {"email_id": result["id"], "response_preview": analysis.suggested_response[:200]},
            )

    await email_service.notify_new_lead(
        profile.email, name, email, analysis.urgency.value, analysis.category, analysis.summary, message
    )
    lead_service.log_activity(db, lead, LeadActivityType.NOTE, f"Lead notification sent to {profile.email}")
    db.commit()

    return {
        "lead_id": lead.id,
        "urgency": analysis.urgency.value,
        "category": analysis.category,
        "auto_reply_sent": auto_reply_sent,
    }
