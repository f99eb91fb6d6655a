"""
Twilio webhooks (form-encoded).

Every route answers with TwiML and HTTP 200 whatever happens inside:
Twilio retries failed deliveries, and replaying a half-processed event
would duplicate leads and messages.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from autoflow.models.db import get_db
from autoflow.services import intake_service, orchestrator, profile_service, sms_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/twilio", tags=["twilio"])


def twiml(body: str, status_code: int = 200) -> Response:
    return Response(content=body, media_type="text/xml", status_code=status_code)


async def read_form(request: Request) -> Optional[dict]:
    """Form fields, or None when the Twilio signature does not verify."""
    form = {k: str(v) for k, v in (await request.form()).items()}
    if not sms_service.validate_signature(str(request.url), form, request.headers.get("X-Twilio-Signature")):
        logger.warning("⚠️ Rejected webhook with invalid Twilio signature: %s", request.url.path)
        return None
    return form


def _int_or_none(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except ValueError:
        return None


@router.post("/sms")
async def inbound_sms(request: Request, db: Session = Depends(get_db)):
    form = await read_form(request)
    if form is None:
        return twiml(sms_service.empty_messaging_response(), status_code=403)
    try:
        await orchestrator.handle_inbound_sms(
            db,
            from_number=form.get("From", ""),
            to_number=form.get("To", ""),
            body=form.get("Body", ""),
            message_sid=form.get("MessageSid"),
        )
    except Exception:
        db.rollback()
        logger.exception("❌ SMS webhook error")
    # Replies go out through the REST API, never inline
    return twiml(sms_service.empty_messaging_response())


@router.post("/voice")
async def inbound_call(request: Request, db: Session = Depends(get_db)):
    form = await read_form(request)
    if form is None:
        return twiml(sms_service.hangup_response(), status_code=403)
    try:
        caller, called = form.get("From", ""), form.get("To", "")
        forwarded_from = form.get("ForwardedFrom") or None
        logger.info("📞 Incoming call from %s to %s (%s)", caller, called, form.get("CallSid"))

        profile = profile_service.get_by_twilio_number(db, called)
        if profile is None:
            logger.error("❌ No profile found for number: %s", called)
            return twiml(sms_service.unconfigured_number_response())

        intake_service.log_incoming_call(db, profile, form.get("CallSid"), caller, called, forwarded_from)

        if forwarded_from or not profile.forwarding_number:
            # The owner already missed it on their own phone: straight to voicemail
            return twiml(sms_service.voicemail_prompt(
                sms_service.forwarded_call_greeting(profile.display_name),
                action_path="/api/twilio/voice/status",
            ))
        return twiml(sms_service.dial_forwarding_number(profile.forwarding_number))
    except Exception:
        db.rollback()
        logger.exception("❌ Voice webhook error")
        return twiml(sms_service.technical_difficulties_response())


@router.post("/voice/status")
async def call_status(request: Request, db: Session = Depends(get_db)):
    form = await read_form(request)
    if form is None:
        return twiml(sms_service.hangup_response(), status_code=403)
    try:
        call_sid = form.get("CallSid")
        dial_status = form.get("DialCallStatus") or None
        caller = form.get("From") or form.get("Caller", "")
        called = form.get("To") or form.get("Called", "")
        recording_url = form.get("RecordingUrl") or None
        logger.info("📞 Call status update: %s - dialCallStatus: %s", call_sid, dial_status)

        profile = profile_service.get_by_twilio_number(db, called)
        if profile is None:
            logger.error("❌ No profile found for number: %s", called)
            return twiml(sms_service.say_and_hangup("Sorry, this number is not currently configured."))

        if not intake_service.is_missed_call(db, call_sid, dial_status, recording_url):
            return twiml(sms_service.empty_voice_response())

        await intake_service.handle_missed_call(
            db, profile, call_sid=call_sid, caller_number=caller, called_number=called
        )
        if recording_url:
            # Record already finished: the transcription callback carries on from here
            return twiml(sms_service.hangup_response())
        return twiml(sms_service.voicemail_prompt(sms_service.MISSED_CALL_GREETING))
    except Exception:
        db.rollback()
        logger.exception("❌ Call status webhook error")
        return twiml(sms_service.technical_difficulties_response())


@router.post("/recording")
async def recording(request: Request, db: Session = Depends(get_db)):
    form = await read_form(request)
    if form is None:
        return twiml(sms_service.hangup_response(), status_code=403)
    try:
        caller = form.get("From") or form.get("Caller", "")
        called = form.get("To") or form.get("Called", "")
        logger.info("🎙️ Recording received from %s (%s)", caller, form.get("RecordingSid"))

        profile = profile_service.get_by_twilio_number(db, called)
        if profile is None:
            logger.error("❌ No profile found for number: %s", called)
            return twiml(sms_service.hangup_response())

        await intake_service.handle_voicemail(
            db,
            profile,
            call_sid=form.get("CallSid"),
            caller_number=caller,
            called_number=called,
            recording_url=form.get("RecordingUrl") or None,
            duration_seconds=_int_or_none(form.get("RecordingDuration")),
            transcription=form.get("TranscriptionText") or None,
        )
    except Exception:
        db.rollback()
        logger.exception("❌ Recording webhook error")
    return twiml(sms_service.hangup_response())
