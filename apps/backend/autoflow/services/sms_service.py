"""
Twilio transport: outbound SMS plus the TwiML documents the webhooks return.

The REST client is blocking, so sends run in a worker thread. When Twilio
credentials are absent the send is simulated (logged, fake SID) so local
runs never fail on the transport.
"""

import asyncio
import logging
import uuid
from typing import Mapping, Optional

from requests.exceptions import RequestException
from twilio.base.exceptions import TwilioException
from twilio.request_validator import RequestValidator
from twilio.rest import Client
from twilio.twiml.messaging_response import MessagingResponse
from twilio.twiml.voice_response import VoiceResponse

from autoflow.config import settings

logger = logging.getLogger(__name__)

VOICE = "alice"
RECORDING_MAX_SECONDS = 120
DIAL_TIMEOUT_SECONDS = 15

_client: Optional[Client] = None


class SmsSendError(Exception):
    """Outbound SMS could not be delivered to Twilio."""


def twilio_configured() -> bool:
    return bool(settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN)


def get_client() -> Client:
    global _client
    if _client is None:
        _client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
    return _client


def preview(text: Optional[str], limit: int = 80) -> str:
    text = (text or "").replace("\n", " ")
    return text if len(text) <= limit else text[:limit] + "..."


async def send_sms(to: str, body: str, from_number: Optional[str] = None) -> str:
    """
    Send an SMS.

    Args:
        to: Customer number (E.164)
        body: Message text
        from_number: Business Twilio number; defaults to TWILIO_PHONE_NUMBER

    Returns:
        str: Twilio message SID (simulated when Twilio is not configured)

    Raises:
        SmsSendError: when Twilio rejects the send or is unreachable
    """
    sender = from_number or settings.TWILIO_PHONE_NUMBER
    if not twilio_configured():
        sid = f"SMsimulated{uuid.uuid4().hex[:24]}"
        logger.warning("⚠️ Twilio not configured - would send SMS to %s: %s", to, preview(body))
        return sid
    if not sender:
        raise SmsSendError("No sender number configured")

    def _send():
        return get_client().messages.create(body=body, from_=sender, to=to)

    try:
        message = await asyncio.to_thread(_send)
    except (TwilioException, RequestException) as e:
        logger.error("❌ Failed to send SMS to %s: %s", to, e)
        raise SmsSendError(str(e)) from e
    logger.info("📱 SMS sent to %s: %s", to, message.sid)
    return message.sid


def validate_signature(url: str, params: Mapping[str, str], signature: Optional[str]) -> bool:
    """Check X-Twilio-Signature; always True when validation is switched off."""
    if not settings.TWILIO_VALIDATE_SIGNATURES:
        return True
    if not settings.TWILIO_AUTH_TOKEN or not signature:
        return False
    return RequestValidator(settings.TWILIO_AUTH_TOKEN).validate(url, dict(params), signature)


def callback_url(path: str) -> str:
    return settings.PUBLIC_BASE_URL.rstrip("/") + path


# --- TwiML -----------------------------------------------------------------

def empty_messaging_response() -> str:
    """Acknowledge an inbound SMS without replying through TwiML."""
    return str(MessagingResponse())


def empty_voice_response() -> str:
    return str(VoiceResponse())


def say_and_hangup(text: str) -> str:
    vr = VoiceResponse()
    vr.say(text, voice=VOICE)
    vr.hangup()
    return str(vr)


def unconfigured_number_response() -> str:
    return say_and_hangup("Sorry, this number is not currently configured. Please try again later.")


def technical_difficulties_response() -> str:
    return say_and_hangup("Sorry, we're experiencing technical difficulties. Please try again later.")


def voicemail_prompt(greeting: str, action_path: str = "/api/twilio/recording") -> str:
    """Greeting, a recorded message with transcription, then a fallback line."""
    vr = VoiceResponse()
    vr.say(greeting, voice=VOICE)
    vr.record(
        max_length=RECORDING_MAX_SECONDS,
        action=callback_url(action_path),
        transcribe=True,
        transcribe_callback=callback_url("/api/twilio/recording"),
        play_beep=True,
    )
    vr.say("We didn't receive a recording. We'll send you a text message shortly. Goodbye.", voice=VOICE)
    return str(vr)


def forwarded_call_greeting(business_name: str) -> str:
    return (
        f"Hi, thanks for calling {business_name}. We're sorry we missed your call. "
        "Please leave a message after the tone and we'll get back to you shortly. "
        "Or just hang up and we'll send you a text message."
    )


MISSED_CALL_GREETING = (
    "Sorry, we can't take your call right now. We've sent you a text message. "
    "You can also leave a voicemail after the tone."
)


def dial_forwarding_number(number: str) -> str:
    """Ring the owner's phone; the status callback decides if it was missed."""
    vr = VoiceResponse()
    dial = vr.dial(timeout=DIAL_TIMEOUT_SECONDS, action=callback_url("/api/twilio/voice/status"), method="POST")
    dial.number(
        number,
        status_callback_event="completed",
        status_callback=callback_url("/api/twilio/voice/status"),
    )
    return str(vr)


def hangup_response() -> str:
    vr = VoiceResponse()
    vr.hangup()
    return str(vr)
