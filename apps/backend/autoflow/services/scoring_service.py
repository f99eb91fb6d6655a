"""
Lead Urgency & Follow-up Cadence

Urgency guide:
- hot: emergency, time-sensitive ("ASAP", "urgent", "broken", "leaking", "today")
- warm: active interest, quote requests, scheduling, ready to buy
- cold: general enquiry, browsing, future planning

Follow-up cadence:
- first follow-up: hot 2h, warm 24h, cold 48h after the enquiry
- each later follow-up waits count x 48h, up to MAX_FOLLOW_UPS
"""

import re
from datetime import timedelta
from typing import Optional

from autoflow.config import settings
from autoflow.models.enums import Urgency

HOT_KEYWORDS = (
    "asap", "urgent", "emergency", "broken", "leaking", "leak", "flooding",
    "burst", "today", "right now", "immediately", "no power", "smoke",
)
WARM_KEYWORDS = (
    "quote", "price", "cost", "book", "appointment", "schedule", "available",
    "availability", "estimate", "when can", "how much",
)

FIRST_FOLLOW_UP_HOURS = {
    Urgency.HOT: 2,
    Urgency.WARM: 24,
    Urgency.COLD: 48,
}

_BOOKING_INTENT = re.compile(r"\b(book|booking|appointment|schedule|when|available|availability|time)\b", re.IGNORECASE)


def infer_urgency(text: str) -> Urgency:
    """
    Keyword heuristic used when the classifier is unavailable.

    Args:
        text: Raw customer message or voicemail transcript

    Returns:
        Urgency: hot, warm or cold
    """
    lowered = (text or "").lower()
    if any(word in lowered for word in HOT_KEYWORDS):
        return Urgency.HOT
    if any(word in lowered for word in WARM_KEYWORDS):
        return Urgency.WARM
    return Urgency.COLD


def normalize_urgency(value) -> Urgency:
    """Unknown urgency labels fall back to warm."""
    try:
        return Urgency(str(value).strip().lower())
    except ValueError:
        return Urgency.WARM


def has_booking_intent(text: str) -> bool:
    """True when the message mentions booking, scheduling or availability."""
    return bool(_BOOKING_INTENT.search(text or ""))


def first_follow_up_delay(urgency) -> timedelta:
    return timedelta(hours=FIRST_FOLLOW_UP_HOURS[normalize_urgency(urgency)])


def next_follow_up_delay(follow_up_count: int) -> Optional[timedelta]:
    """
    Delay before the next follow-up once ``follow_up_count`` have been sent.

    Returns:
        timedelta, or None when the follow-up cap has been reached
    """
    if follow_up_count >= settings.MAX_FOLLOW_UPS:
        return None
    return timedelta(hours=48 * follow_up_count)
