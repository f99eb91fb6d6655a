"""
Reminder Scheduler.

Externally triggered sweep over telephony-enabled businesses. Two windows
per business, evaluated in the business's timezone:

- 24h: confirmed bookings dated between (now + 23h) and (now + 25h),
  compared at date granularity
- 2h: confirmed bookings dated today starting 90-150 minutes from now

Each (booking, window) pair is reminded at most once: a Redis claim keeps
overlapping runs apart, and the ``reminder_sent_*`` flag is flipped with a
conditional UPDATE only after the SMS went out.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from autoflow.models.booking import Booking
from autoflow.models.enums import BookingStatus, ResponseTone
from autoflow.models.profile import Profile
from autoflow.services import profile_service, sms_service, state_service
from autoflow.services.datetime_parser import DAY_NAMES, business_tz, format_time_label

logger = logging.getLogger(__name__)

WINDOW_24H = "24h"
WINDOW_2H = "2h"

FLAG_FOR_WINDOW = {
    WINDOW_24H: Booking.reminder_sent_24h,
    WINDOW_2H: Booking.reminder_sent_2h,
}

REMINDER_TEMPLATES = {
    WINDOW_24H: {
        ResponseTone.PROFESSIONAL: (
            "Hello {first_name}, this is a reminder of your appointment with {business} "
            "{when} at {time}. Please reply if you need to reschedule."
        ),
        ResponseTone.FRIENDLY: (
            "Hi {first_name}, just a reminder you have an appointment with {business} "
            "{when} at {time}. See you then! Reply CANCEL if you need to reschedule."
        ),
        ResponseTone.CASUAL: (
            "Hey {first_name}! Quick reminder, {business} is booked in {when} at {time}. "
            "Reply CANCEL if that doesn't work anymore."
        ),
    },
    WINDOW_2H: {
        ResponseTone.PROFESSIONAL: (
            "Hello {first_name}, your appointment with {business} begins in approximately "
            "2 hours, at {time}."
        ),
        ResponseTone.FRIENDLY: (
            "Hi {first_name}, just a heads up - your appointment with {business} is in "
            "about 2 hours at {time}. See you soon!"
        ),
        ResponseTone.CASUAL: (
            "Hey {first_name}! {business} will see you in about 2 hours, at {time}. Catch you soon!"
        ),
    },
}


@dataclass
class ReminderResults:
    sent24h: int = 0
    sent2h: int = 0
    errors: int = 0

    def as_dict(self) -> dict:
        return {"sent24h": self.sent24h, "sent2h": self.sent2h, "errors": self.errors}


def reminder_text(profile: Profile, booking: Booking, window: str, today: date) -> str:
    tone = ResponseTone.coerce(profile.response_tone)
    if booking.booking_date == today + timedelta(days=1):
        when = f"tomorrow ({DAY_NAMES[booking.booking_date.weekday()]})"
    elif booking.booking_date == today:
        when = "today"
    else:
        when = f"on {DAY_NAMES[booking.booking_date.weekday()]}"
    return REMINDER_TEMPLATES[window][tone].format(
        first_name=(booking.customer_name or "there").split(" ")[0],
        business=profile.display_name,
        when=when,
        time=format_time_label(booking.start_time),
    )


def due_24h(db: Session, profile: Profile, now_local: datetime) -> list[Booking]:
    first_day = (now_local + timedelta(hours=23)).date()
    last_day = (now_local + timedelta(hours=25)).date()
    return (
        db.query(Booking)
        .filter(
            Booking.user_id == profile.id,
            Booking.status == BookingStatus.CONFIRMED,
            Booking.reminder_sent_24h.is_(False),
            Booking.booking_date >= first_day,
            Booking.booking_date <= last_day,
        )
        .order_by(Booking.booking_date, Booking.start_time)
        .all()
    )


def due_2h(db: Session, profile: Profile, now_local: datetime) -> list[Booking]:
    candidates = (
        db.query(Booking)
        .filter(
            Booking.user_id == profile.id,
            Booking.status == BookingStatus.CONFIRMED,
            Booking.reminder_sent_2h.is_(False),
            Booking.booking_date == now_local.date(),
        )
        .order_by(Booking.start_time)
        .all()
    )
    now_minutes = now_local.hour * 60 + now_local.minute
    due = []
    for booking in candidates:
        diff = booking.start_time.hour * 60 + booking.start_time.minute - now_minutes
        if 90 <= diff <= 150:
            due.append(booking)
    return due


def mark_sent(db: Session, booking_id, window: str) -> bool:
    """Flip the window flag only if it is still false; True when this call flipped it."""
    flag = FLAG_FOR_WINDOW[window]
    updated = (
        db.query(Booking)
        .filter(Booking.id == booking_id, flag.is_(False))
        .update({flag: True}, synchronize_session=False)
    )
    db.commit()
    return updated == 1


async def send_reminder(db: Session, profile: Profile, booking: Booking, window: str, today: date) -> Optional[bool]:
    """
    Send one reminder.

    Returns:
        True when sent and flagged, False on failure, None when skipped
        (no phone number or another run holds the claim)
    """
    if not booking.customer_phone:
        return None
    if not state_service.claim_reminder(booking.id, window):
        logger.info("⏭️ Reminder %s for booking %s already claimed", window, booking.id)
        return None

    body = reminder_text(profile, booking, window, today)
    try:
        await sms_service.send_sms(booking.customer_phone, body, from_number=profile.twilio_phone_number)
    except sms_service.SmsSendError as e:
        state_service.release_reminder(booking.id, window)
        logger.error("❌ Failed to send %s reminder for booking %s: %s", window, booking.id, e)
        return False

    if not mark_sent(db, booking.id, window):
        logger.warning("⚠️ Booking %s was already flagged for the %s reminder", booking.id, window)
    logger.info("⏰ %s reminder sent to %s for booking %s", window, booking.customer_phone, booking.id)
    return True


async def run_reminders(db: Session, now: Optional[datetime] = None) -> ReminderResults:
    """
    One scheduler pass over every business with a Twilio number.

    Args:
        db: Session
        now: Aware "current" instant, injectable for tests (defaults to UTC now)

    Returns:
        ReminderResults
    """
    now = now or datetime.now(timezone.utc)
    results = ReminderResults()

    for profile in profile_service.telephony_enabled(db):
        now_local = now.astimezone(business_tz(profile.timezone))
        today = now_local.date()

        for window, bookings in (
            (WINDOW_24H, due_24h(db, profile, now_local)),
            (WINDOW_2H, due_2h(db, profile, now_local)),
        ):
            for booking in bookings:
                outcome = await send_reminder(db, profile, booking, window, today)
                if outcome is True:
                    if window == WINDOW_24H:
                        results.sent24h += 1
                    else:
                        results.sent2h += 1
                elif outcome is False:
                    results.errors += 1

    logger.info(
        "✅ Reminder run complete: %s x 24h, %s x 2h, %s errors",
        results.sent24h, results.sent2h, results.errors,
    )
    return results
