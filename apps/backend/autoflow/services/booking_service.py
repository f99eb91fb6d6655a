"""
Booking commit.

The slot offered to the customer was computed several turns (and seconds)
earlier, so the commit re-reads the business's bookings for that date
under a row lock on the business profile and refuses any overlap.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from autoflow.config import settings
from autoflow.models.availability import AvailabilityRule, BlockedDate
from autoflow.models.booking import Booking
from autoflow.models.conversation import Conversation
from autoflow.models.enums import FREED_BOOKING_STATUSES, BookingSource, BookingStatus
from autoflow.models.lead import Lead
from autoflow.models.profile import Profile
from autoflow.services.availability_service import effective_week
from autoflow.services.datetime_parser import sunday_based_weekday

logger = logging.getLogger(__name__)


class BookingConflictError(Exception):
    """The requested slot is taken or outside the business's open hours."""

    def __init__(self, message: str, reason: str = "slot conflict"):
        super().__init__(message)
        self.reason = reason


class BookingExistsError(Exception):
    """The conversation already produced a booking."""


def for_conversation(db: Session, conversation_id) -> Optional[Booking]:
    return db.query(Booking).filter(Booking.conversation_id == conversation_id).first()


def _end_of(booking_date: date, start_time: time, minutes: int) -> time:
    end = datetime.combine(booking_date, start_time) + timedelta(minutes=minutes)
    if end.date() != booking_date:
        raise BookingConflictError("Booking would run past midnight", reason="slot unavailable")
    return end.time()


def _check_open(db: Session, profile: Profile, booking_date: date, start_time: time, end_time: time) -> None:
    blocked = (
        db.query(BlockedDate)
        .filter(BlockedDate.user_id == profile.id, BlockedDate.blocked_date == booking_date)
        .first()
    )
    if blocked:
        raise BookingConflictError(f"{booking_date} is blocked", reason="slot unavailable")
    rules = (
        db.query(AvailabilityRule)
        .filter(AvailabilityRule.user_id == profile.id)
        .order_by(AvailabilityRule.updated_at, AvailabilityRule.created_at)
        .all()
    )
    window = effective_week(rules).get(sunday_based_weekday(booking_date))
    if not window or not window.is_available:
        raise BookingConflictError(f"Closed on {booking_date:%A}", reason="slot unavailable")
    if not (window.start_time <= start_time and end_time <= window.end_time):
        raise BookingConflictError(f"{start_time:%H:%M} is outside open hours", reason="slot unavailable")


def find_overlap(db: Session, user_id, booking_date: date, start_time: time, end_time: time) -> Optional[Booking]:
    """First pending/confirmed booking on that date whose interval overlaps."""
    existing = (
        db.query(Booking)
        .filter(
            Booking.user_id == user_id,
            Booking.booking_date == booking_date,
            Booking.status.notin_(FREED_BOOKING_STATUSES),
        )
        .all()
    )
    return next((b for b in existing if b.overlaps(start_time, end_time)), None)


def commit_booking(
    db: Session,
    profile: Profile,
    conversation: Conversation,
    lead: Lead,
    booking_date: date,
    start_time: time,
    description: Optional[str] = None,
    duration_minutes: Optional[int] = None,
) -> Booking:
    """
    Create a confirmed AI-sourced booking for a conversation and commit it.

    Args:
        db: Session; must hold no uncommitted work the caller wants to keep
            if this raises
        profile: Owning business
        conversation: SMS conversation the booking came from
        lead: Lead supplying the customer details
        booking_date: Local calendar date
        start_time: Slot start (local time of day)
        description: Job description from the conversation
        duration_minutes: Defaults to DEFAULT_MEETING_DURATION_MINUTES

    Returns:
        Booking: the committed row

    Raises:
        BookingExistsError: the conversation already has a booking
        BookingConflictError: the slot overlaps a live booking or is closed
    """
    end_time = _end_of(booking_date, start_time, duration_minutes or settings.DEFAULT_MEETING_DURATION_MINUTES)

    # Serialise commits per business (no-op on SQLite)
    db.query(Profile).filter(Profile.id == profile.id).with_for_update().one()

    if for_conversation(db, conversation.id) is not None:
        raise BookingExistsError(f"Conversation {conversation.id} already has a booking")

    _check_open(db, profile, booking_date, start_time, end_time)

    clash = find_overlap(db, profile.id, booking_date, start_time, end_time)
    if clash is not None:
        raise BookingConflictError(
            f"{booking_date} {start_time:%H:%M} overlaps booking {clash.id} "
            f"({clash.start_time:%H:%M}-{clash.end_time:%H:%M})"
        )

    booking = Booking(
        user_id=profile.id,
        lead_id=lead.id,
        conversation_id=conversation.id,
        customer_name=lead.name,
        customer_phone=lead.phone or conversation.customer_number,
        customer_email=lead.email,
        customer_address=lead.address,
        title=f"Job: {lead.name}",
        description=description or lead.ai_summary or lead.message,
        booking_date=booking_date,
        start_time=start_time,
        end_time=end_time,
        status=BookingStatus.CONFIRMED,
        source=BookingSource.AI_SMS,
    )
    db.add(booking)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise BookingExistsError(f"Conversation {conversation.id} already has a booking") from e
    logger.info(
        "📅 Booking %s confirmed for %s on %s at %s",
        booking.id, lead.name, booking_date, start_time.strftime("%H:%M"),
    )
    return booking
