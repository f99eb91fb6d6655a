"""
Availability Resolver.

Computes open one-hour appointment slots for a business from its weekly
availability rules, blocked dates and existing bookings. Read-only: it
never writes to the store.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from autoflow.config import settings
from autoflow.models.availability import AvailabilityRule, BlockedDate
from autoflow.models.booking import Booking
from autoflow.models.enums import FREED_BOOKING_STATUSES
from autoflow.models.profile import Profile
from autoflow.services.datetime_parser import (
    format_day_label,
    format_time_label,
    now_in,
    parse_hhmm,
    sunday_based_weekday,
)

logger = logging.getLogger(__name__)

NO_AVAILABILITY = "NO_AVAILABILITY"
MAX_LISTED_HOURS = 4


@dataclass(frozen=True)
class DayWindow:
    """Effective opening window for one weekday."""
    start_time: time
    end_time: time
    is_available: bool = True


@dataclass
class DaySlots:
    day: date
    open_times: list[time] = field(default_factory=list)

    @property
    def label(self) -> str:
        return format_day_label(self.day)

    @property
    def sample_times(self) -> list[time]:
        """First, middle and last hour when the day is wide open."""
        if len(self.open_times) > MAX_LISTED_HOURS:
            mid = len(self.open_times) // 2
            return [self.open_times[0], self.open_times[mid], self.open_times[-1]]
        return list(self.open_times)


@dataclass
class Availability:
    days: list[DaySlots] = field(default_factory=list)

    @property
    def has_openings(self) -> bool:
        return bool(self.days)

    def summary(self) -> str:
        """Compact day -> sample-times text handed to the classifier."""
        if not self.days:
            return NO_AVAILABILITY
        lines = []
        for day_slots in self.days:
            times = ", ".join(format_time_label(t) for t in day_slots.sample_times)
            lines.append(f"{day_slots.label} ({day_slots.day.isoformat()}): {times}")
        return "\n".join(lines)


def default_week() -> dict[int, DayWindow]:
    """Mon-Fri business hours, weekends closed."""
    start = parse_hhmm(settings.DEFAULT_AVAILABILITY_START)
    end = parse_hhmm(settings.DEFAULT_AVAILABILITY_END)
    return {dow: DayWindow(start, end, True) for dow in range(1, 6)}


def effective_week(rules: list[AvailabilityRule]) -> dict[int, DayWindow]:
    """
    Overlay stored rules (oldest first) on the default week, so the latest
    write wins per weekday and a weekday with no rule keeps the default.
    """
    week = default_week()
    for rule in rules:
        week[rule.day_of_week] = DayWindow(rule.start_time, rule.end_time, bool(rule.is_available))
    return week


def hourly_candidates(window: DayWindow) -> list[tuple[time, time]]:
    """Whole-hour slots [h:00, h+1:00) that fit inside the window."""
    first_hour = window.start_time.hour
    if window.start_time.minute or window.start_time.second:
        first_hour += 1
    last_hour = window.end_time.hour  # exclusive: slot must end by end_time
    return [(time(h), time(h + 1)) for h in range(first_hour, last_hour)]


def overlaps(start: time, end: time, booked_start: time, booked_end: time) -> bool:
    """Half-open interval test."""
    return start < booked_end and end > booked_start


def _load_calendar(db: Session, user_id, first_day: date, last_day: date):
    rules = (
        db.query(AvailabilityRule)
        .filter(AvailabilityRule.user_id == user_id)
        .order_by(AvailabilityRule.updated_at, AvailabilityRule.created_at)
        .all()
    )
    blocked = {
        row.blocked_date
        for row in db.query(BlockedDate).filter(
            BlockedDate.user_id == user_id,
            BlockedDate.blocked_date >= first_day,
            BlockedDate.blocked_date <= last_day,
        )
    }
    booked = defaultdict(list)
    bookings = (
        db.query(Booking)
        .filter(
            Booking.user_id == user_id,
            Booking.booking_date >= first_day,
            Booking.booking_date <= last_day,
            Booking.status.notin_(FREED_BOOKING_STATUSES),
        )
        .all()
    )
    for booking in bookings:
        booked[booking.booking_date].append((booking.start_time, booking.end_time))
    return rules, blocked, booked


def get_available_slots(
    db: Session,
    profile: Profile,
    today: Optional[date] = None,
    lookahead_days: Optional[int] = None,
    target_days: Optional[int] = None,
) -> Availability:
    """
    Walk day+1 .. day+lookahead and collect days with at least one open hour.

    Stops after ``target_days`` days with openings. Any data-access failure
    yields an empty result so callers escalate instead of booking blind.
    """
    lookahead = lookahead_days or settings.AVAILABILITY_LOOKAHEAD_DAYS
    target = target_days or settings.AVAILABILITY_TARGET_DAYS
    today = today or now_in(profile.timezone).date()
    first_day = today + timedelta(days=1)
    last_day = today + timedelta(days=lookahead)

    try:
        rules, blocked, booked = _load_calendar(db, profile.id, first_day, last_day)
    except SQLAlchemyError as e:
        logger.error("❌ Availability lookup failed for business %s: %s", profile.id, e)
        return Availability()

    week = effective_week(rules)
    result = Availability()
    current = first_day
    while current <= last_day and len(result.days) < target:
        window = week.get(sunday_based_weekday(current))
        if current not in blocked and window and window.is_available:
            open_times = [
                start
                for start, end in hourly_candidates(window)
                if not any(overlaps(start, end, b_start, b_end) for b_start, b_end in booked[current])
            ]
            if open_times:
                result.days.append(DaySlots(day=current, open_times=open_times))
        current += timedelta(days=1)

    if not result.has_openings:
        logger.info("📅 No availability in the next %s days for business %s", lookahead, profile.id)
    return result
