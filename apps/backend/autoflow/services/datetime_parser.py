"""
Date/time parsing for booking requests and reminder labels.

The classifier is asked for ISO values ("2026-10-20", "14:00") but
customers paraphrase, so phrases like "tomorrow", "next Monday" or "2pm"
are resolved too, relative to the business's local date.
"""

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Optional

import pytz

from autoflow.config import settings

logger = logging.getLogger(__name__)

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

_MONTHS = {
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4,
    'may': 5, 'jun': 6, 'jul': 7, 'aug': 8,
    'sep': 9, 'oct': 10, 'nov': 11, 'dec': 12
}


def business_tz(tz_name: Optional[str]):
    """Resolve a profile timezone, falling back to DEFAULT_TIMEZONE."""
    try:
        return pytz.timezone(tz_name or settings.DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        logger.warning("⚠️ Unknown timezone %r, using %s", tz_name, settings.DEFAULT_TIMEZONE)
        return pytz.timezone(settings.DEFAULT_TIMEZONE)


def now_in(tz_name: Optional[str]) -> datetime:
    """Current wall-clock time in the business's timezone (tz-aware)."""
    return datetime.now(business_tz(tz_name))


def sunday_based_weekday(d: date) -> int:
    """0=Sunday .. 6=Saturday, the convention used by availability rules."""
    return (d.weekday() + 1) % 7


def parse_hhmm(value: str) -> time:
    hours, _, minutes = value.partition(":")
    return time(int(hours), int(minutes or 0))


def parse_booking_date(text: Optional[str], today: date) -> Optional[date]:
    """
    Parse a booking date relative to ``today``.

    Args:
        text: "2026-10-20", "tomorrow", "next Monday", "Oct 22", "22 October"
        today: the business's local date

    Returns:
        date, or None when nothing recognisable was found
    """
    if not text:
        return None
    text = text.lower().strip()

    iso = re.search(r'(\d{4})-(\d{2})-(\d{2})', text)
    if iso:
        try:
            return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
        except ValueError:
            return None

    if "day after tomorrow" in text:
        return today + timedelta(days=2)
    if "tomorrow" in text:
        return today + timedelta(days=1)
    if "today" in text:
        return today
    if "next week" in text:
        return today + timedelta(weeks=1)

    # "Oct 22", "October 22", "22 Oct", "22nd of October"
    date_patterns = [
        r'(\d{1,2})(?:st|nd|rd|th)?\s*(?:of\s+)?(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)',
        r'(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\s*(\d{1,2})',
    ]
    for pattern in date_patterns:
        match = re.search(pattern, text)
        if not match:
            continue
        if match.group(1).isdigit():
            day, month_str = int(match.group(1)), match.group(2)
        else:
            month_str, day = match.group(1), int(match.group(2))
        try:
            candidate = date(today.year, _MONTHS[month_str[:3]], day)
            # A date already behind us means next year
            if candidate < today:
                candidate = date(today.year + 1, candidate.month, candidate.day)
            return candidate
        except ValueError:
            return None

    for index, name in enumerate(DAY_NAMES):
        if name.lower() in text or re.search(rf'\b{name[:3].lower()}\b', text):
            days_ahead = index - today.weekday()
            if days_ahead <= 0:
                days_ahead += 7
            return today + timedelta(days=days_ahead)

    return None


def parse_booking_time(text: Optional[str]) -> Optional[time]:
    """
    Parse a time of day.

    Args:
        text: "14:00", "14:00:00", "2pm", "2:30 pm", "noon"

    Returns:
        time, or None when no time is present
    """
    if not text:
        return None
    text = text.lower().strip()

    if "noon" in text or "midday" in text:
        return time(12, 0)

    # 12-hour format first so "2:30pm" is not read as 02:30
    time_12h = re.search(r'(\d{1,2})(?::(\d{2}))?\s*(am|pm|a\.m\.|p\.m\.)', text)
    if time_12h:
        hour = int(time_12h.group(1))
        minute = int(time_12h.group(2)) if time_12h.group(2) else 0
        period = time_12h.group(3).replace(".", "")
        if hour > 12 or minute > 59:
            return None
        if period == 'pm' and hour != 12:
            hour += 12
        elif period == 'am' and hour == 12:
            hour = 0
        return time(hour, minute)

    time_24h = re.search(r'(\d{1,2}):(\d{2})', text)
    if time_24h:
        hour, minute = int(time_24h.group(1)), int(time_24h.group(2))
        if hour > 23 or minute > 59:
            return None
        return time(hour, minute)

    return None


def format_time_label(t: time) -> str:
    """14:00 -> "2:00pm" """
    hour = t.hour % 12 or 12
    suffix = "am" if t.hour < 12 else "pm"
    return f"{hour}:{t.minute:02d}{suffix}"


def format_day_label(d: date) -> str:
    """2026-10-19 -> "Monday 19 Oct" """
    return f"{DAY_NAMES[d.weekday()]} {d.day} {d.strftime('%b')}"
