"""
Lead records: creation, lookup, status transitions, field merges and the
activity log.

Functions here add and flush; the calling flow owns the commit.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from autoflow.models.db import utcnow
from autoflow.models.enums import InvalidTransitionError, LeadActivityType, LeadSource, LeadStatus, Urgency
from autoflow.models.lead import Lead
from autoflow.models.lead_activity import LeadActivity
from autoflow.models.profile import Profile

logger = logging.getLogger(__name__)

BOOKING_DETAIL_FIELDS = ("name", "address", "email")


def create_lead(
    db: Session,
    profile: Profile,
    *,
    source: LeadSource,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    name: Optional[str] = None,
    message: str = "",
    urgency: Urgency = Urgency.WARM,
    category: Optional[str] = None,
    ai_summary: Optional[str] = None,
    next_follow_up_at: Optional[datetime] = None,
) -> Lead:
    """
    Create a Lead for a business.

    The name defaults to the phone number (or email) until the customer
    gives one.

    Raises:
        ValueError: when neither phone nor email is supplied
    """
    if not phone and not email:
        raise ValueError("A lead needs a phone number or an email address")
    lead = Lead(
        user_id=profile.id,
        name=name or phone or email,
        phone=phone,
        email=email,
        message=message or "",
        source=source,
        urgency=urgency,
        category=category,
        ai_summary=ai_summary,
        status=LeadStatus.NEW,
        follow_up_count=0,
        next_follow_up_at=next_follow_up_at,
    )
    db.add(lead)
    db.flush()
    logger.info("✅ Lead created: %s (%s)", lead.id, LeadSource(source).value)
    return lead


def find_latest_by_phone(
    db: Session,
    user_id,
    phone: str,
    since: Optional[datetime] = None,
    source: Optional[LeadSource] = None,
) -> Optional[Lead]:
    """Most recent lead for this caller, optionally bounded by age and source."""
    query = db.query(Lead).filter(Lead.user_id == user_id, Lead.phone == phone)
    if since is not None:
        query = query.filter(Lead.created_at >= since)
    if source is not None:
        query = query.filter(Lead.source == source)
    return query.order_by(Lead.created_at.desc()).first()


def find_recent_duplicate(db: Session, user_id, phone: str, window_minutes: int) -> Optional[Lead]:
    """
    Heuristic de-duplication: a lead from the same caller created within the
    last ``window_minutes`` is treated as the same contact.
    """
    since = utcnow() - timedelta(minutes=window_minutes)
    return find_latest_by_phone(db, user_id, phone, since=since)


def set_status(lead: Lead, target: LeadStatus) -> bool:
    """
    Move a lead along new -> contacted -> qualified -> converted | lost.

    Returns:
        bool: True when the status changed

    Raises:
        InvalidTransitionError: backward moves or leaving a terminal status
    """
    current = LeadStatus(lead.status)
    target = LeadStatus(target)
    if current == target:
        return False
    if not current.can_transition_to(target):
        raise InvalidTransitionError(f"Lead {lead.id}: {current.value} -> {target.value} is not allowed")
    lead.status = target
    return True


def advance_status(lead: Lead, target: LeadStatus) -> bool:
    """Forward-only status bump used by automated flows; never raises."""
    try:
        return set_status(lead, target)
    except InvalidTransitionError:
        return False


def merge_extracted_fields(lead: Lead, fields: dict) -> list[str]:
    """
    Non-destructive merge of classifier-extracted fields.

    Only keys present with a value are written; ``needs`` lands in
    ``ai_summary``.

    Returns:
        list[str]: names of the lead attributes that changed
    """
    mapping = {"name": "name", "email": "email", "address": "address", "needs": "ai_summary"}
    changed = []
    for key, attr in mapping.items():
        value = fields.get(key)
        if value is None or value == "":
            continue
        value = str(value)
        if getattr(lead, attr) != value:
            setattr(lead, attr, value)
            changed.append(attr)
    return changed


def missing_booking_details(lead: Lead, fields: Optional[dict] = None) -> list[str]:
    """Which of name, address and email are still unknown for a booking."""
    fields = fields or {}
    missing = []
    for key in BOOKING_DETAIL_FIELDS:
        if fields.get(key):
            continue
        if key == "name":
            if not lead.has_real_name:
                missing.append(key)
        elif not getattr(lead, key):
            missing.append(key)
    return missing


def log_activity(
    db: Session,
    lead: Lead,
    activity_type: LeadActivityType,
    description: str,
    metadata: Optional[dict] = None,
) -> LeadActivity:
    activity = LeadActivity(
        lead_id=lead.id,
        user_id=lead.user_id,
        type=activity_type,
        description=description,
        metadata_=metadata,
    )
    db.add(activity)
    return activity
