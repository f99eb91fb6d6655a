import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from autoflow.config import settings
from autoflow.models.enums import LeadActivityType, LeadStatus
from autoflow.models.lead import Lead
from autoflow.models.profile import Profile
from autoflow.services import email_service, lead_service, openai_service
from autoflow.services.scoring_service import next_follow_up_delay

logger = logging.getLogger(__name__)

FOLLOW_UP_BATCH_SIZE = 20
# retry delay after a failed send; the count is not bumped
FAILED_SEND_RETRY = timedelta(hours=24)


def due_leads(db: Session, now: datetime, limit: int = FOLLOW_UP_BATCH_SIZE) -> list[Lead]:
    """Leads whose follow-up is due, oldest due first."""
    return (
        db.query(Lead)
        .join(Profile, Lead.user_id == Profile.id)
        .filter(
            Lead.next_follow_up_at.isnot(None),
            Lead.next_follow_up_at <= now,
            Lead.status.in_((LeadStatus.NEW, LeadStatus.CONTACTED)),
            Lead.follow_up_count < settings.MAX_FOLLOW_UPS,
            Lead.email.isnot(None),
            Profile.auto_reply_enabled.is_(True),
        )
        .order_by(Lead.next_follow_up_at)
        .limit(limit)
        .all()
    )


async def run_follow_ups(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Email every due lead a generated follow-up and schedule the next one.

    Each follow-up waits count x 48h after the previous; the schedule is
    cleared once MAX_FOLLOW_UPS have gone out. A failed send is retried a
    day later.

    Returns:
        dict: {"processed": int, "sent": int}
    """
    now = now or datetime.now(timezone.utc)
    processed = sent = 0

    for lead in due_leads(db, now):
        processed += 1
        profile = lead.profile
        business = openai_service.BusinessContext.from_profile(profile)
        number = lead.follow_up_count + 1
        body = await openai_service.generate_follow_up(lead.name, lead.message, number, business)

        result = await email_service.send_follow_up(lead.email, business.business_name, body, reply_to=profile.email)
        if not result["success"]:
            logger.error("❌ Follow-up #%s for lead %s failed: %s", number, lead.id, result["error"])
            lead.next_follow_up_at = now + FAILED_SEND_RETRY
            db.commit()
            continue

        sent += 1
        lead.follow_up_count = number
        delay = next_follow_up_delay(number)
        lead.next_follow_up_at = now + delay if delay is not None else None
        lead_service.advance_status(lead, LeadStatus.CONTACTED)
        lead_service.log_activity(
            db, lead, LeadActivityType.FOLLOW_UP,
            f"Follow-up #{number} sent to {lead.email}",
            {"email_id": result["id"], "follow_up_number": number},
        )
        db.commit()
        logger.info("📧 Follow-up #%s sent to lead %s", number, lead.id)

    return {"processed": processed, "sent": sent}
