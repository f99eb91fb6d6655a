from typing import Optional

from sqlalchemy.orm import Session

from autoflow.models.profile import Profile


def get_by_twilio_number(db: Session, number: Optional[str]) -> Optional[Profile]:
    """Resolve the business that owns an inbound Twilio number."""
    if not number:
        return None
    return db.query(Profile).filter(Profile.twilio_phone_number == number).first()


def get_by_api_key(db: Session, api_key: Optional[str]) -> Optional[Profile]:
    if not api_key:
        return None
    return db.query(Profile).filter(Profile.api_key == api_key).first()


def telephony_enabled(db: Session) -> list[Profile]:
    """Businesses with a Twilio number, i.e. the ones that can receive reminders."""
    return (
        db.query(Profile)
        .filter(Profile.twilio_phone_number.isnot(None), Profile.twilio_phone_number != "")
        .all()
    )
