import hmac
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from autoflow.config import settings
from autoflow.models.db import get_db
from autoflow.services import follow_up_service, reminder_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """Bearer CRON_SECRET; an unset secret locks the triggers entirely."""
    expected = f"Bearer {settings.CRON_SECRET}" if settings.CRON_SECRET else None
    if not expected or not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/reminders", dependencies=[Depends(require_cron_secret)])
async def reminders(db: Session = Depends(get_db)):
    results = await reminder_service.run_reminders(db)
    return {"success": True, **results.as_dict()}


@router.get("/follow-ups", dependencies=[Depends(require_cron_secret)])
async def follow_ups(db: Session = Depends(get_db)):
    now = datetime.now(timezone.utc)
    results = await follow_up_service.run_follow_ups(db, now=now)
    return {"success": True, **results, "timestamp": now.isoformat()}
