import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, ValidationError
from sqlalchemy.orm import Session

from autoflow.models.db import get_db
from autoflow.services import intake_service, profile_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["leads"])


class WebLeadReq(BaseModel):
    name: str
    email: EmailStr
    message: str
    api_key: str
    phone: Optional[str] = None
    source: Optional[str] = None


@router.post("/lead")
async def web_lead(request: Request, db: Session = Depends(get_db)):
    """
    Website form intake. Embeddable anywhere, so validation errors are
    returned as plain 400s instead of FastAPI's 422 shape.
    """
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse({"error": "Request body must be JSON"}, status_code=400)
    if not isinstance(payload, dict):
        return JSONResponse({"error": "Request body must be a JSON object"}, status_code=400)

    missing = [f for f in ("name", "email", "message", "api_key") if not str(payload.get(f) or "").strip()]
    if missing:
        return JSONResponse(
            {"error": "Missing required fields: name, email, message, api_key"}, status_code=400
        )
    try:
        req = WebLeadReq(**payload)
    except ValidationError:
        return JSONResponse({"error": "Invalid email format"}, status_code=400)

    profile = profile_service.get_by_api_key(db, req.api_key)
    if profile is None:
        return JSONResponse({"error": "Invalid API key"}, status_code=401)

    try:
        result = await intake_service.handle_web_lead(
            db,
            profile,
            name=req.name.strip(),
            email=str(req.email),
            message=req.message.strip(),
            phone=req.phone,
            source=req.source,
        )
    except Exception:
        db.rollback()
        logger.exception("❌ Web lead webhook error")
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    return {
        "success": True,
        "lead_id": str(result["lead_id"]),
        "urgency": result["urgency"],
        "category": result["category"],
        "auto_reply_sent": result["auto_reply_sent"],
        "message": "Lead received and processed successfully",
    }
