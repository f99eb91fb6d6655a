import logging
from datetime import datetime, timezone

import redis
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from autoflow.models.db import get_db
from autoflow.services import state_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health_root():
    return {"status": "ok", "ts": datetime.now(timezone.utc).isoformat()}


@router.get("/ready")
def health_ready(db: Session = Depends(get_db)):
    """Store + idempotency cache reachability."""
    checks = {"database": "ok", "redis": "ok"}
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("❌ Database health check failed: %s", e)
        checks["database"] = "error"
    try:
        state_service.r.ping()
    except redis.RedisError as e:
        logger.warning("⚠️ Redis health check failed: %s", e)
        checks["redis"] = "degraded"
    status_code = 503 if checks["database"] != "ok" else 200
    return JSONResponse({"status": "ok" if status_code == 200 else "error", **checks}, status_code=status_code)
