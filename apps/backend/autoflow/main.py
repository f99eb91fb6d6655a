import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import OperationalError

from .config import settings
from .api.routes_health import router as health_router
from .api.routes_twilio import router as twilio_router
from .api.routes_leads import router as leads_router
from .api.routes_cron import router as cron_router
from .models import create_all

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

# Create FastAPI app
app = FastAPI(
    title="AutoFlow SMS Engine API",
    version="1.0.0",
    description="Lead intake, SMS qualification and booking engine for small businesses."
)

# ✅ Enable CORS (the lead webhook is posted from customer websites)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health_router)
app.include_router(twilio_router)
app.include_router(leads_router)
app.include_router(cron_router)

# Database setup on startup
@app.on_event("startup")
def startup():
    print("🚀 Starting up AutoFlow SMS Engine API...")
    print(f"🌐 Environment: {settings.ENV}")
    # Auto-create tables if they don't exist
    try:
        create_all()
    except OperationalError as e:
        raise RuntimeError("❌ Database connection failed. Check DATABASE_URL and credentials.") from e

# Base route
@app.get("/")
def root():
    return {
        "name": "AutoFlow SMS Engine API",
        "env": settings.ENV,
        "status": "running",
        "docs_url": "/docs"
    }
