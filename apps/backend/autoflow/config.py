from typing import Literal, Optional
from pathlib import Path
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    ENV: Literal["development", "staging", "production", "test"] = Field("development")
    HOST: str = Field("0.0.0.0")
    PORT: int = Field(8000)
    LOG_LEVEL: str = Field(default="INFO")
    PUBLIC_BASE_URL: str = Field(default="http://localhost:8000")
    ADMIN_DASHBOARD_URL: str = Field(default="http://localhost:3000/dashboard")

    # Durable store + idempotency keys
    DATABASE_URL: str
    REDIS_URL: str

    # Intent classifier
    OPENAI_API_KEY: str = Field("dummy")
    OPENAI_MODEL: str = Field(default="gpt-4o")
    OPENAI_TIMEOUT_SECONDS: float = Field(default=20.0)

    # Twilio (SMS + voice)
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None
    TWILIO_VALIDATE_SIGNATURES: bool = Field(default=False)

    # SMTP Email Configuration
    SMTP_HOST: Optional[str] = Field(default="smtp.gmail.com")
    SMTP_PORT: Optional[int] = Field(default=587)
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM_EMAIL: Optional[str] = None
    SMTP_FROM_NAME: Optional[str] = Field(default="AutoFlow AI")
    SMTP_USE_TLS: bool = Field(default=True)

    # Shared secret for the cron triggers (reminders, follow-ups)
    CRON_SECRET: Optional[str] = None

    # Conversation + booking engine
    DEFAULT_TIMEZONE: str = Field(default="Australia/Adelaide")
    DEFAULT_MEETING_DURATION_MINUTES: int = Field(default=60)
    MAX_CONVERSATION_HISTORY: int = Field(default=20)
    SMS_MAX_REPLY_LENGTH: int = Field(default=320)
    AVAILABILITY_LOOKAHEAD_DAYS: int = Field(default=14)
    AVAILABILITY_TARGET_DAYS: int = Field(default=5)
    DEFAULT_AVAILABILITY_START: str = Field(default="07:00")
    DEFAULT_AVAILABILITY_END: str = Field(default="17:00")
    LEAD_DEDUP_WINDOW_MINUTES: int = Field(default=5)
    MAX_FOLLOW_UPS: int = Field(default=3)
    WEBHOOK_DEDUP_TTL_SECONDS: int = Field(default=86400)
    REMINDER_CLAIM_TTL_SECONDS: int = Field(default=900)

    @field_validator("DEFAULT_AVAILABILITY_START", "DEFAULT_AVAILABILITY_END", mode="after")
    @classmethod
    def validate_hhmm(cls, v):
        """Business-hours defaults must be HH:MM"""
        hours, _, minutes = v.partition(":")
        if not (hours.isdigit() and minutes.isdigit() and int(hours) < 24 and int(minutes) < 60):
            raise ValueError(f"expected HH:MM, got {v!r}")
        return v

    @field_validator("MAX_FOLLOW_UPS", mode="after")
    @classmethod
    def validate_follow_up_cap(cls, v):
        if not 0 <= v <= 3:
            raise ValueError("MAX_FOLLOW_UPS must be between 0 and 3")
        return v

try:
    settings = Settings()
except ValidationError as e:
    print("❌ Env validation failed:\n", e.json(indent=2))
    raise
