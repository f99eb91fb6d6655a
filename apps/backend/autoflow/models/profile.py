from sqlalchemy import Column, String, Text, Boolean, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from .db import Base, utcnow
from .enums import ResponseTone, enum_column

class Profile(Base):
    """A business account: owner contact, Twilio routing and AI context."""
    __tablename__ = "profiles"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, nullable=False)          # owner notifications go here
    full_name = Column(String)
    business_name = Column(String)
    industry = Column(String)
    business_description = Column(Text)
    business_services = Column(Text)
    business_phone = Column(String)
    business_address = Column(String)
    business_website = Column(String)
    response_tone = Column(enum_column(ResponseTone, name="response_tone"), default=ResponseTone.FRIENDLY)
    auto_reply_enabled = Column(Boolean, nullable=False, default=True)

    twilio_phone_number = Column(String, unique=True, index=True)
    forwarding_number = Column(String)
    timezone = Column(String)
    api_key = Column(String, unique=True, index=True)

    created_at = Column(TIMESTAMP(timezone=True), default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow)

    leads = relationship("Lead", back_populates="profile")
    availability_rules = relationship("AvailabilityRule", back_populates="profile", cascade="all, delete-orphan")
    blocked_dates = relationship("BlockedDate", back_populates="profile", cascade="all, delete-orphan")

    @property
    def display_name(self) -> str:
        return self.business_name or "us"
