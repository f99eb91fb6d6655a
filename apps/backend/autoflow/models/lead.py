from sqlalchemy import Column, String, Integer, Text, TIMESTAMP, ForeignKey, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, validates
import uuid
from .db import Base, utcnow
from .enums import LeadSource, LeadStatus, Urgency, enum_column

class Lead(Base):
    __tablename__ = "leads"
    __table_args__ = (
        CheckConstraint("follow_up_count >= 0 AND follow_up_count <= 3", name="ck_leads_follow_up_count"),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, index=True)
    phone = Column(String, index=True)
    address = Column(String)
    message = Column(Text, nullable=False, default="")
    source = Column(enum_column(LeadSource, name="lead_source"), nullable=False, default=LeadSource.MANUAL)
    urgency = Column(enum_column(Urgency, name="lead_urgency"), nullable=False, default=Urgency.WARM)
    category = Column(String)
    ai_summary = Column(Text)
    ai_response_sent = Column(Text)
    status = Column(enum_column(LeadStatus, name="lead_status"), nullable=False, default=LeadStatus.NEW)
    follow_up_count = Column(Integer, nullable=False, default=0)
    next_follow_up_at = Column(TIMESTAMP(timezone=True), index=True)

    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, index=True)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow)

    profile = relationship("Profile", back_populates="leads")
    conversations = relationship("Conversation", back_populates="lead")
    bookings = relationship("Booking", back_populates="lead")
    activities = relationship("LeadActivity", back_populates="lead", cascade="all, delete-orphan")

    @validates("status")
    def _clear_follow_up_on_close(self, key, value):
        # converted / lost leads never keep a pending follow-up
        status = LeadStatus(value)
        if status.is_terminal:
            self.next_follow_up_at = None
        return status

    @validates("next_follow_up_at")
    def _no_follow_up_when_closed(self, key, value):
        if value is not None and self.status is not None and LeadStatus(self.status).is_terminal:
            return None
        return value

    @property
    def has_real_name(self) -> bool:
        """Lead names start as the caller's number until the customer gives one."""
        return bool(self.name) and self.name != self.phone
