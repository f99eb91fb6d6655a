from sqlalchemy import Column, String, Integer, Text, Boolean, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
import uuid
from .db import Base, utcnow
from .enums import CallStatus, enum_column

class CallEvent(Base):
    __tablename__ = "call_events"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id"), nullable=True)
    twilio_call_sid = Column(String, unique=True, index=True)
    caller_number = Column(String)
    called_number = Column(String)
    forwarded_from = Column(String)
    status = Column(enum_column(CallStatus, name="call_status"), nullable=False, default=CallStatus.RINGING)
    text_back_sent = Column(Boolean, nullable=False, default=False)
    recording_url = Column(String)
    duration_seconds = Column(Integer)
    transcription = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow)
