from sqlalchemy import Column, String, Integer, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from .db import Base, utcnow
from .enums import ConversationStage, ConversationStatus, enum_column

class Conversation(Base):
    __tablename__ = "sms_conversations"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id"), nullable=True)
    customer_number = Column(String, nullable=False, index=True)
    business_number = Column(String, nullable=False, index=True)
    status = Column(enum_column(ConversationStatus, name="conversation_status"), nullable=False, default=ConversationStatus.ACTIVE)
    stage = Column(enum_column(ConversationStage, name="conversation_stage"), nullable=False, default=ConversationStage.GREETING)
    message_count = Column(Integer, nullable=False, default=0)
    escalation_reason = Column(String)

    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, index=True)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow)

    lead = relationship("Lead", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )
    booking = relationship("Booking", back_populates="conversation", uselist=False)
