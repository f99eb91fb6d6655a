from sqlalchemy import Column, Text, String, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from .db import Base, utcnow
from .enums import MessageDirection, MessageSender, enum_column

class Message(Base):
    __tablename__ = "sms_messages"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(UUID(as_uuid=True), ForeignKey("sms_conversations.id"), nullable=False, index=True)
    direction = Column(enum_column(MessageDirection, name="message_direction"), nullable=False)
    sender = Column(enum_column(MessageSender, name="message_sender"), nullable=False)
    body = Column(Text, nullable=False)
    twilio_message_sid = Column(String)
    # transcript order
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, index=True)

    conversation = relationship("Conversation", back_populates="messages")
