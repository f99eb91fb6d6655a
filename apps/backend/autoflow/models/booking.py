from sqlalchemy import Column, String, Text, Boolean, Date, Time, TIMESTAMP, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from .db import Base, utcnow
from .enums import BookingSource, BookingStatus, enum_column

class Booking(Base):
    """A calendar entry occupying the half-open interval [start_time, end_time)."""
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_user_date", "user_id", "booking_date"),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id"), nullable=True)
    # at most one booking per SMS conversation
    conversation_id = Column(UUID(as_uuid=True), ForeignKey("sms_conversations.id"), nullable=True, unique=True)
    customer_name = Column(String, nullable=False)
    customer_phone = Column(String)
    customer_email = Column(String)
    customer_address = Column(String)
    title = Column(String, nullable=False)
    description = Column(Text)
    booking_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(enum_column(BookingStatus, name="booking_status"), nullable=False, default=BookingStatus.PENDING)
    source = Column(enum_column(BookingSource, name="booking_source"), nullable=False, default=BookingSource.MANUAL)
    notes = Column(Text)
    reminder_sent_24h = Column(Boolean, nullable=False, default=False)
    reminder_sent_2h = Column(Boolean, nullable=False, default=False)

    created_at = Column(TIMESTAMP(timezone=True), default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow)

    lead = relationship("Lead", back_populates="bookings")
    conversation = relationship("Conversation", back_populates="booking")

    def overlaps(self, start, end) -> bool:
        return start < self.end_time and end > self.start_time
