from sqlalchemy import Column, Integer, String, Boolean, Date, Time, TIMESTAMP, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from .db import Base, utcnow

class AvailabilityRule(Base):
    """Recurring weekly window. day_of_week: 0=Sunday .. 6=Saturday."""
    __tablename__ = "availability_rules"
    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_availability_rules_day"),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)

    created_at = Column(TIMESTAMP(timezone=True), default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow)

    profile = relationship("Profile", back_populates="availability_rules")


class BlockedDate(Base):
    __tablename__ = "blocked_dates"
    __table_args__ = (
        UniqueConstraint("user_id", "blocked_date", name="uq_blocked_dates_user_date"),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True)
    blocked_date = Column(Date, nullable=False)
    reason = Column(String(length=255))
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow)

    profile = relationship("Profile", back_populates="blocked_dates")
