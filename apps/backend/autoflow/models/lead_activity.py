from sqlalchemy import Column, Text, TIMESTAMP, ForeignKey, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from .db import Base, utcnow
from .enums import LeadActivityType, enum_column

class LeadActivity(Base):
    __tablename__ = "lead_activities"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    type = Column(enum_column(LeadActivityType, name="lead_activity_type"), nullable=False)
    description = Column(Text, nullable=False)
    metadata_ = Column("metadata", JSON)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow)

    lead = relationship("Lead", back_populates="activities")
