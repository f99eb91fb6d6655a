"""Closed value sets for leads, conversations and bookings.

Every enum is stored through ``enum_column`` so an unknown string is
rejected when it reaches the database instead of being trusted.
"""

from enum import Enum

from sqlalchemy import Enum as SAEnum


class InvalidTransitionError(ValueError):
    """Raised when a status change is not a legal transition."""


def enum_column(enum_cls, *, name: str) -> SAEnum:
    """Bind a str-enum to a VARCHAR column holding the member values."""
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        length=32,
        values_callable=lambda members: [member.value for member in members],
    )


class ResponseTone(str, Enum):
    PROFESSIONAL = "professional"
    FRIENDLY = "friendly"
    CASUAL = "casual"

    @classmethod
    def coerce(cls, value) -> "ResponseTone":
        try:
            return cls(value)
        except ValueError:
            return cls.FRIENDLY


class LeadSource(str, Enum):
    WEB = "web"
    MISSED_CALL = "missed_call"
    SMS = "sms"
    VOICEMAIL = "voicemail"
    MANUAL = "manual"

    @classmethod
    def has_value(cls, value) -> bool:
        return value in cls._value2member_map_


class Urgency(str, Enum):
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


class LeadStatus(str, Enum):
    """
    new → contacted → qualified → converted | lost

    Forward skips are allowed; converted and lost are terminal.
    """
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    CONVERTED = "converted"
    LOST = "lost"

    @property
    def is_terminal(self) -> bool:
        return self in (LeadStatus.CONVERTED, LeadStatus.LOST)

    @property
    def rank(self) -> int:
        order = [LeadStatus.NEW, LeadStatus.CONTACTED, LeadStatus.QUALIFIED]
        return order.index(self) if self in order else len(order)

    def can_transition_to(self, target: "LeadStatus") -> bool:
        if self == target:
            return True
        if self.is_terminal:
            return False
        return target.rank > self.rank


class LeadActivityType(str, Enum):
    AUTO_REPLY = "auto_reply"
    FOLLOW_UP = "follow_up"
    NOTE = "note"
    STATUS_CHANGE = "status_change"
    EMAIL_SENT = "email_sent"
    BOOKING = "booking"
    ESCALATION = "escalation"


class ConversationStatus(str, Enum):
    """
    active → escalated | closed

    ``escalated`` suspends automated replies. Its only exit is a manual
    re-activation from the dashboard.
    """
    ACTIVE = "active"
    ESCALATED = "escalated"
    CLOSED = "closed"


class ConversationStage(str, Enum):
    GREETING = "greeting"
    QUALIFYING = "qualifying"
    DETAILS = "details"
    BOOKING = "booking"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return list(ConversationStage).index(self)


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageSender(str, Enum):
    CUSTOMER = "customer"
    AI = "ai"
    BUSINESS_OWNER = "business_owner"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Cancelled bookings give their slot back; every other status holds it
FREED_BOOKING_STATUSES = (BookingStatus.CANCELLED,)


class BookingSource(str, Enum):
    MANUAL = "manual"
    WEBSITE = "website"
    AI_SMS = "ai_sms"


class CallStatus(str, Enum):
    RINGING = "ringing"
    MISSED = "missed"
    VOICEMAIL = "voicemail"
    COMPLETED = "completed"
