from .db import Base, engine
from .profile import Profile
from .lead import Lead
from .lead_activity import LeadActivity
from .conversation import Conversation
from .message import Message
from .booking import Booking
from .availability import AvailabilityRule, BlockedDate
from .call_event import CallEvent

def create_all():
    Base.metadata.create_all(bind=engine)
