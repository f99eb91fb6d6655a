"""
Conversation Store.

One open conversation per (customer_number, business_number). Status
moves active -> escalated | closed; automated code can escalate or close
but only ``reactivate`` (a manual dashboard action) leaves ``escalated``.
Stages only move forward.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from autoflow.config import settings
from autoflow.models.conversation import Conversation
from autoflow.models.enums import (
    ConversationStage,
    ConversationStatus,
    InvalidTransitionError,
    MessageDirection,
    MessageSender,
)
from autoflow.models.lead import Lead
from autoflow.models.message import Message
from autoflow.models.profile import Profile

logger = logging.getLogger(__name__)

OPEN_STATUSES = (ConversationStatus.ACTIVE, ConversationStatus.ESCALATED)


def latest_open(db: Session, customer_number: str, business_number: str) -> Optional[Conversation]:
    """Most recent active or escalated conversation for the pair."""
    return (
        db.query(Conversation)
        .filter(
            Conversation.customer_number == customer_number,
            Conversation.business_number == business_number,
            Conversation.status.in_(OPEN_STATUSES),
        )
        .order_by(Conversation.created_at.desc())
        .first()
    )


def latest_active(db: Session, customer_number: str, business_number: str) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(
            Conversation.customer_number == customer_number,
            Conversation.business_number == business_number,
            Conversation.status == ConversationStatus.ACTIVE,
        )
        .order_by(Conversation.created_at.desc())
        .first()
    )


def create_conversation(
    db: Session,
    profile: Profile,
    customer_number: str,
    business_number: str,
    lead: Optional[Lead] = None,
) -> Conversation:
    conversation = Conversation(
        user_id=profile.id,
        lead_id=lead.id if lead is not None else None,
        customer_number=customer_number,
        business_number=business_number,
        status=ConversationStatus.ACTIVE,
        stage=ConversationStage.GREETING,
        message_count=0,
    )
    db.add(conversation)
    db.flush()
    logger.info("💬 Conversation %s opened for %s", conversation.id, customer_number)
    return conversation


def append_message(
    db: Session,
    conversation: Conversation,
    direction: MessageDirection,
    sender: MessageSender,
    body: str,
    twilio_message_sid: Optional[str] = None,
) -> Message:
    """Append one turn; the transcript is append-only."""
    message = Message(
        conversation_id=conversation.id,
        direction=direction,
        sender=sender,
        body=body,
        twilio_message_sid=twilio_message_sid,
    )
    db.add(message)
    conversation.message_count = (conversation.message_count or 0) + 1
    db.flush()
    return message


def recent_history(
    db: Session,
    conversation: Conversation,
    limit: Optional[int] = None,
    exclude_id=None,
) -> list[dict]:
    """
    Last ``limit`` turns, oldest first, as classifier history entries.

    Returns:
        list[dict]: [{"role": "customer" | "assistant", "content": "..."}]
    """
    limit = limit or settings.MAX_CONVERSATION_HISTORY
    query = db.query(Message).filter(Message.conversation_id == conversation.id)
    if exclude_id is not None:
        query = query.filter(Message.id != exclude_id)
    rows = query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit).all()
    rows.reverse()
    return [
        {
            "role": "customer" if MessageSender(m.sender) == MessageSender.CUSTOMER else "assistant",
            "content": m.body,
        }
        for m in rows
    ]


def advance_stage(conversation: Conversation, proposed: Optional[ConversationStage]) -> bool:
    """
    Apply a proposed stage if it moves forward.

    Backward or repeated stages are ignored.

    Returns:
        bool: True when the stage changed
    """
    if proposed is None:
        return False
    current = ConversationStage(conversation.stage)
    proposed = ConversationStage(proposed)
    if proposed.rank <= current.rank:
        if proposed.rank < current.rank:
            logger.info(
                "↩️ Ignoring stage regression %s -> %s on conversation %s",
                current.value, proposed.value, conversation.id,
            )
        return False
    conversation.stage = proposed
    return True


def escalate(conversation: Conversation, reason: Optional[str]) -> bool:
    """
    Suspend automated replies.

    Returns:
        bool: False when the conversation was already escalated

    Raises:
        InvalidTransitionError: closed conversations cannot be escalated
    """
    status = ConversationStatus(conversation.status)
    if status == ConversationStatus.ESCALATED:
        return False
    if status == ConversationStatus.CLOSED:
        raise InvalidTransitionError(f"Conversation {conversation.id} is closed")
    conversation.status = ConversationStatus.ESCALATED
    conversation.escalation_reason = reason
    logger.warning("🚨 Conversation %s escalated: %s", conversation.id, reason)
    return True


def close(conversation: Conversation) -> None:
    """Manual close from the owner dashboard; an escalated conversation must be re-activated first."""
    if ConversationStatus(conversation.status) == ConversationStatus.ESCALATED:
        raise InvalidTransitionError(f"Conversation {conversation.id} is escalated; re-activate it first")
    conversation.status = ConversationStatus.CLOSED


def reactivate(conversation: Conversation) -> None:
    """Manual hand-back from the owner: the only exit from ``escalated``."""
    if ConversationStatus(conversation.status) != ConversationStatus.ESCALATED:
        raise InvalidTransitionError(f"Conversation {conversation.id} is not escalated")
    conversation.status = ConversationStatus.ACTIVE
    conversation.escalation_reason = None
