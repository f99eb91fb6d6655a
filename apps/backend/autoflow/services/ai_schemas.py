"""Response schemas for the intent classifier.

LLM output is untrusted: it is validated against these models and any
failure sends the caller down its fallback path.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from autoflow.models.enums import ConversationStage, Urgency


class _AIModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class LeadAnalysis(_AIModel):
    """One-shot triage of a web enquiry or voicemail."""
    urgency: Urgency
    category: str = Field(min_length=1, max_length=120)
    summary: str = Field(min_length=1)
    suggested_response: str = Field(min_length=1)

    @field_validator("urgency", mode="before")
    @classmethod
    def normalize_urgency(cls, v):
        # Unknown labels are triaged as warm rather than rejected
        if isinstance(v, str) and v.strip().lower() in Urgency._value2member_map_:
            return v.strip().lower()
        return Urgency.WARM


class ExtractedFields(_AIModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    needs: Optional[str] = None
    address: Optional[str] = None

    @field_validator("name", "email", "needs", "address", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)

    def present(self) -> dict:
        """Only the fields the classifier actually returned."""
        return {k: v for k, v in self.model_dump().items() if v is not None}


class BookingRequest(_AIModel):
    wants_to_book: bool = False
    date: Optional[str] = None
    time: Optional[str] = None
    description: Optional[str] = None

    @field_validator("date", "time", "description", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)


class ConversationTurn(_AIModel):
    """One conversational SMS turn proposed by the classifier."""
    reply: str = Field(min_length=1)
    should_escalate: bool = False
    reason: Optional[str] = None
    new_stage: Optional[ConversationStage] = None
    extracted_fields: Optional[ExtractedFields] = None
    booking_request: Optional[BookingRequest] = None

    @field_validator("reason", mode="before")
    @classmethod
    def blank_reason(cls, v):
        return _blank_to_none(v)

    @field_validator("new_stage", mode="before")
    @classmethod
    def normalize_stage(cls, v):
        v = _blank_to_none(v)
        return v.strip().lower() if isinstance(v, str) else v
