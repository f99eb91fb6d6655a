"""
Intent Classifier backed by OpenAI chat completions.

Three call shapes:
- classify: one-shot triage of an enquiry (urgency, category, summary, reply)
- converse: one multi-turn SMS step (reply, escalation, stage, fields, booking)
- generate_follow_up: plain-text follow-up email body

All responses are requested as JSON objects and validated with Pydantic
before anything downstream sees them.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from autoflow.config import settings
from autoflow.models.enums import ConversationStage, ResponseTone
from autoflow.models.profile import Profile
from autoflow.services.ai_schemas import ConversationTurn, LeadAnalysis
from autoflow.services.scoring_service import infer_urgency

logger = logging.getLogger(__name__)

aclient = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT_SECONDS)


class ClassifierError(Exception):
    """The classifier failed, timed out, or returned output that did not validate."""


@dataclass
class BusinessContext:
    business_name: str
    business_description: Optional[str] = None
    business_services: Optional[str] = None
    business_phone: Optional[str] = None
    business_address: Optional[str] = None
    response_tone: ResponseTone = ResponseTone.FRIENDLY
    industry: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: Profile) -> "BusinessContext":
        return cls(
            business_name=profile.business_name or "Business",
            business_description=profile.business_description,
            business_services=profile.business_services,
            business_phone=profile.business_phone,
            business_address=profile.business_address,
            response_tone=ResponseTone.coerce(profile.response_tone),
            industry=profile.industry,
        )

    def info_block(self) -> str:
        lines = [
            self.business_description and f"Business description: {self.business_description}",
            self.business_services and f"Services offered: {self.business_services}",
            self.business_phone and f"Phone: {self.business_phone}",
            self.business_address and f"Address: {self.business_address}",
            self.industry and f"Industry: {self.industry}",
        ]
        return "\n".join(line for line in lines if line) or "No additional business info provided."


URGENCY_GUIDE = """URGENCY GUIDE:
- hot: Emergency, urgent need, time-sensitive, words like "ASAP", "urgent", "emergency", "broken", "leaking", "today"
- warm: Active interest, requesting a quote, scheduling, ready to buy
- cold: General enquiry, browsing, "just wondering", future planning"""


CLASSIFY_PROMPT = """You are an AI assistant for "{business_name}", a small Australian business. Analyse this incoming lead enquiry and generate a response.

BUSINESS INFO:
{business_info}

INCOMING ENQUIRY:
From: {lead_name}
Message: "{lead_message}"

Respond with ONLY a JSON object in this exact format:
{{
  "urgency": "hot" or "warm" or "cold",
  "category": "short category label like Repair, Quote Request, General Enquiry, Emergency, Booking, Complaint",
  "summary": "One sentence summary of what the customer needs",
  "suggestedResponse": "A {tone} email response to send to the customer. Keep it concise (3-5 sentences). Address them by first name. Mention the business name. If it seems urgent, acknowledge the urgency. Don't make specific promises about timing unless the business info suggests availability. Sign off with the business name. Use Australian English spelling."
}}

{urgency_guide}"""


SMS_SYSTEM_PROMPT = """You are the SMS assistant for "{business_name}", a small Australian business. You are texting a customer on the business's behalf.

BUSINESS INFO:
{business_info}

**Your goal:** qualify the enquiry, collect the customer's name, address and email, and book a job in an open slot.

**Conversation stages (current stage: {stage}):**
- greeting: say hello, find out what they need
- qualifying: understand the job (what, where, how urgent)
- details: collect name, service address and email, ONE question at a time
- booking: offer open slots from the list below and confirm one
- complete: booking confirmed or enquiry resolved

**Open slots:**
{available_slots}

**Rules:**
1. Replies are SMS: {max_length} characters maximum, {tone} tone, Australian English
2. Ask only ONE question per message; never re-ask for something already given
3. Only offer slots from the list above; if it says NO_AVAILABILITY, do not offer times, set shouldEscalate
4. Set wantsToBook=true only when the customer has clearly accepted a specific listed slot
5. Escalate (shouldEscalate=true, with a reason) for emergencies, complaints, pricing negotiations, anything you cannot answer, or when the customer asks for a person
6. Never invent prices, availability or policies

Respond with ONLY a JSON object:
{{
  "reply": "the SMS text to send",
  "shouldEscalate": false,
  "reason": null,
  "newStage": "greeting" | "qualifying" | "details" | "booking" | "complete",
  "extractedFields": {{"name": null, "email": null, "needs": null, "address": null}},
  "bookingRequest": {{"wantsToBook": false, "date": "YYYY-MM-DD", "time": "HH:MM", "description": "short job description"}}
}}
Only fill extractedFields with values the customer actually gave."""


FOLLOW_UP_PROMPT = """You are an AI assistant for "{business_name}", a small Australian business. Generate a follow-up email for a lead who hasn't responded.

BUSINESS: {business_name}
CUSTOMER: {lead_name}
ORIGINAL ENQUIRY: "{original_message}"
FOLLOW-UP NUMBER: {follow_up_number} (1 = first follow-up, 2 = second, etc.)
TONE: {tone}

Write a short, {tone} follow-up email (2-4 sentences). Use Australian English. Address them by first name. Don't be pushy. If this is follow-up #2 or higher, keep it very brief and mention you don't want to bother them.

Respond with ONLY a JSON object: {{"body": "the email body text, no subject line"}}"""


def _first_name(name: str) -> str:
    return (name or "there").split(" ")[0]


def _strip_code_fences(text: str) -> str:
    content = text.strip()
    if content.startswith("```"):
        lines = content.splitlines()[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content = "\n".join(lines).strip()
    return content


def parse_json_object(text: Optional[str]) -> Dict[str, Any]:
    """Parse a JSON object out of model output, tolerating fences and chatter."""
    if not text:
        raise ClassifierError("Empty classifier response")
    content = _strip_code_fences(text)
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        match = re.search(r"\{[\s\S]*\}", content)
        if not match:
            raise ClassifierError("Classifier response is not JSON")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ClassifierError(f"Classifier response is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise ClassifierError("Classifier response is not a JSON object")
    return data


async def _complete_json(messages: List[Dict[str, str]], max_tokens: int) -> Dict[str, Any]:
    try:
        response = await aclient.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=messages,
            response_format={"type": "json_object"},
            temperature=0.3,
            max_tokens=max_tokens,
        )
    except OpenAIError as e:
        raise ClassifierError(f"Classifier call failed: {e}") from e
    if not response.choices:
        raise ClassifierError("Classifier returned no choices")
    return parse_json_object(response.choices[0].message.content)


def fallback_analysis(lead_name: str, lead_message: str, business: BusinessContext) -> LeadAnalysis:
    return LeadAnalysis(
        urgency=infer_urgency(lead_message),
        category="General Enquiry",
        summary=f"New enquiry from {lead_name}",
        suggested_response=(
            f"Hi {_first_name(lead_name)},\n\nThanks for getting in touch with {business.business_name}! "
            f"We've received your enquiry and will get back to you as soon as possible.\n\n"
            f"Cheers,\n{business.business_name}"
        ),
    )


async def classify(lead_name: str, lead_message: str, business: BusinessContext) -> LeadAnalysis:
    """
    One-shot lead triage. Never raises: classifier failures return a
    keyword-triaged fallback analysis.
    """
    prompt = CLASSIFY_PROMPT.format(
        business_name=business.business_name,
        business_info=business.info_block(),
        lead_name=lead_name,
        lead_message=lead_message,
        tone=business.response_tone.value,
        urgency_guide=URGENCY_GUIDE,
    )
    try:
        data = await _complete_json([{"role": "user", "content": prompt}], max_tokens=1024)
        return LeadAnalysis.model_validate(data)
    except (ClassifierError, ValidationError) as e:
        logger.warning("⚠️ Lead analysis fell back for %s: %s", lead_name, e)
        return fallback_analysis(lead_name, lead_message, business)


async def converse(
    message: str,
    history: List[Dict[str, str]],
    business: BusinessContext,
    stage: ConversationStage,
    available_slots: Optional[str] = None,
) -> ConversationTurn:
    """
    One conversational SMS turn.

    Args:
        message: The customer's new inbound text
        history: Earlier turns, oldest first: [{"role": "customer"|"assistant", "content": "..."}]
        business: Business context for the prompt
        stage: Current conversation stage
        available_slots: Resolver summary, or None when slots were not looked up

    Raises:
        ClassifierError: on call failure or output that fails validation
    """
    system = SMS_SYSTEM_PROMPT.format(
        business_name=business.business_name,
        business_info=business.info_block(),
        stage=ConversationStage(stage).value,
        available_slots=available_slots or "Not looked up for this message; do not offer specific times.",
        max_length=settings.SMS_MAX_REPLY_LENGTH,
        tone=business.response_tone.value,
    )
    messages = [{"role": "system", "content": system}]
    for turn in history:
        role = "user" if turn.get("role") == "customer" else "assistant"
        messages.append({"role": role, "content": turn.get("content", "")})
    messages.append({"role": "user", "content": message})

    data = await _complete_json(messages, max_tokens=600)
    try:
        return ConversationTurn.model_validate(data)
    except ValidationError as e:
        raise ClassifierError(f"Classifier turn failed validation: {e}") from e


async def generate_follow_up(
    lead_name: str,
    original_message: str,
    follow_up_number: int,
    business: BusinessContext,
) -> str:
    """Follow-up email body; falls back to a short template on any failure."""
    prompt = FOLLOW_UP_PROMPT.format(
        business_name=business.business_name,
        lead_name=lead_name,
        original_message=original_message,
        follow_up_number=follow_up_number,
        tone=business.response_tone.value,
    )
    try:
        data = await _complete_json([{"role": "user", "content": prompt}], max_tokens=512)
        body = data.get("body")
        if isinstance(body, str) and body.strip():
            return body.strip()
        raise ClassifierError("Follow-up body missing")
    except ClassifierError as e:
        logger.warning("⚠️ Follow-up generation fell back for %s: %s", lead_name, e)
        return (
            f"Hi {_first_name(lead_name)},\n\nJust following up on your earlier enquiry. "
            f"We'd love to help if you're still interested.\n\nCheers,\n{business.business_name}"
        )
