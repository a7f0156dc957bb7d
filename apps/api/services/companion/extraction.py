"""
Extraction Pipeline

Two structured extractors over the user's messages in the current phase:

- check-in: mood, sleep quality (1-5), energy level (1-5), intentions
- journal:  reflective content with a generated title

Each response is decoded strictly against a versioned pydantic model (unknown
fields or out-of-range values reject the whole response), then gated: a record
is persisted only when the sufficiency flag is true AND confidence >= the
configured threshold AND every required field is present.

Idempotency is enforced here rather than left to callers:
- per turn:  the triggering user message id is stored as source_message_id
             (unique), so a retried turn cannot create a second record;
- per visit: at most one record per conversation per phase visit (nothing is
             extracted if one was already created since the phase was entered).

Failures never propagate: every path ends in an ExtractionOutcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import DomainValidationError, ExtractionDecodeError, TextGenerationError
from models import CheckIn, JournalEntry
from services import check_ins as check_in_service
from services import journal as journal_service

from .context import MessageSnapshot

logger = logging.getLogger(__name__)

CHECK_IN_SCHEMA_VERSION = 1
JOURNAL_SCHEMA_VERSION = 1
CHECK_IN_TEMPERATURE = 0.1
JOURNAL_TEMPERATURE = 0.2


class ExtractionStatus(str, Enum):
    CREATED = "created"
    INSUFFICIENT = "insufficient"
    ALREADY_EXTRACTED = "already_extracted"
    SERVICE_UNAVAILABLE = "service_unavailable"
    INVALID_RESPONSE = "invalid_response"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ExtractionOutcome:
    status: ExtractionStatus
    reason: str = ""
    record_id: Optional[UUID] = None

    @property
    def created(self) -> bool:
        return self.status == ExtractionStatus.CREATED


# --- Response decoders ---

class CheckInExtractionV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mood: Optional[str] = None
    sleep_quality: Optional[int] = Field(default=None, ge=1, le=5)
    energy_level: Optional[int] = Field(default=None, ge=1, le=5)
    intentions: Optional[str] = None
    has_all_required_data: bool
    confidence: float = Field(ge=0, le=100)


class JournalExtractionV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    has_journal_content: bool
    title: Optional[str] = None
    content: Optional[str] = None
    word_count: int = Field(default=0, ge=0)
    is_reflective: bool
    confidence: float = Field(ge=0, le=100)


CHECK_IN_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "mood": {"type": "STRING", "nullable": True, "description": "User's emotional state (e.g., calm, anxious, happy, motivated)"},
        "sleep_quality": {"type": "INTEGER", "nullable": True, "description": "Sleep quality on a scale of 1-5"},
        "energy_level": {"type": "INTEGER", "nullable": True, "description": "Energy level on a scale of 1-5"},
        "intentions": {"type": "STRING", "nullable": True, "description": "User's intentions or goals for the day"},
        "has_all_required_data": {"type": "BOOLEAN", "description": "Whether mood, sleep quality and energy level were all provided"},
        "confidence": {"type": "NUMBER", "description": "Confidence level in the extraction (0-100)"},
    },
    "required": ["mood", "sleep_quality", "energy_level", "intentions", "has_all_required_data", "confidence"],
}

JOURNAL_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "has_journal_content": {"type": "BOOLEAN", "description": "Whether the user shared journal-worthy content"},
        "title": {"type": "STRING", "nullable": True, "description": "Concise title for the journal entry (max 60 characters)"},
        "content": {"type": "STRING", "nullable": True, "description": "The journal content from the user"},
        "word_count": {"type": "INTEGER", "description": "Approximate word count of the journal content"},
        "is_reflective": {"type": "BOOLEAN", "description": "Whether the content is reflective/introspective"},
        "confidence": {"type": "NUMBER", "description": "Confidence level in the extraction (0-100)"},
    },
    "required": ["has_journal_content", "title", "content", "word_count", "is_reflective", "confidence"],
}


def _user_text(messages: Sequence[MessageSnapshot], separator: str) -> str:
    return separator.join(m.content for m in messages if m.role == "user")


def build_check_in_prompt(messages: Sequence[MessageSnapshot]) -> str:
    return f"""Extract daily check-in data from this conversation. Be flexible with natural language and infer values when reasonable.

For sleep quality and energy level, if the user provides descriptive text (e.g., "slept well", "feeling energized"), convert to a 1-5 scale:
- Very poor/terrible/awful: 1
- Poor/bad/not great: 2
- Okay/fine/decent/alright: 3
- Good/well/pretty good: 4
- Great/excellent/amazing/perfect: 5

Conversation:
{_user_text(messages, chr(10))}

Extract:
- mood: emotional state (e.g., calm, happy, anxious, motivated, tired)
- sleep_quality: 1-5 scale
- energy_level: 1-5 scale
- intentions: goals/intentions for the day

Return null for any field that is not clearly mentioned. Only set has_all_required_data to true if at least mood, sleep_quality, and energy_level are present."""


def build_journal_prompt(messages: Sequence[MessageSnapshot]) -> str:
    return f"""Analyze this conversation to extract journal-worthy content.

Conversation:
{_user_text(messages, chr(10) * 2)}

Determine:
1. Whether the user shared reflective, journal-worthy content (at least 50 characters)
2. If yes, extract the journal content and generate a concise title (max 60 characters)
3. Count the approximate words in the journal content
4. Assess if the content is reflective/introspective

Journal content should be:
- Personal reflections, thoughts, or feelings
- Gratitude expressions
- Progress observations
- Challenges or learnings
- At least 50 characters long

Do NOT extract if:
- User declined to journal
- Content is too short or not reflective
- Content is just casual conversation"""


# --- Gates ---

@dataclass(frozen=True)
class CheckInData:
    mood: str
    sleep_quality: int
    energy_level: int
    intentions: str


@dataclass(frozen=True)
class JournalData:
    title: str
    content: str


def gate_check_in(result: CheckInExtractionV1) -> Optional[CheckInData]:
    """Sufficiency AND confidence AND required fields; any miss -> None."""
    if not result.has_all_required_data:
        return None
    if result.confidence < settings.EXTRACTION_CONFIDENCE_THRESHOLD:
        return None
    mood = (result.mood or "").strip()
    if not mood or result.sleep_quality is None or result.energy_level is None:
        return None
    return CheckInData(
        mood=mood,
        sleep_quality=result.sleep_quality,
        energy_level=result.energy_level,
        intentions=(result.intentions or "").strip() or check_in_service.DEFAULT_INTENTIONS,
    )


def gate_journal(result: JournalExtractionV1) -> Optional[JournalData]:
    if not (result.has_journal_content and result.is_reflective):
        return None
    if result.confidence < settings.EXTRACTION_CONFIDENCE_THRESHOLD:
        return None
    content = (result.content or "").strip()
    # Length rules are checked on the text itself, not the model's word estimate
    if len(content) < journal_service.MIN_EXTRACTED_CONTENT_CHARS:
        return None
    if journal_service.count_words(content) < journal_service.MIN_EXTRACTED_WORDS:
        return None
    return JournalData(
        title=journal_service.cap_title(result.title) or journal_service.DEFAULT_TITLE,
        content=content,
    )


# --- Idempotency guards ---

def _already_extracted(
    db: Session,
    model,
    conversation_id: UUID,
    source_message_id: UUID,
    phase_entered_at: Optional[datetime],
) -> bool:
    if db.query(model.id).filter(model.source_message_id == source_message_id).first() is not None:
        return True
    if phase_entered_at is None:
        return False
    return (
        db.query(model.id)
        .filter(model.conversation_id == conversation_id, model.created_at >= phase_entered_at)
        .first()
        is not None
    )


async def _call_and_decode(client, prompt: str, schema: dict, decoder, temperature: float, label: str):
    """Returns (decoded, outcome); exactly one is not None."""
    try:
        raw = await client.extract(prompt, schema, temperature=temperature)
    except ExtractionDecodeError as e:
        logger.warning(f"{label} extraction response unusable: {e}")
        return None, ExtractionOutcome(ExtractionStatus.INVALID_RESPONSE, reason=str(e))
    except TextGenerationError as e:
        logger.warning(f"{label} extraction unavailable: {e}")
        return None, ExtractionOutcome(ExtractionStatus.SERVICE_UNAVAILABLE, reason=str(e))
    try:
        return decoder.model_validate_json(raw), None
    except PydanticValidationError as e:
        logger.warning(f"{label} extraction response rejected: {e.error_count()} validation error(s)")
        return None, ExtractionOutcome(ExtractionStatus.INVALID_RESPONSE, reason="response did not match schema")


async def extract_check_in(
    db: Session,
    client,
    user_id: str,
    conversation_id: UUID,
    source_message_id: UUID,
    messages: Sequence[MessageSnapshot],
    phase_entered_at: Optional[datetime] = None,
) -> ExtractionOutcome:
    """Extract and persist at most one check-in for this phase visit. The caller commits."""
    if _already_extracted(db, CheckIn, conversation_id, source_message_id, phase_entered_at):
        return ExtractionOutcome(ExtractionStatus.ALREADY_EXTRACTED, reason="check-in already recorded for this visit")

    result, failed = await _call_and_decode(
        client, build_check_in_prompt(messages), CHECK_IN_RESPONSE_SCHEMA,
        CheckInExtractionV1, CHECK_IN_TEMPERATURE, "Check-in",
    )
    if failed is not None:
        return failed

    logger.info(
        f"Check-in extraction: confidence={result.confidence} has_all={result.has_all_required_data}"
    )
    data = gate_check_in(result)
    if data is None:
        return ExtractionOutcome(ExtractionStatus.INSUFFICIENT, reason="check-in data incomplete or low confidence")

    try:
        with db.begin_nested():
            check_in = check_in_service.create_check_in(
                db,
                user_id,
                mood=data.mood,
                sleep_quality=data.sleep_quality,
                energy_level=data.energy_level,
                intentions=data.intentions,
                conversation_id=conversation_id,
                source_message_id=source_message_id,
            )
    except IntegrityError:
        return ExtractionOutcome(ExtractionStatus.ALREADY_EXTRACTED, reason="check-in already recorded for this turn")
    except DomainValidationError as e:
        logger.warning(f"Extracted check-in rejected: {e}")
        return ExtractionOutcome(ExtractionStatus.REJECTED, reason=str(e))

    logger.info(
        f"Created check-in {check_in.id} from conversation {conversation_id}",
        extra={"extra_fields": {"user_id": user_id, "check_in_id": str(check_in.id)}},
    )
    return ExtractionOutcome(ExtractionStatus.CREATED, record_id=check_in.id)


async def extract_journal_entry(
    db: Session,
    client,
    user_id: str,
    conversation_id: UUID,
    source_message_id: UUID,
    messages: Sequence[MessageSnapshot],
    phase_entered_at: Optional[datetime] = None,
) -> ExtractionOutcome:
    """Extract and persist at most one journal entry for this phase visit. The caller commits."""
    if _already_extracted(db, JournalEntry, conversation_id, source_message_id, phase_entered_at):
        return ExtractionOutcome(ExtractionStatus.ALREADY_EXTRACTED, reason="journal entry already recorded for this visit")

    result, failed = await _call_and_decode(
        client, build_journal_prompt(messages), JOURNAL_RESPONSE_SCHEMA,
        JournalExtractionV1, JOURNAL_TEMPERATURE, "Journal",
    )
    if failed is not None:
        return failed

    logger.info(
        f"Journal extraction: has_content={result.has_journal_content} confidence={result.confidence}"
    )
    data = gate_journal(result)
    if data is None:
        return ExtractionOutcome(ExtractionStatus.INSUFFICIENT, reason="no reflective journal content")

    try:
        with db.begin_nested():
            entry = journal_service.create_journal_entry(
                db,
                user_id,
                content=data.content,
                title=data.title,
                min_chars=journal_service.MIN_EXTRACTED_CONTENT_CHARS,
                conversation_id=conversation_id,
                source_message_id=source_message_id,
            )
    except IntegrityError:
        return ExtractionOutcome(ExtractionStatus.ALREADY_EXTRACTED, reason="journal entry already recorded for this turn")
    except DomainValidationError as e:
        logger.warning(f"Extracted journal entry rejected: {e}")
        return ExtractionOutcome(ExtractionStatus.REJECTED, reason=str(e))

    logger.info(
        f"Created journal entry {entry.id} from conversation {conversation_id}",
        extra={"extra_fields": {"user_id": user_id, "journal_entry_id": str(entry.id)}},
    )
    return ExtractionOutcome(ExtractionStatus.CREATED, record_id=entry.id)
