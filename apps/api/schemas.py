from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from uuid import UUID
from typing import Optional, List, Dict, Any


# --- Conversations & messages ---

class ConversationCreate(BaseModel):
    title: Optional[str] = None


class ConversationUpdate(BaseModel):
    title: str


class ConversationResponse(BaseModel):
    id: UUID
    title: str
    stage: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageCreate(BaseModel):
    conversation_id: UUID
    role: str
    content: str


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    role: str
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Chat ---

class ChatRequest(BaseModel):
    """One user turn. Without a conversation_id the latest conversation is used (or created)."""
    message: str = Field(min_length=1)
    conversation_id: Optional[UUID] = None


class SuggestedReplyResponse(BaseModel):
    text: str
    type: str


class StageStateResponse(BaseModel):
    """Current phase for (re)hydrating a client with no turn in flight."""
    stage: str
    conversation_id: Optional[UUID] = None
    suggested_replies: List[SuggestedReplyResponse]


class StageInfoResponse(BaseModel):
    stage: str
    name: str
    subtitle: str
    description: str
    min_user_turns: int
    criteria: List[str]
    required_criteria: int


# --- Check-ins ---

class CheckInCreate(BaseModel):
    mood: str
    # Range is enforced by the service so violations share one error shape
    sleep_quality: int
    energy_level: int
    intentions: Optional[str] = None


class CheckInResponse(BaseModel):
    id: UUID
    mood: str
    sleep_quality: int
    energy_level: int
    intentions: Optional[str]
    conversation_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CheckInStatsResponse(BaseModel):
    total: int
    most_common_mood: Optional[str] = None
    average_sleep: Optional[float] = None
    average_energy: Optional[float] = None
    current_streak: int
    longest_streak: int


class CheckInTodayResponse(BaseModel):
    has_checked_in_today: bool


# --- Journal ---

class JournalEntryCreate(BaseModel):
    content: str
    title: Optional[str] = None


class JournalEntryUpdate(BaseModel):
    content: Optional[str] = None
    title: Optional[str] = None


class JournalInsightsUpdate(BaseModel):
    insights: Dict[str, Any]


class JournalEntryResponse(BaseModel):
    id: UUID
    title: Optional[str]
    content: str
    word_count: int
    ai_insights: Optional[Dict[str, Any]] = None
    conversation_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class JournalStatsResponse(BaseModel):
    total: int
    total_words: int
    average_words: int
    longest_entry: int
    current_streak: int


class JournalTodayResponse(BaseModel):
    has_journaled_today: bool


# --- Milestones ---

class MilestoneCreate(BaseModel):
    type: str
    name: str
    description: Optional[str] = None
    progress: int = 0


class MilestoneProgressUpdate(BaseModel):
    progress: int


class MilestoneResponse(BaseModel):
    id: UUID
    type: str
    name: str
    description: Optional[str]
    progress: int
    unlocked: bool
    unlocked_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MilestoneStatsResponse(BaseModel):
    total: int
    unlocked: int
    in_progress: int
    percentage_complete: int


class MilestoneCheckResponse(BaseModel):
    created: List[MilestoneResponse]


class MessageHistoryResponse(BaseModel):
    conversation_id: UUID
    messages: List[MessageResponse]
