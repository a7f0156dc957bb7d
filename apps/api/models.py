from sqlalchemy import Column, Integer, Boolean, CheckConstraint, DateTime, ForeignKey, Text, String, Index, UniqueConstraint, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func, false
from core.database import Base
import uuid
from typing import Optional
from datetime import datetime, timezone


# Phase names, in cycle order. services.companion.phases.Phase mirrors these.
CONVERSATION_STAGES = (
    "greeting",
    "check_in",
    "journal_prompt",
    "affirmation",
    "reflection",
    "milestone_review",
)
MESSAGE_ROLES = ("user", "assistant")

DEFAULT_CONVERSATION_TITLE = "New Conversation"

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a stored timestamp to an aware UTC datetime (sqlite returns naive values)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _in_clause(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


class User(Base):
    """
    Local mirror of an identity-provider user.

    The id is the provider's stable subject id; the row is upserted lazily the
    first time a token for that subject is seen.
    """
    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    display_name = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False, default=DEFAULT_CONVERSATION_TITLE)
    stage = Column(String(32), nullable=False, default="greeting", server_default="greeting")
    # Bumped on every phase commit; commits compare-and-set against it.
    version = Column(Integer, nullable=False, default=1, server_default="1")
    # When the current phase was entered; user turns after this count toward it.
    stage_entered_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint(_in_clause("stage", CONVERSATION_STAGES), name="ck_conversation_stage"),
        Index("ix_conversation_user_updated", "user_id", "updated_at"),
    )


class Message(Base):
    """Append-only chat message. created_at is strictly increasing per conversation."""
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        CheckConstraint(_in_clause("role", MESSAGE_ROLES), name="ck_message_role"),
        Index("ix_message_conversation_created", "conversation_id", "created_at"),
    )


class CheckIn(Base):
    __tablename__ = "check_ins"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    mood = Column(String(255), nullable=False)
    sleep_quality = Column(Integer, nullable=False)  # 1=very poor, 5=great
    energy_level = Column(Integer, nullable=False)  # 1=very low, 5=great
    intentions = Column(Text, nullable=True)
    # Set when the record was extracted from a chat turn.
    conversation_id = Column(Uuid, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True)
    source_message_id = Column(Uuid, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("sleep_quality BETWEEN 1 AND 5", name="ck_check_in_sleep_quality"),
        CheckConstraint("energy_level BETWEEN 1 AND 5", name="ck_check_in_energy_level"),
        Index("ix_check_in_user_created", "user_id", "created_at"),
    )


class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=True)
    content = Column(Text, nullable=False)
    word_count = Column(Integer, nullable=False, default=0)
    ai_insights = Column(JSONType, nullable=True)
    conversation_id = Column(Uuid, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True)
    source_message_id = Column(Uuid, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_journal_entry_user_created", "user_id", "created_at"),
    )


class Milestone(Base):
    """
    Gamified achievement. `type` is the idempotency key for automatic
    achievements; (user_id, type) is unique so concurrent evaluations cannot
    grant the same one twice.
    """
    __tablename__ = "milestones"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    progress = Column(Integer, nullable=False, default=0, server_default="0")
    unlocked = Column(Boolean, nullable=False, default=False, server_default=false())
    unlocked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "type", name="uq_milestone_user_type"),
        CheckConstraint("progress BETWEEN 0 AND 100", name="ck_milestone_progress"),
        CheckConstraint(
            "NOT unlocked OR (progress = 100 AND unlocked_at IS NOT NULL)",
            name="ck_milestone_unlocked_complete",
        ),
        Index("ix_milestone_user_created", "user_id", "created_at"),
    )
