"""
Conversation Service

Conversations and their append-only message log. Every lookup is scoped by the
owning user id; a conversation id that exists but belongs to someone else is
reported exactly like a missing one.

Phase changes do NOT happen here: services.companion.stage_machine.commit_transition
is the only writer of `conversations.stage`.
"""

from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.exceptions import DomainValidationError, RecordNotFoundError
from models import (
    Conversation,
    Message,
    DEFAULT_CONVERSATION_TITLE,
    MESSAGE_ROLES,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

TITLE_SOURCE_CHARS = 50
MAX_MESSAGE_CHARS = 20000


def get_latest_conversation(db: Session, user_id: str) -> Optional[Conversation]:
    """Most recently active conversation for the user, if any."""
    return (
        db.query(Conversation)
        .filter(Conversation.user_id == user_id)
        .order_by(Conversation.updated_at.desc())
        .first()
    )


def create_conversation(db: Session, user_id: str, title: Optional[str] = None) -> Conversation:
    now = utcnow()
    conversation = Conversation(
        user_id=user_id,
        title=(title or "").strip()[:255] or DEFAULT_CONVERSATION_TITLE,
        stage="greeting",
        version=1,
        stage_entered_at=now,
        created_at=now,
        updated_at=now,
    )
    db.add(conversation)
    db.flush()
    logger.info(f"Created conversation {conversation.id} for user {user_id}")
    return conversation


def get_or_create_conversation(db: Session, user_id: str) -> Conversation:
    conversation = get_latest_conversation(db, user_id)
    if conversation is not None:
        return conversation
    return create_conversation(db, user_id)


def get_conversation(db: Session, user_id: str, conversation_id: UUID) -> Conversation:
    """Fetch one conversation owned by `user_id` or raise RecordNotFoundError."""
    conversation = (
        db.query(Conversation)
        .filter(Conversation.id == conversation_id, Conversation.user_id == user_id)
        .first()
    )
    if conversation is None:
        raise RecordNotFoundError("Conversation", conversation_id)
    return conversation


def list_conversations(db: Session, user_id: str, limit: int = 20, offset: int = 0) -> List[Conversation]:
    return (
        db.query(Conversation)
        .filter(Conversation.user_id == user_id)
        .order_by(Conversation.updated_at.desc())
        .offset(max(0, offset))
        .limit(max(1, min(limit, 100)))
        .all()
    )


def _owned_messages(db: Session, user_id: str, conversation_id: UUID):
    return (
        db.query(Message)
        .join(Conversation, Conversation.id == Message.conversation_id)
        .filter(Message.conversation_id == conversation_id, Conversation.user_id == user_id)
    )


def get_recent_messages(db: Session, user_id: str, conversation_id: UUID, limit: int = 10) -> List[Message]:
    """Last `limit` messages, returned oldest first."""
    rows = (
        _owned_messages(db, user_id, conversation_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
        .all()
    )
    rows.reverse()
    return rows


def list_messages(db: Session, user_id: str, conversation_id: UUID) -> List[Message]:
    get_conversation(db, user_id, conversation_id)
    return (
        _owned_messages(db, user_id, conversation_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )


def count_user_turns_since(db: Session, conversation_id: UUID, since: Optional[datetime]) -> int:
    """User messages in the conversation created at or after `since`."""
    query = db.query(func.count(Message.id)).filter(
        Message.conversation_id == conversation_id,
        Message.role == "user",
    )
    if since is not None:
        query = query.filter(Message.created_at >= since)
    return int(query.scalar() or 0)


def next_message_timestamp(db: Session, conversation_id: UUID, floor: Optional[datetime] = None) -> datetime:
    """
    Wall-clock now, bumped past the newest message in the conversation.

    created_at is the only ordering key for messages, so two messages in one
    conversation must never share a timestamp or go backwards. `floor` (the
    phase entry time) keeps new messages inside the current phase window.
    """
    now = utcnow()
    floor = as_utc(floor)
    if floor is not None and now < floor:
        now = floor
    latest = as_utc(
        db.query(func.max(Message.created_at))
        .filter(Message.conversation_id == conversation_id)
        .scalar()
    )
    if latest is not None and now <= latest:
        now = latest + timedelta(microseconds=1)
    return now


def generate_conversation_title(content: str) -> str:
    """Title from the first user message: first 50 chars, ellipsis if cut."""
    text = " ".join((content or "").split())
    if not text:
        return DEFAULT_CONVERSATION_TITLE
    if len(text) > TITLE_SOURCE_CHARS:
        return f"{text[:TITLE_SOURCE_CHARS]}..."
    return text


def save_message(
    db: Session,
    user_id: str,
    conversation_id: UUID,
    role: str,
    content: str,
) -> Message:
    """
    Append a message and touch the conversation.

    The first user message of an untitled conversation also sets its title.
    """
    if role not in MESSAGE_ROLES:
        raise DomainValidationError(f"Invalid message role: {role}", field="role")
    if not content or not content.strip():
        raise DomainValidationError("Message content is required", field="content")
    if len(content) > MAX_MESSAGE_CHARS:
        raise DomainValidationError(
            f"Message content must be at most {MAX_MESSAGE_CHARS} characters", field="content"
        )

    conversation = get_conversation(db, user_id, conversation_id)
    created_at = next_message_timestamp(db, conversation.id, floor=conversation.stage_entered_at)

    message = Message(
        conversation_id=conversation.id,
        role=role,
        content=content,
        created_at=created_at,
    )
    db.add(message)

    conversation.updated_at = created_at
    if role == "user" and conversation.title == DEFAULT_CONVERSATION_TITLE:
        conversation.title = generate_conversation_title(content)

    db.flush()
    return message


def update_conversation_title(db: Session, user_id: str, conversation_id: UUID, title: str) -> Conversation:
    cleaned = (title or "").strip()
    if not cleaned:
        raise DomainValidationError("Title is required", field="title")
    if len(cleaned) > 255:
        raise DomainValidationError("Title must be at most 255 characters", field="title")

    conversation = get_conversation(db, user_id, conversation_id)
    conversation.title = cleaned
    conversation.updated_at = utcnow()
    db.flush()
    return conversation
