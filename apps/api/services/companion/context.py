"""
Conversation Context Builder

Assembles the immutable ConversationContext snapshot that prompt shaping,
transition detection and suggested replies all read from.

Each sub-query runs in its own savepoint and fails independently: a broken
sub-query is logged and contributes an empty/zero value, it never aborts the
build. The context only shapes prompts and suggestions, so a partial one is
always preferable to blocking message delivery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Tuple, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from core.config import settings
from models import as_utc
from services import check_ins as check_in_service
from services import conversations as conversation_service
from services import journal as journal_service
from services import milestones as milestone_service

from .phases import Phase

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class MessageSnapshot:
    role: str
    content: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class CheckInSnapshot:
    mood: str
    sleep_quality: int
    energy_level: int
    intentions: Optional[str]
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class AchievementSnapshot:
    type: str
    name: str
    progress: int
    unlocked: bool
    unlocked_at: Optional[datetime] = None


@dataclass(frozen=True)
class ConversationContext:
    """
    Read-only snapshot for one decision point.

    Collections are tuples and the dataclass is frozen; derive a variant with
    dataclasses.replace rather than mutating.
    """
    user_id: str
    conversation_id: Optional[UUID]
    phase: Phase
    recent_messages: Tuple[MessageSnapshot, ...] = ()
    recent_check_ins: Tuple[CheckInSnapshot, ...] = ()  # newest first
    achievements: Tuple[AchievementSnapshot, ...] = ()  # newest first
    journal_count: int = 0
    user_turns_in_phase: int = 0
    degraded: Tuple[str, ...] = field(default=())  # sub-queries that failed

    @property
    def last_check_in(self) -> Optional[CheckInSnapshot]:
        return self.recent_check_ins[0] if self.recent_check_ins else None

    @property
    def unlocked_achievements(self) -> Tuple[AchievementSnapshot, ...]:
        return tuple(a for a in self.achievements if a.unlocked)

    @property
    def is_returning_user(self) -> bool:
        return bool(self.recent_check_ins) or self.journal_count > 0

    def last_message(self, role: str) -> Optional[MessageSnapshot]:
        for message in reversed(self.recent_messages):
            if message.role == role:
                return message
        return None

    def user_messages(self) -> Tuple[MessageSnapshot, ...]:
        return tuple(m for m in self.recent_messages if m.role == "user")


def empty_context(user_id: str, phase: Phase = Phase.GREETING) -> ConversationContext:
    """Context for a user who has no conversation yet."""
    return ConversationContext(user_id=user_id, conversation_id=None, phase=phase)


def _guarded(db: Session, name: str, query: Callable[[], T], default: T, degraded: list) -> T:
    try:
        with db.begin_nested():
            return query()
    except Exception as e:
        degraded.append(name)
        logger.warning(
            f"Context sub-query '{name}' failed, using default: {type(e).__name__}: {e}",
            extra={"extra_fields": {"context_subquery": name}},
        )
        return default


def build_conversation_context(
    db: Session,
    user_id: str,
    conversation_id: Optional[UUID],
    phase: Phase,
    stage_entered_at: Optional[datetime] = None,
) -> ConversationContext:
    """Build a context snapshot. Never raises for sub-query failures."""
    degraded: list = []

    messages: Tuple[MessageSnapshot, ...] = ()
    user_turns = 0
    if conversation_id is not None:
        messages = _guarded(
            db,
            "recent_messages",
            lambda: tuple(
                MessageSnapshot(role=m.role, content=m.content, created_at=as_utc(m.created_at))
                for m in conversation_service.get_recent_messages(
                    db, user_id, conversation_id, limit=settings.CONTEXT_MESSAGE_LIMIT
                )
            ),
            (),
            degraded,
        )
        user_turns = _guarded(
            db,
            "user_turns_in_phase",
            lambda: conversation_service.count_user_turns_since(db, conversation_id, stage_entered_at),
            0,
            degraded,
        )

    check_ins = _guarded(
        db,
        "recent_check_ins",
        lambda: tuple(
            CheckInSnapshot(
                mood=c.mood,
                sleep_quality=c.sleep_quality,
                energy_level=c.energy_level,
                intentions=c.intentions,
                created_at=as_utc(c.created_at),
            )
            for c in check_in_service.get_recent_check_ins(db, user_id, limit=settings.CONTEXT_CHECK_IN_LIMIT)
        ),
        (),
        degraded,
    )

    achievements = _guarded(
        db,
        "recent_achievements",
        lambda: tuple(
            AchievementSnapshot(
                type=m.type,
                name=m.name,
                progress=m.progress,
                unlocked=bool(m.unlocked),
                unlocked_at=as_utc(m.unlocked_at),
            )
            for m in milestone_service.get_recent_milestones(db, user_id, limit=settings.CONTEXT_MILESTONE_LIMIT)
        ),
        (),
        degraded,
    )

    journal_count = _guarded(
        db,
        "journal_count",
        lambda: journal_service.count_journal_entries(db, user_id),
        0,
        degraded,
    )

    return ConversationContext(
        user_id=user_id,
        conversation_id=conversation_id,
        phase=Phase(phase),
        recent_messages=messages,
        recent_check_ins=check_ins,
        achievements=achievements,
        journal_count=journal_count,
        user_turns_in_phase=user_turns,
        degraded=tuple(degraded),
    )
