"""
Journal Service

Journal entries written directly by the user (>= 10 characters) or extracted
from a chat turn (>= 50 characters, enforced by the extraction pipeline).
Word count is always derived from content, never accepted from callers.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from core.exceptions import DomainValidationError, RecordNotFoundError
from models import JournalEntry, utcnow
from services.streaks import current_streak

logger = logging.getLogger(__name__)

MIN_CONTENT_CHARS = 10
MIN_EXTRACTED_CONTENT_CHARS = 50
MIN_EXTRACTED_WORDS = 10
TITLE_MAX_CHARS = 60
DEFAULT_TITLE = "Journal Entry"
SEARCH_LIMIT = 20


def count_words(content: str) -> int:
    return len((content or "").split())


def generate_title_from_content(content: str) -> str:
    """First non-empty line, capped at 60 characters with an ellipsis when cut."""
    first_line = next((line.strip() for line in (content or "").splitlines() if line.strip()), "")
    if not first_line:
        return DEFAULT_TITLE
    if len(first_line) > TITLE_MAX_CHARS:
        return f"{first_line[:TITLE_MAX_CHARS]}..."
    return first_line


def cap_title(title: Optional[str]) -> Optional[str]:
    if title is None:
        return None
    title = " ".join(title.split())
    if len(title) > TITLE_MAX_CHARS:
        return f"{title[:TITLE_MAX_CHARS]}..."
    return title or None


def _validate_content(content: str, min_chars: int) -> str:
    content = (content or "").strip()
    if len(content) < min_chars:
        raise DomainValidationError(
            f"Journal content must be at least {min_chars} characters long.", field="content"
        )
    return content


def create_journal_entry(
    db: Session,
    user_id: str,
    content: str,
    title: Optional[str] = None,
    min_chars: int = MIN_CONTENT_CHARS,
    conversation_id: Optional[UUID] = None,
    source_message_id: Optional[UUID] = None,
) -> JournalEntry:
    content = _validate_content(content, min_chars)
    now = utcnow()
    entry = JournalEntry(
        user_id=user_id,
        title=cap_title(title) or generate_title_from_content(content),
        content=content,
        word_count=count_words(content),
        conversation_id=conversation_id,
        source_message_id=source_message_id,
        created_at=now,
        updated_at=now,
    )
    db.add(entry)
    db.flush()
    return entry


def get_journal_entry(db: Session, user_id: str, entry_id: UUID) -> JournalEntry:
    entry = (
        db.query(JournalEntry)
        .filter(JournalEntry.id == entry_id, JournalEntry.user_id == user_id)
        .first()
    )
    if entry is None:
        raise RecordNotFoundError("Journal entry", entry_id)
    return entry


def update_journal_entry(
    db: Session,
    user_id: str,
    entry_id: UUID,
    content: Optional[str] = None,
    title: Optional[str] = None,
) -> JournalEntry:
    entry = get_journal_entry(db, user_id, entry_id)
    if content is not None:
        entry.content = _validate_content(content, MIN_CONTENT_CHARS)
        entry.word_count = count_words(entry.content)
    if title is not None:
        entry.title = cap_title(title) or generate_title_from_content(entry.content)
    entry.updated_at = utcnow()
    db.flush()
    return entry


def delete_journal_entry(db: Session, user_id: str, entry_id: UUID) -> None:
    entry = get_journal_entry(db, user_id, entry_id)
    db.delete(entry)
    db.flush()


def get_recent_journal_entries(db: Session, user_id: str, limit: int = 10) -> List[JournalEntry]:
    return (
        db.query(JournalEntry)
        .filter(JournalEntry.user_id == user_id)
        .order_by(JournalEntry.created_at.desc())
        .limit(limit)
        .all()
    )


def get_journal_entries_by_date_range(db: Session, user_id: str, start: date, end: date) -> List[JournalEntry]:
    if end < start:
        raise DomainValidationError("end must not be before start", field="end")
    start_dt = datetime.combine(start, time.min, tzinfo=timezone.utc)
    end_dt = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return (
        db.query(JournalEntry)
        .filter(
            JournalEntry.user_id == user_id,
            JournalEntry.created_at >= start_dt,
            JournalEntry.created_at < end_dt,
        )
        .order_by(JournalEntry.created_at.desc())
        .all()
    )


def search_journal_entries(db: Session, user_id: str, term: str, limit: int = SEARCH_LIMIT) -> List[JournalEntry]:
    """Case-insensitive substring search over title and content."""
    term = (term or "").strip()
    if not term:
        raise DomainValidationError("Search term is required", field="q")
    pattern = f"%{term}%"
    return (
        db.query(JournalEntry)
        .filter(
            JournalEntry.user_id == user_id,
            or_(JournalEntry.title.ilike(pattern), JournalEntry.content.ilike(pattern)),
        )
        .order_by(JournalEntry.created_at.desc())
        .limit(limit)
        .all()
    )


def count_journal_entries(db: Session, user_id: str) -> int:
    return int(db.query(func.count(JournalEntry.id)).filter(JournalEntry.user_id == user_id).scalar() or 0)


def get_journal_streak(db: Session, user_id: str) -> int:
    timestamps = [row[0] for row in db.query(JournalEntry.created_at).filter(JournalEntry.user_id == user_id).all()]
    return current_streak(timestamps)


def get_journal_stats(db: Session, user_id: str) -> Dict:
    total, total_words, avg_words, longest = (
        db.query(
            func.count(JournalEntry.id),
            func.sum(JournalEntry.word_count),
            func.avg(JournalEntry.word_count),
            func.max(JournalEntry.word_count),
        )
        .filter(JournalEntry.user_id == user_id)
        .one()
    )
    return {
        "total": int(total or 0),
        "total_words": int(total_words or 0),
        "average_words": int(round(float(avg_words or 0))),
        "longest_entry": int(longest or 0),
        "current_streak": get_journal_streak(db, user_id),
    }


def update_journal_insights(db: Session, user_id: str, entry_id: UUID, insights: Dict[str, Any]) -> JournalEntry:
    if not isinstance(insights, dict):
        raise DomainValidationError("insights must be an object", field="insights")
    entry = get_journal_entry(db, user_id, entry_id)
    entry.ai_insights = insights
    entry.updated_at = utcnow()
    db.flush()
    return entry


def has_journaled_today(db: Session, user_id: str, today: Optional[date] = None) -> bool:
    today = today or utcnow().date()
    return bool(get_journal_entries_by_date_range(db, user_id, today, today))
