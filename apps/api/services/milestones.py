"""
Milestone Service (achievement engine)

Manual milestones plus automatic achievements derived from activity:

    first_check_in       check-in streak >= 1
    check_in_streak_7    check-in streak >= 7
    check_in_streak_30   check-in streak >= 30
    first_journal        journal entries >= 1
    journal_entries_5    journal entries >= 5
    journal_entries_25   journal entries >= 25

Automatic achievements are created already unlocked (progress 100,
unlocked_at set) in a single insert. (user_id, type) is unique, and each insert
runs in its own savepoint, so two evaluations racing for the same user grant a
type exactly once: the loser's IntegrityError is swallowed as "already granted".
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import DomainValidationError, DuplicateRecordError, RecordNotFoundError
from models import Milestone, utcnow
from services.check_ins import get_check_in_streak
from services.journal import count_journal_entries

logger = logging.getLogger(__name__)

CHECK_IN_STREAK = "check_in_streak"
JOURNAL_COUNT = "journal_count"


@dataclass(frozen=True)
class AchievementRule:
    type: str
    name: str
    description: str
    metric: str
    threshold: int


AUTO_ACHIEVEMENTS = (
    AchievementRule("first_check_in", "First Steps", "Complete your first check-in", CHECK_IN_STREAK, 1),
    AchievementRule("check_in_streak_7", "Week of Consistency", "Complete check-ins for 7 consecutive days", CHECK_IN_STREAK, 7),
    AchievementRule("check_in_streak_30", "Month of Dedication", "Complete check-ins for 30 consecutive days", CHECK_IN_STREAK, 30),
    AchievementRule("first_journal", "Beginning to Reflect", "Write your first journal entry", JOURNAL_COUNT, 1),
    AchievementRule("journal_entries_5", "Reflection Beginner", "Write 5 journal entries", JOURNAL_COUNT, 5),
    AchievementRule("journal_entries_25", "Journaling Enthusiast", "Write 25 journal entries", JOURNAL_COUNT, 25),
)


def _validate_progress(progress) -> int:
    if isinstance(progress, bool) or not isinstance(progress, int):
        raise DomainValidationError("progress must be an integer between 0 and 100", field="progress")
    if progress < 0 or progress > 100:
        raise DomainValidationError("Milestone progress must be between 0 and 100.", field="progress")
    return progress


def create_milestone(
    db: Session,
    user_id: str,
    type: str,
    name: str,
    description: Optional[str] = None,
    progress: int = 0,
) -> Milestone:
    type = (type or "").strip()
    name = (name or "").strip()
    if not type or not name:
        raise DomainValidationError("Milestone type and name are required.", field="type" if not type else "name")
    progress = _validate_progress(progress)

    now = utcnow()
    milestone = Milestone(
        user_id=user_id,
        type=type[:64],
        name=name[:255],
        description=description,
        progress=progress,
        # progress 100 on creation is a completed milestone
        unlocked=progress == 100,
        unlocked_at=now if progress == 100 else None,
        created_at=now,
    )
    try:
        with db.begin_nested():
            db.add(milestone)
    except IntegrityError:
        raise DuplicateRecordError(f"Milestone of type '{type}' already exists")
    return milestone


def get_milestone(db: Session, user_id: str, milestone_id: UUID) -> Milestone:
    milestone = (
        db.query(Milestone)
        .filter(Milestone.id == milestone_id, Milestone.user_id == user_id)
        .first()
    )
    if milestone is None:
        raise RecordNotFoundError("Milestone", milestone_id)
    return milestone


def update_milestone_progress(db: Session, user_id: str, milestone_id: UUID, progress: int) -> Milestone:
    """Set progress; reaching 100 unlocks, dropping below 100 re-locks."""
    progress = _validate_progress(progress)
    milestone = get_milestone(db, user_id, milestone_id)
    milestone.progress = progress
    if progress >= 100:
        milestone.unlocked = True
        milestone.unlocked_at = milestone.unlocked_at or utcnow()
    else:
        milestone.unlocked = False
        milestone.unlocked_at = None
    db.flush()
    return milestone


def unlock_milestone(db: Session, user_id: str, milestone_id: UUID) -> Milestone:
    milestone = get_milestone(db, user_id, milestone_id)
    milestone.progress = 100
    milestone.unlocked = True
    milestone.unlocked_at = milestone.unlocked_at or utcnow()
    db.flush()
    return milestone


def list_milestones(db: Session, user_id: str, include_unlocked: bool = True) -> List[Milestone]:
    query = db.query(Milestone).filter(Milestone.user_id == user_id)
    if not include_unlocked:
        query = query.filter(Milestone.unlocked.is_(False))
    return query.order_by(Milestone.created_at.desc()).all()


def get_recent_milestones(db: Session, user_id: str, limit: int = 5) -> List[Milestone]:
    return (
        db.query(Milestone)
        .filter(Milestone.user_id == user_id)
        .order_by(Milestone.created_at.desc())
        .limit(limit)
        .all()
    )


def get_milestones_by_type(db: Session, user_id: str, type: str) -> List[Milestone]:
    return (
        db.query(Milestone)
        .filter(Milestone.user_id == user_id, Milestone.type == type)
        .order_by(Milestone.created_at.desc())
        .all()
    )


def delete_milestone(db: Session, user_id: str, milestone_id: UUID) -> None:
    milestone = get_milestone(db, user_id, milestone_id)
    db.delete(milestone)
    db.flush()


def get_milestone_stats(db: Session, user_id: str) -> Dict:
    total, unlocked, avg_progress = (
        db.query(
            func.count(Milestone.id),
            func.sum(case((Milestone.unlocked.is_(True), 1), else_=0)),
            func.avg(Milestone.progress),
        )
        .filter(Milestone.user_id == user_id)
        .one()
    )
    total = int(total or 0)
    unlocked = int(unlocked or 0)
    return {
        "total": total,
        "unlocked": unlocked,
        "in_progress": total - unlocked,
        "percentage_complete": int(round(float(avg_progress or 0))),
    }


def _grant(db: Session, user_id: str, rule: AchievementRule) -> Optional[Milestone]:
    """Insert one unlocked achievement; None if it was granted concurrently."""
    now = utcnow()
    milestone = Milestone(
        user_id=user_id,
        type=rule.type,
        name=rule.name,
        description=rule.description,
        progress=100,
        unlocked=True,
        unlocked_at=now,
        created_at=now,
    )
    try:
        with db.begin_nested():
            db.add(milestone)
    except IntegrityError:
        logger.info(f"Achievement {rule.type} already granted to user {user_id}")
        return None
    return milestone


def check_and_create_auto_achievements(db: Session, user_id: str) -> List[Milestone]:
    """
    Grant every automatic achievement whose threshold the user has crossed.

    The pre-read of existing types only avoids pointless inserts; correctness
    under concurrency comes from the unique constraint in _grant.
    """
    metrics = {
        CHECK_IN_STREAK: get_check_in_streak(db, user_id),
        JOURNAL_COUNT: count_journal_entries(db, user_id),
    }
    existing = {
        row[0]
        for row in db.query(Milestone.type).filter(Milestone.user_id == user_id).all()
    }

    created: List[Milestone] = []
    for rule in AUTO_ACHIEVEMENTS:
        if rule.type in existing or metrics[rule.metric] < rule.threshold:
            continue
        milestone = _grant(db, user_id, rule)
        if milestone is not None:
            created.append(milestone)

    if created:
        logger.info(
            f"Granted {len(created)} achievement(s) to user {user_id}: {[m.type for m in created]}",
            extra={"extra_fields": {"user_id": user_id, "achievements": [m.type for m in created]}},
        )
    return created
