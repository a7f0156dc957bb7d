"""
Check-In Service

Daily wellness check-ins: mood, sleep quality (1-5), energy level (1-5) and
intentions. Out-of-range values are rejected, never clamped.
"""

from collections import Counter
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.exceptions import DomainValidationError, RecordNotFoundError
from models import CheckIn, utcnow
from services.streaks import current_streak, longest_streak

logger = logging.getLogger(__name__)

SCALE_MIN = 1
SCALE_MAX = 5
DEFAULT_INTENTIONS = "No specific intentions set"


def _validate_scale(value, field: str) -> int:
    # bool is an int subclass; True must not pass as 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise DomainValidationError(f"{field} must be an integer between 1 and 5", field=field)
    if value < SCALE_MIN or value > SCALE_MAX:
        raise DomainValidationError(f"{field} must be between 1 and 5 (got {value})", field=field)
    return value


def create_check_in(
    db: Session,
    user_id: str,
    mood: str,
    sleep_quality: int,
    energy_level: int,
    intentions: Optional[str] = None,
    conversation_id: Optional[UUID] = None,
    source_message_id: Optional[UUID] = None,
) -> CheckIn:
    """Validate and persist a check-in."""
    mood = (mood or "").strip()
    if not mood:
        raise DomainValidationError("mood is required", field="mood")
    if len(mood) > 255:
        raise DomainValidationError("mood must be at most 255 characters", field="mood")

    check_in = CheckIn(
        user_id=user_id,
        mood=mood,
        sleep_quality=_validate_scale(sleep_quality, "sleep_quality"),
        energy_level=_validate_scale(energy_level, "energy_level"),
        intentions=(intentions or "").strip() or DEFAULT_INTENTIONS,
        conversation_id=conversation_id,
        source_message_id=source_message_id,
        created_at=utcnow(),
    )
    db.add(check_in)
    db.flush()
    return check_in


def get_recent_check_ins(db: Session, user_id: str, limit: int = 10) -> List[CheckIn]:
    return (
        db.query(CheckIn)
        .filter(CheckIn.user_id == user_id)
        .order_by(CheckIn.created_at.desc())
        .limit(limit)
        .all()
    )


def get_check_in(db: Session, user_id: str, check_in_id: UUID) -> CheckIn:
    check_in = (
        db.query(CheckIn)
        .filter(CheckIn.id == check_in_id, CheckIn.user_id == user_id)
        .first()
    )
    if check_in is None:
        raise RecordNotFoundError("Check-in", check_in_id)
    return check_in


def _day_bounds(start: date, end: date):
    start_dt = datetime.combine(start, time.min, tzinfo=timezone.utc)
    end_dt = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start_dt, end_dt


def get_check_ins_by_date_range(db: Session, user_id: str, start: date, end: date) -> List[CheckIn]:
    """Check-ins on calendar days start..end inclusive (UTC), newest first."""
    if end < start:
        raise DomainValidationError("end must not be before start", field="end")
    start_dt, end_dt = _day_bounds(start, end)
    return (
        db.query(CheckIn)
        .filter(
            CheckIn.user_id == user_id,
            CheckIn.created_at >= start_dt,
            CheckIn.created_at < end_dt,
        )
        .order_by(CheckIn.created_at.desc())
        .all()
    )


def has_check_in_today(db: Session, user_id: str, today: Optional[date] = None) -> bool:
    today = today or utcnow().date()
    start_dt, end_dt = _day_bounds(today, today)
    count = (
        db.query(func.count(CheckIn.id))
        .filter(
            CheckIn.user_id == user_id,
            CheckIn.created_at >= start_dt,
            CheckIn.created_at < end_dt,
        )
        .scalar()
    )
    return bool(count)


def _check_in_timestamps(db: Session, user_id: str) -> List[datetime]:
    return [row[0] for row in db.query(CheckIn.created_at).filter(CheckIn.user_id == user_id).all()]


def get_check_in_streak(db: Session, user_id: str) -> int:
    return current_streak(_check_in_timestamps(db, user_id))


def get_check_in_stats(db: Session, user_id: str) -> Dict:
    """Totals, most common mood, average sleep/energy (0.1 precision) and streak."""
    total, avg_sleep, avg_energy = (
        db.query(
            func.count(CheckIn.id),
            func.avg(CheckIn.sleep_quality),
            func.avg(CheckIn.energy_level),
        )
        .filter(CheckIn.user_id == user_id)
        .one()
    )

    moods = [row[0].strip().lower() for row in db.query(CheckIn.mood).filter(CheckIn.user_id == user_id).all()]
    most_common_mood = Counter(moods).most_common(1)[0][0] if moods else "N/A"
    timestamps = _check_in_timestamps(db, user_id)

    return {
        "total": int(total or 0),
        "most_common_mood": most_common_mood,
        "average_sleep": round(float(avg_sleep or 0), 1),
        "average_energy": round(float(avg_energy or 0), 1),
        "current_streak": current_streak(timestamps),
        "longest_streak": longest_streak(timestamps),
    }
