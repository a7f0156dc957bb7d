"""
Check-ins API Router

Direct (form-based) check-ins, history, and stats. Check-ins extracted from
chat are created by the companion engine, not here.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
from uuid import UUID

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import DomainValidationError, RecordNotFoundError, to_http_error
from models import User
from schemas import CheckInCreate, CheckInResponse, CheckInStatsResponse, CheckInTodayResponse
from services import check_ins as check_in_service
from tasks.milestone_tasks import enqueue_milestone_evaluation

router = APIRouter(prefix="/v1/check-ins", tags=["Check-ins"])


@router.get("", response_model=List[CheckInResponse])
async def list_check_ins(
    limit: int = Query(10, ge=1, le=100),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Recent check-ins, newest first; pass start and end for a date range instead."""
    if start is not None or end is not None:
        try:
            return check_in_service.get_check_ins_by_date_range(
                db, current_user.id, start or end, end or start
            )
        except DomainValidationError as e:
            raise to_http_error(e)
    return check_in_service.get_recent_check_ins(db, current_user.id, limit=limit)


@router.post("", response_model=CheckInResponse, status_code=status.HTTP_201_CREATED)
async def create_check_in(
    body: CheckInCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        check_in = check_in_service.create_check_in(
            db,
            current_user.id,
            mood=body.mood,
            sleep_quality=body.sleep_quality,
            energy_level=body.energy_level,
            intentions=body.intentions,
        )
    except DomainValidationError as e:
        raise to_http_error(e)
    db.commit()
    enqueue_milestone_evaluation(current_user.id)
    return check_in


@router.get("/stats", response_model=CheckInStatsResponse)
async def get_check_in_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return check_in_service.get_check_in_stats(db, current_user.id)


@router.get("/today", response_model=CheckInTodayResponse)
async def get_today(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Whether the user has checked in today (UTC)."""
    return CheckInTodayResponse(has_checked_in_today=check_in_service.has_check_in_today(db, current_user.id))


@router.get("/{check_in_id}", response_model=CheckInResponse)
async def get_check_in(
    check_in_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return check_in_service.get_check_in(db, current_user.id, check_in_id)
    except RecordNotFoundError as e:
        raise to_http_error(e)
