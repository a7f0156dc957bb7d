"""
Journal API Router
"""

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
from uuid import UUID

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import DomainValidationError, RecordNotFoundError, to_http_error
from models import User
from schemas import (
    JournalEntryCreate,
    JournalEntryResponse,
    JournalEntryUpdate,
    JournalInsightsUpdate,
    JournalStatsResponse,
    JournalTodayResponse,
)
from services import journal as journal_service
from tasks.milestone_tasks import enqueue_milestone_evaluation

router = APIRouter(prefix="/v1/journal", tags=["Journal"])


@router.get("", response_model=List[JournalEntryResponse])
async def list_journal_entries(
    limit: int = Query(10, ge=1, le=100),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if start is not None or end is not None:
        try:
            return journal_service.get_journal_entries_by_date_range(
                db, current_user.id, start or end, end or start
            )
        except DomainValidationError as e:
            raise to_http_error(e)
    return journal_service.get_recent_journal_entries(db, current_user.id, limit=limit)


@router.post("", response_model=JournalEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_journal_entry(
    body: JournalEntryCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        entry = journal_service.create_journal_entry(db, current_user.id, body.content, title=body.title)
    except DomainValidationError as e:
        raise to_http_error(e)
    db.commit()
    enqueue_milestone_evaluation(current_user.id)
    return entry


@router.get("/search", response_model=List[JournalEntryResponse])
async def search_journal(
    q: str = Query(..., description="Case-insensitive text to find in titles and content"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return journal_service.search_journal_entries(db, current_user.id, q)
    except DomainValidationError as e:
        raise to_http_error(e)


@router.get("/stats", response_model=JournalStatsResponse)
async def get_journal_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return journal_service.get_journal_stats(db, current_user.id)


@router.get("/today", response_model=JournalTodayResponse)
async def get_today(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Whether the user has written a journal entry today (UTC)."""
    return JournalTodayResponse(has_journaled_today=journal_service.has_journaled_today(db, current_user.id))


@router.get("/{entry_id}", response_model=JournalEntryResponse)
async def get_journal_entry(
    entry_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return journal_service.get_journal_entry(db, current_user.id, entry_id)
    except RecordNotFoundError as e:
        raise to_http_error(e)


@router.patch("/{entry_id}", response_model=JournalEntryResponse)
async def update_journal_entry(
    entry_id: UUID,
    body: JournalEntryUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        entry = journal_service.update_journal_entry(
            db, current_user.id, entry_id, content=body.content, title=body.title
        )
    except (DomainValidationError, RecordNotFoundError) as e:
        raise to_http_error(e)
    db.commit()
    return entry


@router.put("/{entry_id}/insights", response_model=JournalEntryResponse)
async def update_journal_insights(
    entry_id: UUID,
    body: JournalInsightsUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        entry = journal_service.update_journal_insights(db, current_user.id, entry_id, body.insights)
    except (DomainValidationError, RecordNotFoundError) as e:
        raise to_http_error(e)
    db.commit()
    return entry


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_journal_entry(
    entry_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        journal_service.delete_journal_entry(db, current_user.id, entry_id)
    except RecordNotFoundError as e:
        raise to_http_error(e)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
