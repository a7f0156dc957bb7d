"""
Milestones API Router

Manual milestones and an on-demand run of the automatic achievement check.
"""

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import DomainValidationError, DuplicateRecordError, RecordNotFoundError, to_http_error
from models import User
from schemas import (
    MilestoneCheckResponse,
    MilestoneCreate,
    MilestoneProgressUpdate,
    MilestoneResponse,
    MilestoneStatsResponse,
)
from services import milestones as milestone_service

router = APIRouter(prefix="/v1/milestones", tags=["Milestones"])


@router.get("", response_model=List[MilestoneResponse])
async def list_milestones(
    include_unlocked: bool = Query(True),
    type: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if type:
        return milestone_service.get_milestones_by_type(db, current_user.id, type)
    return milestone_service.list_milestones(db, current_user.id, include_unlocked=include_unlocked)


@router.post("", response_model=MilestoneResponse, status_code=status.HTTP_201_CREATED)
async def create_milestone(
    body: MilestoneCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        milestone = milestone_service.create_milestone(
            db,
            current_user.id,
            type=body.type,
            name=body.name,
            description=body.description,
            progress=body.progress,
        )
    except (DomainValidationError, DuplicateRecordError) as e:
        raise to_http_error(e)
    db.commit()
    return milestone


@router.get("/stats", response_model=MilestoneStatsResponse)
async def get_milestone_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return milestone_service.get_milestone_stats(db, current_user.id)


@router.post("/check", response_model=MilestoneCheckResponse)
async def check_achievements(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Run the automatic achievement check now; returns what was newly granted."""
    created = milestone_service.check_and_create_auto_achievements(db, current_user.id)
    db.commit()
    return MilestoneCheckResponse(created=created)


@router.get("/{milestone_id}", response_model=MilestoneResponse)
async def get_milestone(
    milestone_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return milestone_service.get_milestone(db, current_user.id, milestone_id)
    except RecordNotFoundError as e:
        raise to_http_error(e)


@router.patch("/{milestone_id}/progress", response_model=MilestoneResponse)
async def update_progress(
    milestone_id: UUID,
    body: MilestoneProgressUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Set progress 0-100; reaching 100 unlocks the milestone."""
    try:
        milestone = milestone_service.update_milestone_progress(db, current_user.id, milestone_id, body.progress)
    except (DomainValidationError, RecordNotFoundError) as e:
        raise to_http_error(e)
    db.commit()
    return milestone


@router.post("/{milestone_id}/unlock", response_model=MilestoneResponse)
async def unlock_milestone(
    milestone_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        milestone = milestone_service.unlock_milestone(db, current_user.id, milestone_id)
    except RecordNotFoundError as e:
        raise to_http_error(e)
    db.commit()
    return milestone


@router.delete("/{milestone_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_milestone(
    milestone_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        milestone_service.delete_milestone(db, current_user.id, milestone_id)
    except RecordNotFoundError as e:
        raise to_http_error(e)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
