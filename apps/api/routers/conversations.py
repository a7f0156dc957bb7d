"""
Conversations API Router

Conversation listing, creation and renaming, and the message log of one
conversation. A conversation's stage is read-only here.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import DomainValidationError, RecordNotFoundError, to_http_error
from models import User
from schemas import ConversationCreate, ConversationResponse, ConversationUpdate, MessageResponse
from services import conversations as conversation_service

router = APIRouter(prefix="/v1/conversations", tags=["Conversations"])


@router.get("", response_model=List[ConversationResponse])
async def list_conversations(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Conversations, most recently active first."""
    return conversation_service.list_conversations(db, current_user.id, limit=limit, offset=offset)


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    body: ConversationCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    conversation = conversation_service.create_conversation(db, current_user.id, title=body.title)
    db.commit()
    return conversation


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return conversation_service.get_conversation(db, current_user.id, conversation_id)
    except RecordNotFoundError as e:
        raise to_http_error(e)


@router.patch("/{conversation_id}", response_model=ConversationResponse)
async def update_conversation(
    conversation_id: UUID,
    body: ConversationUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Rename a conversation."""
    try:
        conversation = conversation_service.update_conversation_title(
            db, current_user.id, conversation_id, body.title
        )
    except (DomainValidationError, RecordNotFoundError) as e:
        raise to_http_error(e)
    db.commit()
    return conversation


@router.get("/{conversation_id}/messages", response_model=List[MessageResponse])
async def list_conversation_messages(
    conversation_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """All messages in creation order."""
    try:
        return conversation_service.list_messages(db, current_user.id, conversation_id)
    except RecordNotFoundError as e:
        raise to_http_error(e)
