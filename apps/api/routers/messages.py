"""
Messages API Router

Message history for the client's chat view, and direct appends (used by
clients that render a canned assistant greeting without a model call).
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import DomainValidationError, RecordNotFoundError, to_http_error
from models import User
from schemas import MessageCreate, MessageHistoryResponse, MessageResponse
from services import conversations as conversation_service
from services.companion.locks import conversation_locks, user_locks

router = APIRouter(prefix="/v1/messages", tags=["Messages"])


@router.get("", response_model=MessageHistoryResponse)
async def get_messages(
    conversation_id: Optional[UUID] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Messages of a conversation in creation order.

    Without conversation_id the user's latest conversation is used, created
    if the user has none yet.
    """
    user_id = current_user.id
    try:
        if conversation_id is not None:
            conversation = conversation_service.get_conversation(db, user_id, conversation_id)
        else:
            async with user_locks.get(user_id):
                conversation = conversation_service.get_or_create_conversation(db, user_id)
                db.commit()
        messages = conversation_service.list_messages(db, user_id, conversation.id)
    except RecordNotFoundError as e:
        raise to_http_error(e)

    return MessageHistoryResponse(conversation_id=conversation.id, messages=messages)


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def create_message(
    body: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    # Appends share the turn lock so they never interleave with a running turn
    async with conversation_locks.get(body.conversation_id):
        try:
            message = conversation_service.save_message(
                db, current_user.id, body.conversation_id, body.role, body.content
            )
        except (DomainValidationError, RecordNotFoundError) as e:
            raise to_http_error(e)
        db.commit()
    return message
