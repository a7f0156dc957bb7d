"""
Companion Chat API Router

One streamed turn per POST (SSE over fetch), plus the phase-query endpoints
clients use to (re)hydrate stage and quick replies when no turn is in flight.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import RecordNotFoundError, to_http_error
from models import User
from schemas import ChatRequest, StageInfoResponse, StageStateResponse
from services import conversations as conversation_service
from services.companion import (
    INITIAL_PHASE,
    Phase,
    SSE_HEADERS,
    build_conversation_context,
    empty_context,
    phase_catalog,
    replies_for,
    stream_turn,
)
from services.companion.locks import user_locks
from services.llm_client import TextGenerationClient, get_text_generation_client

router = APIRouter(prefix="/v1/chat", tags=["Chat"])


@router.post("")
async def chat(
    request: ChatRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: TextGenerationClient = Depends(get_text_generation_client),
):
    """
    Send one message and stream the companion's reply.

    Events: `meta` (conversation id, stage), `delta` (reply text), then `done`
    (resulting stage, transition rationale, suggested replies) or `error`.
    The conversation id is also returned in the X-Conversation-Id header.
    """
    user_id = current_user.id

    if request.conversation_id is not None:
        try:
            conversation = conversation_service.get_conversation(db, user_id, request.conversation_id)
        except RecordNotFoundError as e:
            raise to_http_error(e)
    else:
        # Two first turns racing for the same user must create one conversation
        async with user_locks.get(user_id):
            conversation = conversation_service.get_or_create_conversation(db, user_id)
            db.commit()

    conversation_id = conversation.id
    return StreamingResponse(
        stream_turn(user_id, conversation_id, request.message, client),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Conversation-Id": str(conversation_id)},
    )


@router.get("/stage", response_model=StageStateResponse)
async def get_stage(
    conversation_id: Optional[UUID] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Current stage, conversation id and suggested replies."""
    user_id = current_user.id
    try:
        if conversation_id is not None:
            conversation = conversation_service.get_conversation(db, user_id, conversation_id)
        else:
            conversation = conversation_service.get_latest_conversation(db, user_id)
    except RecordNotFoundError as e:
        raise to_http_error(e)

    if conversation is None:
        context = empty_context(user_id, INITIAL_PHASE)
    else:
        context = build_conversation_context(
            db, user_id, conversation.id, Phase(conversation.stage), conversation.stage_entered_at
        )

    return StageStateResponse(
        stage=context.phase.value,
        conversation_id=conversation.id if conversation else None,
        suggested_replies=[r.to_dict() for r in replies_for(context.phase, context)],
    )


@router.get("/stages", response_model=List[StageInfoResponse])
async def list_stages():
    """Ordered stage metadata for progress indicators."""
    return phase_catalog()
