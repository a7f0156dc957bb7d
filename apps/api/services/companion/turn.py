"""
Turn Orchestrator

Runs one chat turn end to end and yields it as server-sent events:

    meta   {conversation_id, stage}
    delta  {delta}                          (reply text, repeated)
    done   {conversation_id, stage, previous_stage, transitioned,
            transition, extraction, suggested_replies}
    error  {message}                        (turn aborted)

Write sequence, strictly ordered and serialized per conversation:

    save user message -> build context -> stream reply -> save assistant
    message -> rebuild context -> extract -> detect -> commit phase ->
    enqueue achievement evaluation -> suggested replies

Only message persistence and reply generation abort the turn. Extraction,
detection, phase commit and achievement evaluation each degrade on their own.
A user message saved before a reply failure stays saved.

The turn owns its database session: the streaming body outlives the
request-scoped dependency session.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from core.database import get_db_sync
from core.exceptions import DomainValidationError, StaleStageError, TextGenerationError
from models import as_utc
from services import conversations as conversation_service

from .context import ConversationContext, MessageSnapshot, build_conversation_context
from .detection import TransitionDecision, should_transition
from .extraction import ExtractionOutcome, extract_check_in, extract_journal_entry
from .locks import conversation_locks
from .phases import Phase, next_phase
from .stage_machine import build_system_prompt, commit_transition
from .suggested_replies import replies_for

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # Nginx / some proxies buffer by default; disable buffering when present.
    "X-Accel-Buffering": "no",
}


def sse_event(event: str, payload: Dict) -> bytes:
    return f"event: {event}\ndata: ".encode("utf-8") + json.dumps(
        {"type": event, **payload}, default=str
    ).encode("utf-8") + b"\n\n"


def reply_history(messages: Sequence[MessageSnapshot]) -> List[Tuple[str, str]]:
    """(role, content) pairs for the reply call, starting at the first user message."""
    history = [(m.role, m.content) for m in messages]
    while history and history[0][0] != "user":
        history.pop(0)
    return history


def _phase_window(context: ConversationContext, conversation) -> Tuple[MessageSnapshot, ...]:
    """Messages sent since the current phase was entered."""
    entered = as_utc(conversation.stage_entered_at)
    window = tuple(
        m for m in context.recent_messages
        if m.created_at is None or entered is None or m.created_at >= entered
    )
    return window or context.recent_messages


async def _extract_for_phase(
    db: Session,
    client,
    phase: Phase,
    user_id: str,
    conversation,
    source_message_id: UUID,
    context: ConversationContext,
) -> Optional[ExtractionOutcome]:
    if phase == Phase.CHECK_IN:
        extractor = extract_check_in
    elif phase == Phase.JOURNAL_PROMPT:
        extractor = extract_journal_entry
    else:
        return None

    try:
        outcome = await extractor(
            db,
            client,
            user_id,
            conversation.id,
            source_message_id,
            _phase_window(context, conversation),
            phase_entered_at=as_utc(conversation.stage_entered_at),
        )
        db.commit()
        return outcome
    except Exception as e:
        db.rollback()
        logger.error(f"Extraction failed for conversation {conversation.id}: {type(e).__name__}: {e}")
        return None


def _enqueue_achievement_evaluation(user_id: str) -> None:
    from tasks.milestone_tasks import enqueue_milestone_evaluation
    enqueue_milestone_evaluation(user_id)


async def stream_turn(
    user_id: str,
    conversation_id: UUID,
    message: str,
    client,
    session_factory: Callable[[], Session] = get_db_sync,
) -> AsyncIterator[bytes]:
    """Process one user message and yield SSE-encoded events."""
    async with conversation_locks.get(conversation_id):
        db = session_factory()
        try:
            async for event in _run_turn(db, user_id, conversation_id, message, client):
                yield event
        finally:
            db.close()


async def _run_turn(
    db: Session,
    user_id: str,
    conversation_id: UUID,
    message: str,
    client,
) -> AsyncIterator[bytes]:
    # 1. persist the user message
    try:
        conversation = conversation_service.get_conversation(db, user_id, conversation_id)
        user_message = conversation_service.save_message(db, user_id, conversation_id, "user", message)
        db.commit()
    except DomainValidationError as e:
        db.rollback()
        yield sse_event("error", {"message": str(e)})
        return
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to save user message for conversation {conversation_id}: {type(e).__name__}: {e}")
        yield sse_event("error", {"message": "Failed to save message"})
        return

    phase = Phase(conversation.stage)
    version = conversation.version
    entered_at = conversation.stage_entered_at
    yield sse_event("meta", {"conversation_id": str(conversation_id), "stage": phase.value})

    # 2. shape and stream the reply
    context = build_conversation_context(db, user_id, conversation_id, phase, entered_at)
    system_prompt = build_system_prompt(phase, context)

    parts: List[str] = []
    try:
        async for delta in client.stream_reply(system_prompt, reply_history(context.recent_messages)):
            parts.append(delta)
            yield sse_event("delta", {"delta": delta})
    except TextGenerationError as e:
        logger.error(f"Reply generation failed for conversation {conversation_id}: {e}")
        yield sse_event("error", {"message": "Reply generation failed"})
        return

    reply = "".join(parts).strip()
    if not reply:
        logger.error(f"Reply generation returned no text for conversation {conversation_id}")
        yield sse_event("error", {"message": "Reply generation returned no text"})
        return

    # 3. persist the assistant message
    try:
        conversation_service.save_message(db, user_id, conversation_id, "assistant", reply)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to save assistant message for conversation {conversation_id}: {type(e).__name__}: {e}")
        yield sse_event("error", {"message": "Failed to save reply"})
        return

    # 4. extraction and transition on the extended history
    context = build_conversation_context(db, user_id, conversation_id, phase, entered_at)
    outcome = await _extract_for_phase(db, client, phase, user_id, conversation, user_message.id, context)

    decision = await should_transition(client, phase, context.recent_messages, context.user_turns_in_phase)
    new_phase = phase
    transitioned = False
    if decision:
        new_phase, transitioned = _commit(db, user_id, conversation_id, phase, version)
        if not transitioned:
            decision = TransitionDecision(
                False, decision.kind, f"phase commit not applied: {decision.reason}", decision.criteria_met
            )

    logger.info(
        f"Turn complete for conversation {conversation_id}: {phase.value} -> {new_phase.value}",
        extra={"extra_fields": {
            "conversation_id": str(conversation_id),
            "stage": phase.value,
            "decision": decision.kind.value,
            "transitioned": transitioned,
            "extraction": outcome.status.value if outcome else None,
        }},
    )

    # 5. late steps: never fail the turn
    _enqueue_achievement_evaluation(user_id)

    next_context = dataclasses.replace(context, phase=new_phase, user_turns_in_phase=0) if transitioned else context
    suggestions = [r.to_dict() for r in replies_for(new_phase, next_context)]

    yield sse_event("done", {
        "conversation_id": str(conversation_id),
        "stage": new_phase.value,
        "previous_stage": phase.value,
        "transitioned": transitioned,
        "transition": {"kind": decision.kind.value, "reason": decision.reason},
        "extraction": {"status": outcome.status.value, "record_id": outcome.record_id} if outcome else None,
        "suggested_replies": suggestions,
    })


def _commit(db: Session, user_id: str, conversation_id: UUID, phase: Phase, version: int) -> Tuple[Phase, bool]:
    """Apply the transition; returns (phase the conversation is now in, applied)."""
    try:
        commit_transition(db, user_id, conversation_id, phase, version, next_phase(phase))
        db.commit()
        return next_phase(phase), True
    except StaleStageError:
        db.rollback()
        current = conversation_service.get_conversation(db, user_id, conversation_id)
        return Phase(current.stage), False
    except Exception as e:
        db.rollback()
        logger.error(f"Phase commit failed for conversation {conversation_id}: {type(e).__name__}: {e}")
        return phase, False
