"""
Recovery companion engine: phases, context, prompt shaping, transition
detection, extraction, suggested replies and the turn orchestrator.
"""

from .context import (
    AchievementSnapshot,
    CheckInSnapshot,
    ConversationContext,
    MessageSnapshot,
    build_conversation_context,
    empty_context,
)
from .detection import TransitionDecision, TransitionKind, should_transition
from .extraction import ExtractionOutcome, ExtractionStatus, extract_check_in, extract_journal_entry
from .phases import INITIAL_PHASE, PHASE_PROFILES, Phase, next_phase, phase_catalog, profile_for
from .stage_machine import PromptDirectives, build_system_prompt, commit_transition, prompt_shape_for
from .suggested_replies import SuggestedReply, replies_for
from .turn import SSE_HEADERS, stream_turn

__all__ = [
    "AchievementSnapshot",
    "CheckInSnapshot",
    "ConversationContext",
    "MessageSnapshot",
    "build_conversation_context",
    "empty_context",
    "TransitionDecision",
    "TransitionKind",
    "should_transition",
    "ExtractionOutcome",
    "ExtractionStatus",
    "extract_check_in",
    "extract_journal_entry",
    "INITIAL_PHASE",
    "PHASE_PROFILES",
    "Phase",
    "next_phase",
    "phase_catalog",
    "profile_for",
    "PromptDirectives",
    "build_system_prompt",
    "commit_transition",
    "prompt_shape_for",
    "SuggestedReply",
    "replies_for",
    "SSE_HEADERS",
    "stream_turn",
]
