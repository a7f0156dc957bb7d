"""
Transition Detector

Decides after each turn whether the current phase is complete.

1. Fewer user turns in the phase than the phase minimum -> no transition,
   without calling the model.
2. Otherwise the extraction model reports which numbered completion criteria
   the conversation satisfies. The pass rule (satisfied >= required) is
   evaluated here, not by the model; the model's own should_transition flag
   is only logged when it disagrees.
3. Any service failure, timeout or malformed response -> no transition.
   Under-transitioning degrades gracefully, over-transitioning corrupts state.

The result is a TransitionDecision rather than a bare bool so callers and
logs can tell "criteria not met" apart from "service unavailable".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from core.exceptions import ExtractionDecodeError, TextGenerationError

from .context import MessageSnapshot
from .phases import Phase, PhaseProfile, profile_for

logger = logging.getLogger(__name__)

STAGE_COMPLETION_SCHEMA_VERSION = 1
DETECTION_TEMPERATURE = 0.1


class TransitionKind(str, Enum):
    CRITERIA_MET = "criteria_met"
    CRITERIA_NOT_MET = "criteria_not_met"
    BELOW_MINIMUM = "below_minimum"
    SERVICE_UNAVAILABLE = "service_unavailable"
    INVALID_RESPONSE = "invalid_response"


@dataclass(frozen=True)
class TransitionDecision:
    decision: bool
    kind: TransitionKind
    reason: str
    criteria_met: Tuple[int, ...] = ()

    def __bool__(self) -> bool:
        return self.decision


class StageCompletionV1(BaseModel):
    """Strict decoder for the stage-completion response."""
    model_config = ConfigDict(extra="forbid")

    criteria_met: List[int] = Field(default_factory=list)
    should_transition: bool
    reasoning: str


STAGE_COMPLETION_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "criteria_met": {
            "type": "ARRAY",
            "items": {"type": "INTEGER"},
            "description": "Numbers of the criteria satisfied by the conversation",
        },
        "should_transition": {
            "type": "BOOLEAN",
            "description": "Whether enough criteria are met to move to the next stage",
        },
        "reasoning": {
            "type": "STRING",
            "description": "Brief explanation of why transition should or should not occur",
        },
    },
    "required": ["criteria_met", "should_transition", "reasoning"],
}


def format_transcript(messages: Sequence[MessageSnapshot]) -> str:
    return "\n".join(
        f"{'User' if m.role == 'user' else 'AI'}: {m.content}" for m in messages
    )


def build_detection_prompt(profile: PhaseProfile, messages: Sequence[MessageSnapshot]) -> str:
    criteria = "\n".join(f"{i}. {c}" for i, c in enumerate(profile.criteria, start=1))
    return f"""You are analyzing a recovery companion conversation to determine if the current stage is complete.

Current Stage: {profile.phase.value}
Stage Description: {profile.description}

Criteria for completion (at least {profile.required_criteria} of {len(profile.criteria)} must be met):
{criteria}

Recent Conversation:
{format_transcript(messages)}

Analyze the conversation and determine:
1. Which criteria have been met, by number (be flexible with natural language variations)
2. Whether enough criteria are met to transition to the next stage
3. Brief reasoning for your decision

Only count criteria satisfied by what the User said, not by what the AI asked."""


def decode_stage_completion(raw: str) -> StageCompletionV1:
    return StageCompletionV1.model_validate_json(raw)


async def should_transition(
    client,
    phase: Phase,
    messages: Sequence[MessageSnapshot],
    user_turns_in_phase: int,
) -> TransitionDecision:
    """Decide whether `phase` is complete. Never raises for service failures."""
    profile = profile_for(phase)

    if user_turns_in_phase < profile.min_user_turns:
        return TransitionDecision(
            decision=False,
            kind=TransitionKind.BELOW_MINIMUM,
            reason=(
                f"below minimum exchanges: need {profile.min_user_turns} user "
                f"turn(s) in {profile.phase.value}, have {user_turns_in_phase}"
            ),
        )

    prompt = build_detection_prompt(profile, messages)
    try:
        raw = await client.extract(prompt, STAGE_COMPLETION_RESPONSE_SCHEMA, temperature=DETECTION_TEMPERATURE)
    except ExtractionDecodeError as e:
        logger.warning(f"Stage detection returned an unusable response for {profile.phase.value}: {e}")
        return TransitionDecision(
            decision=False,
            kind=TransitionKind.INVALID_RESPONSE,
            reason=f"stage detection response unusable: {e}",
        )
    except TextGenerationError as e:
        logger.warning(f"Stage detection unavailable for {profile.phase.value}: {e}")
        return TransitionDecision(
            decision=False,
            kind=TransitionKind.SERVICE_UNAVAILABLE,
            reason=f"stage detection unavailable: {e}",
        )

    try:
        result = decode_stage_completion(raw)
    except PydanticValidationError as e:
        logger.warning(
            f"Stage detection returned an invalid response for {profile.phase.value}: "
            f"{e.error_count()} validation error(s)"
        )
        return TransitionDecision(
            decision=False,
            kind=TransitionKind.INVALID_RESPONSE,
            reason="stage detection response did not match schema",
        )

    # Out-of-range indices are ignored, duplicates counted once
    satisfied = tuple(sorted({i for i in result.criteria_met if 1 <= i <= len(profile.criteria)}))
    decision = len(satisfied) >= profile.required_criteria

    if decision != result.should_transition:
        logger.info(
            f"Stage detection flag disagrees with criteria count for {profile.phase.value}: "
            f"model={result.should_transition}, satisfied={len(satisfied)}/{profile.required_criteria}"
        )

    logger.info(
        f"Stage detection: stage={profile.phase.value} transition={decision} reason={result.reasoning}",
        extra={"extra_fields": {
            "stage": profile.phase.value,
            "transition": decision,
            "criteria_met": list(satisfied),
        }},
    )
    return TransitionDecision(
        decision=decision,
        kind=TransitionKind.CRITERIA_MET if decision else TransitionKind.CRITERIA_NOT_MET,
        reason=result.reasoning,
        criteria_met=satisfied,
    )
