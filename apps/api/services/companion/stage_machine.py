"""
Stage State Machine

Prompt shaping for each phase, and the single write path for a
conversation's phase.

prompt_shape_for / build_system_prompt are pure: they read a
ConversationContext and return text. commit_transition is the only code that
updates `conversations.stage`; it compare-and-sets on (stage, version) so a
retried or concurrent turn that read an older phase cannot commit a phantom
transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from core.exceptions import StaleStageError
from models import Conversation
from services.conversations import next_message_timestamp

from .context import ConversationContext
from .phases import Phase, next_phase

logger = logging.getLogger(__name__)


BASE_SYSTEM_PROMPT = """You are a warm, empathetic recovery companion AI. Your role is to support users on their recovery journey with compassion, encouragement, and practical guidance.

Core Principles:
- Be supportive, non-judgmental, and empathetic
- Focus on progress, not perfection
- Celebrate small wins and acknowledge challenges
- Never provide medical advice or clinical diagnoses
- If the user expresses crisis or self-harm thoughts, encourage them to reach out to professional help (988 Suicide & Crisis Lifeline)
- Use a conversational, friend-like tone while maintaining professionalism
- Ask open-ended questions to encourage reflection
- Validate feelings and experiences

Remember: You are a supportive companion, not a therapist. Your goal is to help users reflect, track progress, and stay motivated in their recovery journey."""


@dataclass(frozen=True)
class PromptDirectives:
    """Phase guidance plus the contextual facts merged into a reply request."""
    phase: Phase
    guidance: str
    facts: Tuple[str, ...] = ()

    def render(self) -> str:
        sections = [
            BASE_SYSTEM_PROMPT,
            "---",
            f"Current Stage: {self.phase.label}",
            self.guidance,
        ]
        if self.facts:
            sections.append("---")
            sections.append("Contextual Information:\n" + "\n".join(self.facts))
        return "\n\n".join(sections)


def _format_day(value: Optional[datetime]) -> str:
    if value is None:
        return "an earlier date"
    return value.strftime("%B %d, %Y")


def _greeting_guidance(context: ConversationContext) -> str:
    if context.is_returning_user:
        audience = "Note: This user has used the app before. Acknowledge their return!"
    else:
        audience = "This appears to be a new user. Welcome them and briefly explain how you can help."
    return f"""Stage Objective: Welcome & Introduction

Welcome the user warmly to their recovery companion. This is the start of their conversation.

Focus on:
- Introducing yourself as their recovery companion
- Creating a safe, non-judgmental space
- Expressing genuine interest in supporting them
- Setting a positive, hopeful tone

Keep the greeting brief but warm. Let them know you're here to support their recovery journey through check-ins, journaling, reflections, and celebrating their progress.

{audience}

After the greeting, naturally ask if they'd like to do a quick check-in to see how they're doing today."""


def _check_in_guidance(context: ConversationContext) -> str:
    last = context.last_check_in
    if last is not None:
        history = f"Note: The user completed their last check-in on {_format_day(last.created_at)}."
    else:
        history = "This appears to be a new check-in session."
    return f"""Stage Objective: Daily Check-In

Ask the user how they're doing today. Gather information about:
- Their current mood (e.g., happy, anxious, calm, frustrated)
- Sleep quality (scale 1-5)
- Energy level (scale 1-5)
- Daily intentions or goals

Be conversational and natural. Don't ask all questions at once; let the conversation flow organically.

When you have gathered clear responses for mood, sleep, energy, and intentions, naturally wrap up the check-in and transition to encouraging them to reflect more deeply through journaling.

{history}"""


def _journal_guidance(context: ConversationContext) -> str:
    if context.journal_count > 0:
        history = f"The user has written {context.journal_count} journal entries so far. Acknowledge their consistency!"
    else:
        history = "This might be their first journal entry. Encourage them to start!"
    return f"""Stage Objective: Encourage Journaling

Encourage the user to journal about their recovery experience. Suggest prompts such as:
- What are you grateful for today?
- What progress have you made recently, no matter how small?
- What challenges are you facing, and how might you approach them?
- What have you learned about yourself lately?

Be encouraging and supportive. Let them know that journaling helps process emotions and track growth.

{history}

If they share a reflection, respond to it thoughtfully. If they would rather skip journaling today, accept that warmly without pressure."""


def _affirmation_guidance(context: ConversationContext) -> str:
    return """Stage Objective: Provide Affirmation

Offer a personalized, meaningful affirmation based on the conversation and the user's recent progress.

Focus on:
- Their resilience and strength
- Progress they've made (even small steps)
- Their commitment to recovery
- Hope and possibility

Keep it genuine, specific, and uplifting. Avoid generic platitudes; make it personal to their journey.

After delivering the affirmation, gently transition to encouraging them to reflect on their growth."""


def _reflection_guidance(context: ConversationContext) -> str:
    consistency = ""
    if len(context.recent_check_ins) > 2:
        consistency = "\n\nNote: They've been consistent with check-ins. Acknowledge this positive habit!"
    return f"""Stage Objective: Guide Reflection

Help the user reflect on their recovery journey. Ask thoughtful questions like:
- What positive changes have you noticed in yourself?
- What habits or practices have been most helpful?
- How has your perspective shifted over time?
- What are you learning to appreciate about yourself?

Listen actively and validate their reflections. Help them recognize patterns of growth and resilience.{consistency}

After meaningful reflection, transition toward reviewing their milestones and celebrating progress."""


def _milestone_guidance(context: ConversationContext) -> str:
    if context.achievements:
        listing = "\n".join(
            f"- {a.name}: {a.progress}% complete{' ✓ UNLOCKED' if a.unlocked else ''}"
            for a in context.achievements
        )
        milestones = (
            f"Current Milestones:\n{listing}\n\n"
            "Celebrate unlocked milestones and encourage progress on active ones."
        )
    else:
        milestones = (
            "The user doesn't have active milestones yet. "
            "Encourage them to set recovery goals they can track."
        )
    return f"""Stage Objective: Review Milestones and Celebrate Progress

Review the user's milestones and celebrate their achievements.

{milestones}

Discuss:
- What milestones they're proud of
- What new goals they might want to set
- How tracking progress helps them stay motivated

After celebrating achievements, naturally transition back to asking how they're doing, completing the cycle."""


_GUIDANCE = {
    Phase.GREETING: _greeting_guidance,
    Phase.CHECK_IN: _check_in_guidance,
    Phase.JOURNAL_PROMPT: _journal_guidance,
    Phase.AFFIRMATION: _affirmation_guidance,
    Phase.REFLECTION: _reflection_guidance,
    Phase.MILESTONE_REVIEW: _milestone_guidance,
}


def contextual_facts(context: ConversationContext) -> Tuple[str, ...]:
    facts = []
    if context.recent_messages:
        facts.append(f"Recent conversation context is available ({len(context.recent_messages)} recent messages).")
    last = context.last_check_in
    if last is not None:
        facts.append(
            f'Last check-in: Mood was "{last.mood}", sleep {last.sleep_quality}/5, energy {last.energy_level}/5.'
        )
    if context.journal_count > 0:
        facts.append(f"The user has {context.journal_count} journal entries.")
    unlocked = context.unlocked_achievements
    if unlocked:
        facts.append("Unlocked milestones: " + ", ".join(a.name for a in unlocked))
    return tuple(facts)


def prompt_shape_for(phase: Phase, context: ConversationContext) -> PromptDirectives:
    """Phase guidance and contextual facts for the next reply. Pure."""
    phase = Phase(phase)
    return PromptDirectives(
        phase=phase,
        guidance=_GUIDANCE[phase](context),
        facts=contextual_facts(context),
    )


def build_system_prompt(phase: Phase, context: ConversationContext) -> str:
    return prompt_shape_for(phase, context).render()


def commit_transition(
    db: Session,
    user_id: str,
    conversation_id: UUID,
    expected_phase: Phase,
    expected_version: int,
    new_phase: Optional[Phase] = None,
) -> int:
    """
    Move a conversation from `expected_phase` to its successor.

    Compare-and-set on (stage, version): if another turn already moved the
    conversation on, nothing is written and StaleStageError is raised.
    Returns the new version. The caller commits.
    """
    expected_phase = Phase(expected_phase)
    successor = next_phase(expected_phase)
    if new_phase is not None and Phase(new_phase) != successor:
        raise ValueError(
            f"{Phase(new_phase).value} is not the successor of {expected_phase.value}"
        )

    entered_at = next_message_timestamp(db, conversation_id)
    updated = (
        db.query(Conversation)
        .filter(
            Conversation.id == conversation_id,
            Conversation.user_id == user_id,
            Conversation.stage == expected_phase.value,
            Conversation.version == expected_version,
        )
        .update(
            {
                Conversation.stage: successor.value,
                Conversation.version: expected_version + 1,
                Conversation.stage_entered_at: entered_at,
                Conversation.updated_at: entered_at,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        logger.warning(
            f"Stale phase commit for conversation {conversation_id}: "
            f"expected {expected_phase.value} v{expected_version}"
        )
        raise StaleStageError(
            f"Conversation {conversation_id} is no longer at {expected_phase.value} v{expected_version}"
        )

    # the bulk update bypassed the identity map
    conversation = db.get(Conversation, conversation_id)
    if conversation is not None:
        db.refresh(conversation)

    logger.info(
        f"Conversation {conversation_id} advanced {expected_phase.value} -> {successor.value}",
        extra={"extra_fields": {
            "conversation_id": str(conversation_id),
            "from_stage": expected_phase.value,
            "to_stage": successor.value,
        }},
    )
    return expected_version + 1
