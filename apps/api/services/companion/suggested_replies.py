"""
Suggested Replies

Quick-reply candidates for the next user turn, derived only from the phase and
an already-built ConversationContext. No I/O.

Where a phase asks about several things (check-in, reflection, milestone
review), the last assistant message decides which question the suggestions
answer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List

from .context import ConversationContext
from .phases import Phase

QUICK = "quick"
DETAILED = "detailed"

SHOW_PROGRESS = "Show me my progress"


@dataclass(frozen=True)
class SuggestedReply:
    text: str
    kind: str = QUICK

    def to_dict(self) -> Dict[str, str]:
        return {"text": self.text, "type": self.kind}


def _replies(*pairs) -> List[SuggestedReply]:
    return [SuggestedReply(text, kind) for text, kind in pairs]


# Signals that a check-in topic was already answered by the user
_MOOD_ANSWERED = re.compile(
    r"(?:i'm feeling|feeling|mood|feel)\s+(?:calm|happy|anxious|sad|motivated|tired|stressed|hopeful|frustrated|peaceful)",
    re.IGNORECASE,
)
_SLEEP_ANSWERED = re.compile(r"sleep\s*(?:quality|was|well|about)?\s*(?:\d|good|bad|okay)", re.IGNORECASE)
_ENERGY_ANSWERED = re.compile(r"energy\s*(?:level|is)?\s*(?:\d|high|low|good)", re.IGNORECASE)
_INTENTION_ANSWERED = re.compile(r"(?:intention|want to|goal|focus|stay)", re.IGNORECASE)


def _last_assistant_text(context: ConversationContext) -> str:
    message = context.last_message("assistant")
    return message.content.lower() if message else ""


def _mentions(text: str, *words: str) -> bool:
    return any(w in text for w in words)


def _greeting(context: ConversationContext) -> List[SuggestedReply]:
    return _replies(
        ("Yes, let's check in", QUICK),
        ("Tell me more about how this works", DETAILED),
        ("I'm ready to start", QUICK),
    )


def _check_in(context: ConversationContext) -> List[SuggestedReply]:
    asked = _last_assistant_text(context)
    answered = " ".join(m.content for m in context.user_messages())

    has_mood = bool(_MOOD_ANSWERED.search(answered))
    has_sleep = bool(_SLEEP_ANSWERED.search(answered))
    has_energy = bool(_ENERGY_ANSWERED.search(answered))
    has_intention = bool(_INTENTION_ANSWERED.search(answered))

    if has_mood and has_sleep and has_energy and has_intention and _mentions(asked, "journal", "reflect"):
        return _replies(
            ("Yes, let's journal about it", QUICK),
            ("I'd like to reflect more on that", DETAILED),
            ("That sounds like a good plan", QUICK),
            ("Tell me more about journaling", DETAILED),
        )
    if _mentions(asked, "mood", "feeling") and not has_mood:
        return _replies(
            ("I'm feeling calm today", QUICK),
            ("I'm feeling motivated", QUICK),
            ("I'm feeling a bit anxious", QUICK),
            ("I'm feeling hopeful and positive", DETAILED),
        )
    if _mentions(asked, "energy") and not has_energy:
        return _replies(
            ("My energy level is 3/5", QUICK),
            ("My energy is about 4/5", QUICK),
            ("I'm feeling pretty energized, 5/5", QUICK),
            ("My energy is low today, about 2/5", QUICK),
        )
    if _mentions(asked, "sleep") and not has_sleep:
        return _replies(
            ("I slept well, about 4/5", QUICK),
            ("I got decent sleep, 3/5", QUICK),
            ("I didn't sleep great, 2/5", QUICK),
            ("I had amazing sleep, 5/5!", QUICK),
        )
    if _mentions(asked, "intention", "goal") and not has_intention:
        return _replies(
            ("I want to stay focused and positive today", DETAILED),
            ("I want to be productive today", QUICK),
            ("I want to practice self-care", DETAILED),
            ("I want to stay grounded and present", DETAILED),
        )
    return _replies(
        ("I'm feeling calm today", QUICK),
        ("I slept well, about 4/5", QUICK),
        ("My energy level is 3/5", QUICK),
        ("I want to stay focused and positive today", DETAILED),
    )


def _journal_prompt(context: ConversationContext) -> List[SuggestedReply]:
    return _replies(
        ("I'd like to journal about today", QUICK),
        ("I'm grateful for my progress", DETAILED),
        ("Let me reflect on my challenges", DETAILED),
        ("Skip journaling for now", QUICK),
    )


def _affirmation(context: ConversationContext) -> List[SuggestedReply]:
    return _replies(
        ("Thank you, that means a lot", QUICK),
        ("I needed to hear that", QUICK),
        ("Tell me more", DETAILED),
    )


def _reflection(context: ConversationContext) -> List[SuggestedReply]:
    asked = _last_assistant_text(context)
    if _mentions(asked, "changes", "notice"):
        return _replies(
            ("I've noticed I'm more patient with myself", DETAILED),
            ("I'm communicating better", QUICK),
            ("My mindset has shifted positively", DETAILED),
            ("I feel more resilient", QUICK),
        )
    if _mentions(asked, "habit", "practice"):
        return _replies(
            ("Daily check-ins have been really helpful", DETAILED),
            ("Journaling helps me process", QUICK),
            ("Setting intentions keeps me focused", DETAILED),
            ("Taking time to reflect", QUICK),
        )
    if _mentions(asked, "appreciate", "learning"):
        return _replies(
            ("I'm learning to appreciate myself more", DETAILED),
            ("I appreciate my resilience", QUICK),
            ("I value my progress, even small steps", DETAILED),
            ("I'm proud of my commitment", QUICK),
        )
    return _replies(
        ("I've noticed positive changes", DETAILED),
        ("My habits are improving", QUICK),
        ("I'm learning to appreciate myself more", DETAILED),
        ("I'd like to talk more about this", QUICK),
    )


def _milestone_review(context: ConversationContext) -> List[SuggestedReply]:
    """
    With at least one achievement every branch offers SHOW_PROGRESS; with none,
    no branch does.
    """
    asked = _last_assistant_text(context)
    has_achievements = bool(context.achievements)

    if not has_achievements:
        if _mentions(asked, "proud", "achievement"):
            return _replies(
                ("I'm proud of staying consistent", QUICK),
                ("I'm proud of not giving up", DETAILED),
                ("Help me set my first goal", QUICK),
            )
        return _replies(
            ("Help me set my first goal", QUICK),
            ("What milestones can I track?", DETAILED),
            ("I'm ready to start tracking progress", DETAILED),
        )

    if _mentions(asked, "milestone", "progress"):
        return _replies(
            (SHOW_PROGRESS, QUICK),
            ("What have I accomplished?", DETAILED),
            ("Let's do another check-in", QUICK),
        )
    if _mentions(asked, "proud", "achievement"):
        return _replies(
            ("I'm proud of what I've achieved", DETAILED),
            ("I'm proud of staying consistent", QUICK),
            (SHOW_PROGRESS, QUICK),
        )
    return _replies(
        (SHOW_PROGRESS, QUICK),
        ("I'm proud of what I've achieved", DETAILED),
        ("What should I work on next?", DETAILED),
        ("Let's do another check-in", QUICK),
    )


_GENERATORS = {
    Phase.GREETING: _greeting,
    Phase.CHECK_IN: _check_in,
    Phase.JOURNAL_PROMPT: _journal_prompt,
    Phase.AFFIRMATION: _affirmation,
    Phase.REFLECTION: _reflection,
    Phase.MILESTONE_REVIEW: _milestone_review,
}


def replies_for(phase: Phase, context: ConversationContext) -> List[SuggestedReply]:
    """3-4 suggestions for `phase`, highest priority first."""
    return _GENERATORS[Phase(phase)](context)
