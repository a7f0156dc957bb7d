"""
Companion Phases

The fixed dialogue cycle and the per-phase completion rules:

    greeting -> check_in -> journal_prompt -> affirmation -> reflection
             -> milestone_review -> check_in -> ...

Greeting is only ever the initial phase; nothing transitions back into it.

Pass rules (criteria satisfied out of the listed set):
    greeting          1 of 1   (min 1 user turn)
    check_in          2 of 4   (min 2 user turns)
    journal_prompt    1 of 2   (min 1 user turn; the two criteria are exclusive)
    affirmation       1 of 2   (min 1 user turn)
    reflection        2 of 3   (min 2 user turns)
    milestone_review  2 of 3   (min 2 user turns)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple


class Phase(str, Enum):
    """Conversation phase. Values are the persisted `conversations.stage` names."""
    GREETING = "greeting"
    CHECK_IN = "check_in"
    JOURNAL_PROMPT = "journal_prompt"
    AFFIRMATION = "affirmation"
    REFLECTION = "reflection"
    MILESTONE_REVIEW = "milestone_review"

    @property
    def label(self) -> str:
        return self.value.upper().replace("_", " ")


INITIAL_PHASE = Phase.GREETING

STAGE_PROGRESSION: Dict[Phase, Phase] = {
    Phase.GREETING: Phase.CHECK_IN,
    Phase.CHECK_IN: Phase.JOURNAL_PROMPT,
    Phase.JOURNAL_PROMPT: Phase.AFFIRMATION,
    Phase.AFFIRMATION: Phase.REFLECTION,
    Phase.REFLECTION: Phase.MILESTONE_REVIEW,
    Phase.MILESTONE_REVIEW: Phase.CHECK_IN,
}

# Display order for progress indicators
PHASE_ORDER: Tuple[Phase, ...] = tuple(Phase)


def next_phase(current: Phase) -> Phase:
    """Successor of `current` in the fixed cycle. Total over Phase."""
    return STAGE_PROGRESSION[Phase(current)]


@dataclass(frozen=True)
class PhaseProfile:
    """Completion rule and display metadata for one phase."""
    phase: Phase
    name: str
    subtitle: str
    description: str
    min_user_turns: int
    criteria: Tuple[str, ...]
    required_criteria: int

    def to_dict(self) -> Dict:
        return {
            "stage": self.phase.value,
            "name": self.name,
            "subtitle": self.subtitle,
            "description": self.description,
            "min_user_turns": self.min_user_turns,
            "criteria": list(self.criteria),
            "required_criteria": self.required_criteria,
        }


PHASE_PROFILES: Dict[Phase, PhaseProfile] = {
    Phase.GREETING: PhaseProfile(
        phase=Phase.GREETING,
        name="Welcome",
        subtitle="Let's start your day together",
        description="User has been welcomed and is ready to proceed",
        min_user_turns=1,
        criteria=(
            "User acknowledged the greeting or expressed readiness to start",
        ),
        required_criteria=1,
    ),
    Phase.CHECK_IN: PhaseProfile(
        phase=Phase.CHECK_IN,
        name="Check-In",
        subtitle="How are you feeling today?",
        description="Daily wellness check-in data has been gathered",
        min_user_turns=2,
        criteria=(
            "User shared their current mood/emotional state",
            "User mentioned their sleep quality (can be numeric or descriptive)",
            "User mentioned their energy level (can be numeric or descriptive)",
            "User shared their intentions/goals for the day",
        ),
        required_criteria=2,
    ),
    Phase.JOURNAL_PROMPT: PhaseProfile(
        phase=Phase.JOURNAL_PROMPT,
        name="Journal",
        subtitle="Time to reflect on your journey",
        description="User has been prompted to journal and responded",
        min_user_turns=1,
        criteria=(
            "User agreed to journal or shared a reflective thought",
            "User explicitly declined or postponed journaling",
        ),
        required_criteria=1,
    ),
    Phase.AFFIRMATION: PhaseProfile(
        phase=Phase.AFFIRMATION,
        name="Affirmation",
        subtitle="Celebrating your progress",
        description="Affirmation has been delivered and acknowledged",
        min_user_turns=1,
        criteria=(
            "User acknowledged the affirmation (directly or implicitly)",
            "User engaged with the affirmation message",
        ),
        required_criteria=1,
    ),
    Phase.REFLECTION: PhaseProfile(
        phase=Phase.REFLECTION,
        name="Reflection",
        subtitle="Looking at how far you've come",
        description="User has reflected on their growth and progress",
        min_user_turns=2,
        criteria=(
            "User shared thoughts about positive changes or growth",
            "User discussed habits, perspective shifts, or self-awareness",
            "User expressed readiness to move forward",
        ),
        required_criteria=2,
    ),
    Phase.MILESTONE_REVIEW: PhaseProfile(
        phase=Phase.MILESTONE_REVIEW,
        name="Milestones",
        subtitle="Your achievements matter",
        description="User has reviewed progress and milestones",
        min_user_turns=2,
        criteria=(
            "User discussed their achievements or milestones",
            "User expressed interest in setting new goals or continuing",
            "User is ready for the next check-in",
        ),
        required_criteria=2,
    ),
}


def profile_for(phase: Phase) -> PhaseProfile:
    return PHASE_PROFILES[Phase(phase)]


def completion_criteria(phase: Phase) -> List[str]:
    return list(profile_for(phase).criteria)


def phase_catalog() -> List[Dict]:
    """Ordered phase metadata for clients rendering a progress indicator."""
    return [PHASE_PROFILES[p].to_dict() for p in PHASE_ORDER]
