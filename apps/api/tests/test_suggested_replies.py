"""
Tests for suggested quick replies.
"""
import pytest

from services.companion.context import AchievementSnapshot, ConversationContext, MessageSnapshot
from services.companion.phases import Phase
from services.companion.suggested_replies import SHOW_PROGRESS, SuggestedReply, replies_for


ACHIEVEMENT = AchievementSnapshot(type="first_check_in", name="First Steps", progress=100, unlocked=True)


def _context(phase, assistant=None, user=(), achievements=()):
    messages = tuple(MessageSnapshot("user", text) for text in user)
    if assistant is not None:
        messages += (MessageSnapshot("assistant", assistant),)
    return ConversationContext(
        user_id="user_1", conversation_id=None, phase=phase,
        recent_messages=messages, achievements=achievements,
    )


def _texts(phase, **kwargs):
    return [r.text for r in replies_for(phase, _context(phase, **kwargs))]


@pytest.mark.parametrize("phase", list(Phase))
def test_three_or_four_replies_for_every_phase(phase):
    replies = replies_for(phase, _context(phase))
    assert 3 <= len(replies) <= 4
    assert all(r.kind in ("quick", "detailed") for r in replies)


def test_serialized_shape():
    assert SuggestedReply("Tell me more", "detailed").to_dict() == {"text": "Tell me more", "type": "detailed"}


def test_greeting():
    assert _texts(Phase.GREETING)[0] == "Yes, let's check in"


class TestCheckIn:
    def test_asks_about_mood(self):
        assert _texts(Phase.CHECK_IN, assistant="How are you feeling this morning?")[0] == "I'm feeling calm today"

    def test_mood_already_answered_moves_on(self):
        texts = _texts(
            Phase.CHECK_IN,
            assistant="Thanks! How is your mood and how did you sleep?",
            user=["I'm feeling calm"],
        )
        assert texts[0] == "I slept well, about 4/5"

    def test_asks_about_energy(self):
        assert "My energy is about 4/5" in _texts(Phase.CHECK_IN, assistant="What's your energy like?")

    def test_all_answered_offers_journaling(self):
        texts = _texts(
            Phase.CHECK_IN,
            assistant="Would you like to journal about that?",
            user=["I'm feeling calm", "sleep was good", "energy is 2", "I want to rest"],
        )
        assert texts[0] == "Yes, let's journal about it"


def test_journal_prompt_offers_to_skip():
    assert "Skip journaling for now" in _texts(Phase.JOURNAL_PROMPT)


def test_reflection_follows_question():
    assert _texts(Phase.REFLECTION, assistant="Which habits have helped most?")[0] == (
        "Daily check-ins have been really helpful"
    )


class TestMilestoneReview:
    @pytest.mark.parametrize("assistant", [
        None,
        "Let's look at your milestones and progress",
        "What are you most proud of?",
        "How does that feel?",
    ])
    def test_show_progress_offered_whenever_achievements_exist(self, assistant):
        texts = _texts(Phase.MILESTONE_REVIEW, assistant=assistant, achievements=(ACHIEVEMENT,))
        assert SHOW_PROGRESS in texts

    @pytest.mark.parametrize("assistant", [
        None,
        "Let's look at your milestones and progress",
        "What achievement are you proud of?",
    ])
    def test_show_progress_never_offered_without_achievements(self, assistant):
        texts = _texts(Phase.MILESTONE_REVIEW, assistant=assistant)
        assert SHOW_PROGRESS not in texts

    def test_first_goal_without_achievements(self):
        assert _texts(Phase.MILESTONE_REVIEW)[0] == "Help me set my first goal"
