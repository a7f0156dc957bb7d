"""
End-to-end chat turns through POST /v1/chat.

The text-generation client is replaced by the scripted fake from conftest, so
every reply, extraction and stage decision below is deterministic.
"""
import asyncio
import json
from datetime import timedelta

from uuid import UUID

import pytest

from core.exceptions import TextGenerationError
from models import CheckIn, Conversation, JournalEntry, Message, Milestone, utcnow
from services import conversations as conversation_service
from services.companion.turn import stream_turn


def parse_sse(body: str):
    events = []
    for block in body.strip().split("\n\n"):
        if not block.strip():
            continue
        name, data = None, None
        for line in block.splitlines():
            if line.startswith("event: "):
                name = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        events.append((name, data))
    return events


def detection(*criteria, reasoning="scripted"):
    return json.dumps({"criteria_met": list(criteria), "should_transition": True, "reasoning": reasoning})


CHECK_IN_COMPLETE = json.dumps({
    "mood": "calm",
    "sleep_quality": 5,
    "energy_level": 2,
    "intentions": None,
    "has_all_required_data": True,
    "confidence": 92,
})


def send(client, headers, message, conversation_id=None):
    body = {"message": message}
    if conversation_id is not None:
        body["conversation_id"] = str(conversation_id)
    response = client.post("/v1/chat", json=body, headers=headers)
    assert response.status_code == 200
    events = parse_sse(response.text)
    return response, events, events[-1][1]


class TestSingleTurn:
    def test_stream_shape(self, client, auth_headers, fake_llm):
        fake_llm.queue_reply("Welcome! I'm glad you're here. Shall we check in?")
        response, events, done = send(client, auth_headers, "hi")

        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-conversation-id"]

        names = [name for name, _ in events]
        assert names[0] == "meta"
        assert names[-1] == "done"
        assert set(names[1:-1]) == {"delta"}
        assert "".join(data["delta"] for name, data in events if name == "delta") == (
            "Welcome! I'm glad you're here. Shall we check in?"
        )
        assert events[0][1] == {
            "type": "meta",
            "conversation_id": response.headers["x-conversation-id"],
            "stage": "greeting",
        }

    def test_greeting_advances_to_check_in(self, client, auth_headers, fake_llm, db_session):
        fake_llm.queue("detection", detection(1, reasoning="User said hi"))
        response, events, done = send(client, auth_headers, "hi")

        assert done["previous_stage"] == "greeting"
        assert done["stage"] == "check_in"
        assert done["transitioned"] is True
        assert done["transition"] == {"kind": "criteria_met", "reason": "User said hi"}
        assert done["extraction"] is None
        # suggestions are for the phase the user is now in
        assert done["suggested_replies"][0] == {"text": "I'm feeling calm today", "type": "quick"}

        conversation_id = response.headers["x-conversation-id"]
        conversation = db_session.get(Conversation, UUID(conversation_id))
        assert conversation.stage == "check_in"
        assert conversation.title == "hi"
        assert db_session.query(Message).filter(Message.conversation_id == conversation.id).count() == 2

    def test_no_transition_keeps_stage(self, client, auth_headers):
        _, _, done = send(client, auth_headers, "hi")

        assert done["stage"] == "greeting"
        assert done["transitioned"] is False
        assert done["transition"]["kind"] == "criteria_not_met"

    def test_detector_failure_keeps_stage(self, client, auth_headers, fake_llm):
        fake_llm.queue("detection", TextGenerationError("quota exceeded"))
        _, events, done = send(client, auth_headers, "hi")

        assert events[-1][0] == "done"
        assert done["stage"] == "greeting"
        assert done["transition"]["kind"] == "service_unavailable"

    def test_reuses_latest_conversation(self, client, auth_headers):
        first, _, _ = send(client, auth_headers, "hi")
        second, _, _ = send(client, auth_headers, "hello again")
        assert first.headers["x-conversation-id"] == second.headers["x-conversation-id"]


class TestFullCycle:
    def test_check_in_extracted_across_two_messages(self, client, auth_headers, fake_llm, db_session, test_user):
        fake_llm.queue("detection", detection(1))
        response, _, _ = send(client, auth_headers, "hi")
        conversation_id = response.headers["x-conversation-id"]

        # one user turn in check_in: below the minimum, detector not consulted
        calls_before = len(fake_llm.calls)
        _, _, done = send(client, auth_headers, "I'm feeling calm and I slept great, like a 5", conversation_id)
        assert done["stage"] == "check_in"
        assert done["transition"]["kind"] == "below_minimum"
        assert done["extraction"]["status"] == "insufficient"
        assert "detection" not in fake_llm.calls[calls_before:]

        fake_llm.queue("check_in", CHECK_IN_COMPLETE)
        fake_llm.queue("detection", detection(1, 2, 3))
        _, _, done = send(client, auth_headers, "My energy is pretty low though, maybe a 2", conversation_id)

        assert done["stage"] == "journal_prompt"
        assert done["extraction"]["status"] == "created"

        check_in = db_session.query(CheckIn).filter(CheckIn.user_id == test_user.id).one()
        assert (check_in.mood, check_in.sleep_quality, check_in.energy_level) == ("calm", 5, 2)
        assert check_in.intentions == "No specific intentions set"
        assert str(check_in.conversation_id) == conversation_id

        # the extractor saw both check-in messages
        prompt = fake_llm.prompts["check_in"][-1]
        assert "slept great" in prompt
        assert "energy is pretty low" in prompt

        # achievement evaluation ran after the turn
        types = {m.type for m in db_session.query(Milestone).filter(Milestone.user_id == test_user.id)}
        assert "first_check_in" in types

    def test_declining_to_journal_moves_on(self, client, auth_headers, fake_llm, db_session, test_user):
        fake_llm.queue("detection", detection(1))
        response, _, _ = send(client, auth_headers, "hi")
        conversation_id = response.headers["x-conversation-id"]
        send(client, auth_headers, "feeling calm, slept 4 out of 5", conversation_id)
        fake_llm.queue("check_in", CHECK_IN_COMPLETE)
        fake_llm.queue("detection", detection(1, 2, 3))
        send(client, auth_headers, "energy 2, I want to rest", conversation_id)

        fake_llm.queue("detection", detection(2, reasoning="User postponed journaling"))
        _, _, done = send(client, auth_headers, "not now, maybe later", conversation_id)

        assert done["previous_stage"] == "journal_prompt"
        assert done["stage"] == "affirmation"
        assert done["extraction"]["status"] == "insufficient"
        assert db_session.query(JournalEntry).filter(JournalEntry.user_id == test_user.id).count() == 0

    def test_seven_day_streak_unlocks_achievement(self, client, auth_headers, fake_llm, db_session, test_user):
        now = utcnow()
        for days_ago in range(1, 7):
            db_session.add(CheckIn(
                user_id=test_user.id, mood="calm", sleep_quality=3, energy_level=3,
                created_at=now - timedelta(days=days_ago),
            ))
        db_session.commit()

        fake_llm.queue("detection", detection(1))
        response, _, _ = send(client, auth_headers, "hi")
        conversation_id = response.headers["x-conversation-id"]
        send(client, auth_headers, "calm, slept 5", conversation_id)
        fake_llm.queue("check_in", CHECK_IN_COMPLETE)
        send(client, auth_headers, "energy about 2", conversation_id)

        db_session.expire_all()
        streak = (
            db_session.query(Milestone)
            .filter(Milestone.user_id == test_user.id, Milestone.type == "check_in_streak_7")
            .one()
        )
        assert streak.unlocked is True
        assert streak.progress == 100


class TestFailures:
    def test_reply_failure_keeps_user_message(self, client, auth_headers, fake_llm, db_session):
        fake_llm.queue_reply(TextGenerationError("model overloaded"))
        response, events, last = send(client, auth_headers, "hi")

        assert [name for name, _ in events] == ["meta", "error"]
        assert last["message"] == "Reply generation failed"

        history = client.get(
            f"/v1/conversations/{response.headers['x-conversation-id']}/messages", headers=auth_headers
        ).json()
        assert [(m["role"], m["content"]) for m in history] == [("user", "hi")]
        assert "detection" not in fake_llm.calls

    def test_empty_reply_is_an_error(self, client, auth_headers, fake_llm):
        fake_llm.queue_reply("   ")
        _, events, last = send(client, auth_headers, "hi")
        assert events[-1][0] == "error"

    def test_foreign_conversation_is_404(self, client, auth_headers, other_user, db_session):
        theirs = conversation_service.create_conversation(db_session, other_user.id)
        db_session.commit()

        response = client.post(
            "/v1/chat", json={"message": "hi", "conversation_id": str(theirs.id)}, headers=auth_headers
        )
        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"
        assert db_session.query(Message).filter(Message.conversation_id == theirs.id).count() == 0

    def test_blank_message_is_rejected(self, client, auth_headers):
        response = client.post("/v1/chat", json={"message": ""}, headers=auth_headers)
        assert response.status_code == 422

    def test_requires_auth(self, client):
        response = client.post("/v1/chat", json={"message": "hi"})
        assert response.status_code == 401


class TestStageEndpoints:
    def test_stage_without_conversation(self, client, auth_headers):
        body = client.get("/v1/chat/stage", headers=auth_headers).json()
        assert body["stage"] == "greeting"
        assert body["conversation_id"] is None
        assert body["suggested_replies"][0]["text"] == "Yes, let's check in"

    def test_stage_after_transition(self, client, auth_headers, fake_llm):
        fake_llm.queue("detection", detection(1))
        response, _, _ = send(client, auth_headers, "hi")

        body = client.get(
            "/v1/chat/stage", params={"conversation_id": response.headers["x-conversation-id"]},
            headers=auth_headers,
        ).json()
        assert body["stage"] == "check_in"
        assert body["conversation_id"] == response.headers["x-conversation-id"]

    def test_stage_catalog(self, client):
        stages = client.get("/v1/chat/stages").json()
        assert [s["stage"] for s in stages] == [
            "greeting", "check_in", "journal_prompt", "affirmation", "reflection", "milestone_review",
        ]

    def test_new_user_is_synced_from_token(self, client, auth_headers_for):
        headers = auth_headers_for("idp|brand-new", name="New Person", email="new@example.com")
        body = client.get("/v1/chat/stage", headers=headers).json()
        assert body["stage"] == "greeting"


@pytest.mark.asyncio
async def test_concurrent_turns_are_serialized(db_session, test_user, fake_llm):
    conversation = conversation_service.create_conversation(db_session, test_user.id)
    db_session.commit()
    # Both turns would pass the greeting rule if they raced
    fake_llm.queue("detection", detection(1))
    fake_llm.queue("detection", detection(1))

    async def run(text):
        return [chunk async for chunk in stream_turn(test_user.id, conversation.id, text, fake_llm)]

    first, second = await asyncio.gather(run("hi"), run("hello"))
    done = [parse_sse(b"".join(chunks).decode())[-1][1] for chunks in (first, second)]

    assert [d["previous_stage"] for d in done] == ["greeting", "check_in"]
    assert [d["stage"] for d in done] == ["check_in", "check_in"]
    # the second turn is the only user turn in check_in so far
    assert done[1]["transition"]["kind"] == "below_minimum"

    db_session.expire_all()
    stored = db_session.get(Conversation, conversation.id)
    assert (stored.stage, stored.version) == ("check_in", 2)
    messages = conversation_service.list_messages(db_session, test_user.id, conversation.id)
    assert [m.role for m in messages] == ["user", "assistant", "user", "assistant"]
