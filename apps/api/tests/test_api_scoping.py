"""
API tests for conversations, messages, check-ins, journal and milestones.

Every record is owned: another user's id behaves exactly like a missing one.
"""
from datetime import timedelta
from uuid import uuid4

import pytest

from models import CheckIn, Milestone, utcnow
from services import conversations as conversation_service


REFLECTION = "Today I noticed I was kinder to myself after a hard meeting, and that felt new."


@pytest.fixture
def other_headers(other_user, auth_headers_for):
    return auth_headers_for(other_user.id)


class TestAuth:
    @pytest.mark.parametrize("path", [
        "/v1/conversations", "/v1/messages", "/v1/check-ins", "/v1/journal", "/v1/milestones", "/v1/chat/stage",
    ])
    def test_requires_token(self, client, path):
        assert client.get(path).status_code == 401

    def test_rejects_bad_token(self, client):
        response = client.get("/v1/check-ins", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_health(self, client):
        assert client.get("/ping").json() == {"pong": True}
        assert client.get("/health").json()["status"] == "healthy"

    def test_detailed_health_without_redis(self, client, monkeypatch):
        import main
        monkeypatch.setattr(main, "get_redis_client", lambda: None)

        body = client.get("/health/detailed").json()
        assert body["status"] == "degraded"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["redis"]["status"] == "unavailable"
        assert body["text_generation"] == "not_configured"
        assert body["achievement_tasks"] == "inline"


class TestConversationsApi:
    def test_create_list_rename(self, client, auth_headers):
        created = client.post("/v1/conversations", json={}, headers=auth_headers)
        assert created.status_code == 201
        body = created.json()
        assert body["stage"] == "greeting"
        assert body["title"] == "New Conversation"

        renamed = client.patch(
            f"/v1/conversations/{body['id']}", json={"title": "Evening"}, headers=auth_headers
        )
        assert renamed.json()["title"] == "Evening"

        listed = client.get("/v1/conversations", headers=auth_headers).json()
        assert [c["id"] for c in listed] == [body["id"]]

    def test_other_users_conversation(self, client, auth_headers, other_headers):
        conversation_id = client.post("/v1/conversations", json={}, headers=auth_headers).json()["id"]

        assert client.get(f"/v1/conversations/{conversation_id}", headers=other_headers).status_code == 404
        assert client.get(f"/v1/conversations/{conversation_id}/messages", headers=other_headers).status_code == 404
        assert client.patch(
            f"/v1/conversations/{conversation_id}", json={"title": "x"}, headers=other_headers
        ).status_code == 404
        assert client.get("/v1/conversations", headers=other_headers).json() == []

    def test_blank_title_rejected(self, client, auth_headers):
        conversation_id = client.post("/v1/conversations", json={}, headers=auth_headers).json()["id"]
        response = client.patch(f"/v1/conversations/{conversation_id}", json={"title": " "}, headers=auth_headers)
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR_TITLE"


class TestMessagesApi:
    def test_history_creates_conversation_on_first_visit(self, client, auth_headers):
        first = client.get("/v1/messages", headers=auth_headers).json()
        again = client.get("/v1/messages", headers=auth_headers).json()
        assert first["messages"] == []
        assert first["conversation_id"] == again["conversation_id"]

    def test_append_and_read_back(self, client, auth_headers):
        conversation_id = client.get("/v1/messages", headers=auth_headers).json()["conversation_id"]
        for role, content in [("assistant", "Welcome!"), ("user", "hi there")]:
            response = client.post(
                "/v1/messages",
                json={"conversation_id": conversation_id, "role": role, "content": content},
                headers=auth_headers,
            )
            assert response.status_code == 201

        history = client.get("/v1/messages", params={"conversation_id": conversation_id}, headers=auth_headers)
        assert [m["content"] for m in history.json()["messages"]] == ["Welcome!", "hi there"]

    def test_append_to_other_users_conversation(self, client, db_session, test_user, other_headers):
        conversation = conversation_service.create_conversation(db_session, test_user.id)
        db_session.commit()
        response = client.post(
            "/v1/messages",
            json={"conversation_id": str(conversation.id), "role": "user", "content": "sneaky"},
            headers=other_headers,
        )
        assert response.status_code == 404

    def test_invalid_role(self, client, auth_headers):
        conversation_id = client.get("/v1/messages", headers=auth_headers).json()["conversation_id"]
        response = client.post(
            "/v1/messages",
            json={"conversation_id": conversation_id, "role": "system", "content": "x"},
            headers=auth_headers,
        )
        assert response.status_code == 422


class TestCheckInsApi:
    def test_create_and_read(self, client, auth_headers):
        response = client.post(
            "/v1/check-ins",
            json={"mood": "hopeful", "sleep_quality": 4, "energy_level": 3, "intentions": "call a friend"},
            headers=auth_headers,
        )
        assert response.status_code == 201
        check_in_id = response.json()["id"]

        assert client.get(f"/v1/check-ins/{check_in_id}", headers=auth_headers).json()["mood"] == "hopeful"
        assert client.get("/v1/check-ins/today", headers=auth_headers).json() == {"has_checked_in_today": True}

        stats = client.get("/v1/check-ins/stats", headers=auth_headers).json()
        assert stats["total"] == 1
        assert stats["current_streak"] == 1

    @pytest.mark.parametrize("sleep", [0, 6])
    def test_out_of_range(self, client, auth_headers, sleep):
        response = client.post(
            "/v1/check-ins",
            json={"mood": "ok", "sleep_quality": sleep, "energy_level": 3},
            headers=auth_headers,
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR_SLEEP_QUALITY"

    def test_other_users_check_in(self, client, auth_headers, other_headers):
        check_in_id = client.post(
            "/v1/check-ins", json={"mood": "ok", "sleep_quality": 3, "energy_level": 3}, headers=auth_headers
        ).json()["id"]
        assert client.get(f"/v1/check-ins/{check_in_id}", headers=other_headers).status_code == 404
        assert client.get("/v1/check-ins", headers=other_headers).json() == []

    def test_date_range(self, client, auth_headers, db_session, test_user):
        now = utcnow()
        for days_ago in (0, 3, 10):
            db_session.add(CheckIn(
                user_id=test_user.id, mood="calm", sleep_quality=3, energy_level=3,
                created_at=now - timedelta(days=days_ago),
            ))
        db_session.commit()

        today = now.date()
        rows = client.get(
            "/v1/check-ins",
            params={"start": str(today - timedelta(days=5)), "end": str(today)},
            headers=auth_headers,
        ).json()
        assert len(rows) == 2

    def test_seventh_consecutive_day_unlocks_streak(self, client, auth_headers, db_session, test_user):
        now = utcnow()
        for days_ago in range(1, 7):
            db_session.add(CheckIn(
                user_id=test_user.id, mood="calm", sleep_quality=3, energy_level=3,
                created_at=now - timedelta(days=days_ago),
            ))
        db_session.commit()

        client.post(
            "/v1/check-ins", json={"mood": "proud", "sleep_quality": 4, "energy_level": 4}, headers=auth_headers
        )

        milestones = client.get("/v1/milestones", params={"type": "check_in_streak_7"}, headers=auth_headers).json()
        assert len(milestones) == 1
        assert milestones[0]["unlocked"] is True


class TestJournalApi:
    def test_crud(self, client, auth_headers):
        created = client.post("/v1/journal", json={"content": REFLECTION}, headers=auth_headers)
        assert created.status_code == 201
        entry = created.json()
        assert entry["word_count"] == len(REFLECTION.split())
        assert entry["title"] == REFLECTION[:60] + "..."

        updated = client.patch(f"/v1/journal/{entry['id']}", json={"title": "Kinder"}, headers=auth_headers)
        assert updated.json()["title"] == "Kinder"

        insights = client.put(
            f"/v1/journal/{entry['id']}/insights", json={"insights": {"tone": "gentle"}}, headers=auth_headers
        )
        assert insights.json()["ai_insights"] == {"tone": "gentle"}

        found = client.get("/v1/journal/search", params={"q": "KINDER"}, headers=auth_headers).json()
        assert [e["id"] for e in found] == [entry["id"]]

        assert client.delete(f"/v1/journal/{entry['id']}", headers=auth_headers).status_code == 204
        assert client.get(f"/v1/journal/{entry['id']}", headers=auth_headers).status_code == 404

    def test_too_short(self, client, auth_headers):
        response = client.post("/v1/journal", json={"content": "meh"}, headers=auth_headers)
        assert response.status_code == 422

    def test_other_users_entry(self, client, auth_headers, other_headers):
        entry_id = client.post("/v1/journal", json={"content": REFLECTION}, headers=auth_headers).json()["id"]
        assert client.get(f"/v1/journal/{entry_id}", headers=other_headers).status_code == 404
        assert client.delete(f"/v1/journal/{entry_id}", headers=other_headers).status_code == 404
        assert client.get(f"/v1/journal/{entry_id}", headers=auth_headers).status_code == 200

    def test_first_entry_unlocks_achievement(self, client, auth_headers):
        client.post("/v1/journal", json={"content": REFLECTION}, headers=auth_headers)
        types = [m["type"] for m in client.get("/v1/milestones", headers=auth_headers).json()]
        assert types == ["first_journal"]

    def test_stats(self, client, auth_headers):
        client.post("/v1/journal", json={"content": REFLECTION}, headers=auth_headers)
        stats = client.get("/v1/journal/stats", headers=auth_headers).json()
        assert stats["total"] == 1
        assert stats["current_streak"] == 1

    def test_today(self, client, auth_headers, other_headers):
        assert client.get("/v1/journal/today", headers=auth_headers).json() == {"has_journaled_today": False}
        client.post("/v1/journal", json={"content": REFLECTION}, headers=auth_headers)
        assert client.get("/v1/journal/today", headers=auth_headers).json() == {"has_journaled_today": True}
        assert client.get("/v1/journal/today", headers=other_headers).json() == {"has_journaled_today": False}


class TestMilestonesApi:
    def test_create_progress_unlock(self, client, auth_headers):
        created = client.post(
            "/v1/milestones", json={"type": "walks_30", "name": "30 walks", "progress": 20}, headers=auth_headers
        )
        assert created.status_code == 201
        milestone_id = created.json()["id"]

        progressed = client.patch(
            f"/v1/milestones/{milestone_id}/progress", json={"progress": 100}, headers=auth_headers
        ).json()
        assert progressed["unlocked"] is True
        assert progressed["unlocked_at"] is not None

        stats = client.get("/v1/milestones/stats", headers=auth_headers).json()
        assert stats == {"total": 1, "unlocked": 1, "in_progress": 0, "percentage_complete": 100}

    def test_duplicate_type_conflicts(self, client, auth_headers):
        body = {"type": "walks_30", "name": "30 walks"}
        assert client.post("/v1/milestones", json=body, headers=auth_headers).status_code == 201
        duplicate = client.post("/v1/milestones", json=body, headers=auth_headers)
        assert duplicate.status_code == 409
        assert duplicate.json()["error_code"] == "CONFLICT"

    def test_progress_out_of_range(self, client, auth_headers):
        milestone_id = client.post(
            "/v1/milestones", json={"type": "t", "name": "n"}, headers=auth_headers
        ).json()["id"]
        response = client.patch(
            f"/v1/milestones/{milestone_id}/progress", json={"progress": 150}, headers=auth_headers
        )
        assert response.status_code == 422

    def test_check_is_idempotent(self, client, auth_headers, db_session, test_user):
        db_session.add(CheckIn(user_id=test_user.id, mood="calm", sleep_quality=3, energy_level=3, created_at=utcnow()))
        db_session.commit()

        first = client.post("/v1/milestones/check", headers=auth_headers).json()
        second = client.post("/v1/milestones/check", headers=auth_headers).json()
        assert [m["type"] for m in first["created"]] == ["first_check_in"]
        assert second["created"] == []
        db_session.expire_all()
        assert db_session.query(Milestone).filter(Milestone.user_id == test_user.id).count() == 1

    def test_other_users_milestone(self, client, auth_headers, other_headers):
        milestone_id = client.post(
            "/v1/milestones", json={"type": "t", "name": "n"}, headers=auth_headers
        ).json()["id"]
        assert client.post(f"/v1/milestones/{milestone_id}/unlock", headers=other_headers).status_code == 404
        assert client.delete(f"/v1/milestones/{milestone_id}", headers=other_headers).status_code == 404
        assert client.get(f"/v1/milestones/{uuid4()}", headers=auth_headers).status_code == 404
