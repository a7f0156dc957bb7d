"""
Pytest configuration and fixtures

Tests run against a throwaway SQLite database migrated to Alembic head.
The chat turn and the achievement task open their own sessions, so rows must
really be committed to be visible to them: instead of transactional rollback,
every table is emptied after each test.
"""
import pytest
import sys
import os
import tempfile
from collections import deque
from uuid import uuid4

# Configure before anything imports core.config
_DB_DIR = tempfile.mkdtemp(prefix="recovery_companion_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters-long")
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"
os.environ["GOOGLE_AI_API_KEY"] = ""

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture(scope="session", autouse=True)
def _ensure_db_schema_is_at_head():
    """Migrate the test database to Alembic head once per session."""
    try:
        from run_migrations import alembic_upgrade_head

        alembic_upgrade_head()
    except Exception as e:
        # Tests should fail loudly if migrations cannot be applied.
        raise RuntimeError(f"Failed to upgrade DB to Alembic head: {e}") from e


from core.database import SessionLocal  # noqa: E402
from core.security import create_access_token  # noqa: E402
from models import CheckIn, Conversation, JournalEntry, Message, Milestone, User  # noqa: E402
from services.companion.detection import STAGE_COMPLETION_RESPONSE_SCHEMA  # noqa: E402
from services.companion.extraction import CHECK_IN_RESPONSE_SCHEMA, JOURNAL_RESPONSE_SCHEMA  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    db = SessionLocal()
    try:
        # Children first; FKs are enforced on SQLite too
        for model in (Milestone, JournalEntry, CheckIn, Message, Conversation, User):
            db.query(model).delete()
        db.commit()
    finally:
        db.close()


@pytest.fixture(scope="function")
def db_session():
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def test_user(db_session):
    user = User(id=f"user_{uuid4().hex[:12]}", display_name="Test User", email="test@example.com")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def other_user(db_session):
    user = User(id=f"user_{uuid4().hex[:12]}", display_name="Other User", email="other@example.com")
    db_session.add(user)
    db_session.commit()
    return user


def make_auth_headers(user_id: str, **claims) -> dict:
    token = create_access_token({"sub": user_id, **claims})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(test_user):
    return make_auth_headers(test_user.id)


@pytest.fixture
def auth_headers_for():
    return make_auth_headers


class FakeTextGenerationClient:
    """
    Scripted stand-in for TextGenerationClient.

    Replies and extraction responses are queued per call type; a queued
    Exception instance is raised instead of returned. Empty queues fall back
    to "nothing detected" defaults.
    """

    DEFAULT_REPLY = "I'm here with you. How are you feeling today?"
    DEFAULTS = {
        "detection": '{"criteria_met": [], "should_transition": false, "reasoning": "nothing yet"}',
        "check_in": (
            '{"mood": null, "sleep_quality": null, "energy_level": null, "intentions": null, '
            '"has_all_required_data": false, "confidence": 10}'
        ),
        "journal": (
            '{"has_journal_content": false, "title": null, "content": null, "word_count": 0, '
            '"is_reflective": false, "confidence": 90}'
        ),
    }

    def __init__(self):
        self.replies = deque()
        self.responses = {kind: deque() for kind in self.DEFAULTS}
        self.calls = []
        self.prompts = {kind: [] for kind in self.DEFAULTS}
        self.system_prompts = []

    def queue_reply(self, reply):
        self.replies.append(reply)

    def queue(self, kind: str, response):
        self.responses[kind].append(response)

    @staticmethod
    def _kind(schema) -> str:
        if schema is STAGE_COMPLETION_RESPONSE_SCHEMA:
            return "detection"
        if schema is CHECK_IN_RESPONSE_SCHEMA:
            return "check_in"
        if schema is JOURNAL_RESPONSE_SCHEMA:
            return "journal"
        raise AssertionError("unexpected response schema")

    async def stream_reply(self, system_prompt, history):
        self.calls.append("reply")
        self.system_prompts.append(system_prompt)
        reply = self.replies.popleft() if self.replies else self.DEFAULT_REPLY
        if isinstance(reply, Exception):
            raise reply
        for i in range(0, len(reply), 16):
            yield reply[i:i + 16]

    async def extract(self, prompt, response_schema, temperature=0.1):
        kind = self._kind(response_schema)
        self.calls.append(kind)
        self.prompts[kind].append(prompt)
        queue = self.responses[kind]
        response = queue.popleft() if queue else self.DEFAULTS[kind]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fake_llm():
    return FakeTextGenerationClient()


@pytest.fixture
def client(fake_llm):
    from fastapi.testclient import TestClient
    from main import app
    from services.llm_client import get_text_generation_client

    app.dependency_overrides[get_text_generation_client] = lambda: fake_llm
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
