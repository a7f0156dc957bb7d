"""
Rate limiter behavior without a live Redis.
"""
import pytest

from core import rate_limit
from core.config import settings
from core.rate_limit import RateLimitMiddleware


class _CountingRedis:
    def __init__(self):
        self.counts = {}
        self.expiries = {}

    def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    def expire(self, key, seconds):
        self.expiries[key] = seconds

    def ttl(self, key):
        return self.expiries.get(key, -1)


class _BrokenRedis:
    def incr(self, key):
        raise RuntimeError("connection reset")


@pytest.fixture
def limiter():
    return RateLimitMiddleware(app=None, default_limit=60, window=60)


def test_chat_turns_get_the_tighter_limit(limiter):
    assert limiter._get_endpoint_limit("/v1/chat") == settings.CHAT_RATE_LIMIT_PER_MINUTE
    assert limiter._get_endpoint_limit("/v1/chat/stage") == 60
    assert limiter._get_endpoint_limit("/v1/milestones/check") == 10
    assert limiter._get_endpoint_limit("/v1/journal/search") == 60


def test_fails_open_without_redis(limiter, monkeypatch):
    monkeypatch.setattr(rate_limit, "get_redis_client", lambda: None)
    allowed, remaining, _ = limiter._check_rate_limit("user:a", "/v1/chat", limit=2, window=60)
    assert allowed is True
    assert remaining == 2


def test_fails_open_on_redis_errors(limiter, monkeypatch):
    monkeypatch.setattr(rate_limit, "get_redis_client", lambda: _BrokenRedis())
    allowed, _, _ = limiter._check_rate_limit("user:a", "/v1/chat", limit=2, window=60)
    assert allowed is True


def test_blocks_after_limit_per_user(limiter, monkeypatch):
    redis = _CountingRedis()
    monkeypatch.setattr(rate_limit, "get_redis_client", lambda: redis)

    results = [limiter._check_rate_limit("user:a", "/v1/chat", limit=2, window=60) for _ in range(3)]
    assert [allowed for allowed, _, _ in results] == [True, True, False]
    assert [remaining for _, remaining, _ in results] == [1, 0, 0]
    assert redis.expiries == {"rate_limit:user:a:/v1/chat": 60}

    # another user has their own window
    allowed, _, _ = limiter._check_rate_limit("user:b", "/v1/chat", limit=2, window=60)
    assert allowed is True
