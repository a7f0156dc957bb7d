"""
Rate Limiting Middleware

Fixed-window counters in Redis, per user (or client IP) and per endpoint.
Chat turns hit the text-generation service several times each, so they get a
tighter limit than the CRUD endpoints.
"""
import time
import logging
from typing import Dict, Tuple
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from core.config import settings
from core.redis_client import get_redis_client

logger = logging.getLogger(__name__)

EXEMPT_PATHS = ("/health", "/ping", "/docs", "/openapi.json", "/redoc")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limiting middleware."""

    def __init__(self, app, default_limit: int = 60, window: int = 60):
        super().__init__(app)
        self.default_limit = default_limit
        self.window = window  # Time window in seconds

        # Per-endpoint limits (requests per window)
        self.endpoint_limits: Dict[str, int] = {
            "/v1/chat/stage": default_limit,
            "/v1/chat/stages": default_limit,
            "/v1/chat": settings.CHAT_RATE_LIMIT_PER_MINUTE,
            "/v1/milestones/check": 10,
        }

    async def dispatch(self, request: Request, call_next):
        if not settings.RATE_LIMIT_ENABLED:
            return await call_next(request)

        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        user_id = self._get_user_id(request)
        limit = self._get_endpoint_limit(request.url.path)

        allowed, remaining, reset_time = self._check_rate_limit(
            user_id=user_id,
            endpoint=request.url.path,
            limit=limit,
            window=self.window
        )

        if not allowed:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "detail": "Rate limit exceeded",
                    "limit": limit,
                    "window": self.window,
                    "reset_at": reset_time
                },
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": str(remaining),
                    "X-RateLimit-Reset": str(reset_time),
                    "Retry-After": str(max(0, int(reset_time - time.time())))
                }
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_time)
        return response

    def _get_user_id(self, request: Request) -> str:
        """Get user identifier from request (user ID or IP address)."""
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            from core.security import get_user_id_from_token
            subject = get_user_id_from_token(auth_header.split(" ", 1)[1])
            if subject:
                return f"user:{subject}"

        client_ip = request.client.host if request.client else "unknown"
        return f"ip:{client_ip}"

    def _get_endpoint_limit(self, path: str) -> int:
        """Get rate limit for endpoint (exact match, then longest prefix)."""
        if path in self.endpoint_limits:
            return self.endpoint_limits[path]

        for endpoint in sorted(self.endpoint_limits, key=len, reverse=True):
            if path.startswith(endpoint + "/"):
                return self.endpoint_limits[endpoint]

        return self.default_limit

    def _check_rate_limit(
        self,
        user_id: str,
        endpoint: str,
        limit: int,
        window: int
    ) -> Tuple[bool, int, int]:
        """
        Returns:
            (allowed, remaining, reset_time)
        """
        redis_client = get_redis_client()

        if not redis_client:
            # If Redis unavailable, allow request (graceful degradation)
            return True, limit, int(time.time()) + window

        key = f"rate_limit:{user_id}:{endpoint}"

        try:
            new_count = redis_client.incr(key)
            if new_count == 1:
                redis_client.expire(key, window)

            ttl = redis_client.ttl(key)
            reset_time = int(time.time()) + (ttl if ttl > 0 else window)

            if new_count > limit:
                return False, 0, reset_time
            return True, max(0, limit - new_count), reset_time

        except Exception as e:
            # On error, allow request (fail open)
            logger.error(f"Rate limit check error: {e}")
            return True, limit, int(time.time()) + window
