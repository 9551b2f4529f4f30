"""
Sliding-window rate limiter on Redis sorted sets.

Tiers (per minute):
  anon        -- no X-User-Id, keyed by client IP
  auth        -- every other call from a known member
  transition  -- POST open-voting / lock / cancel / complete, keyed per trip and user

Transition calls get their own bucket so a leader hammering lock cannot starve
their own reads, and a retry storm on one trip does not block another.
"""

import re
import time
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from services.api.config import settings

TRANSITION_PATH = re.compile(r"^/trips/(?P<trip_id>[^/]+)/(open-voting|lock|cancel|complete)$")

WINDOW_SECONDS = 60


def _transition_trip(method: str, path: str) -> Optional[str]:
    if method != "POST":
        return None
    match = TRANSITION_PATH.match(path)
    return match.group("trip_id") if match else None


def _get_rate_limit(method: str, path: str, is_authenticated: bool) -> tuple[int, str]:
    """(limit_per_min, tier) for a request."""
    if _transition_trip(method, path) is not None:
        return settings.rate_limit_transition_per_min, "transition"
    if is_authenticated:
        return settings.rate_limit_auth_per_min, "auth"
    return settings.rate_limit_anon_per_min, "anon"


def _get_client_key(request: Request) -> tuple[str, bool]:
    """(bucket identity, is_authenticated). X-User-Id comes from the BFF."""
    user_id = request.headers.get("x-user-id")
    if user_id:
        return f"user:{user_id}", True
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}", False
    return f"ip:{request.client.host if request.client else 'unknown'}", False


def _bucket_key(request: Request) -> tuple[str, int, str]:
    client_key, is_authenticated = _get_client_key(request)
    limit, tier = _get_rate_limit(request.method, request.url.path, is_authenticated)
    trip_id = _transition_trip(request.method, request.url.path)
    scope = f"{trip_id}:{client_key}" if trip_id else client_key
    return f"ratelimit:{tier}:{scope}", limit, tier


def _limited(request: Request, limit: int, tier: str, headers: dict[str, str]) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Too many requests: {limit} per minute allowed on the {tier} tier.",
            },
            "requestId": getattr(request.state, "request_id", ""),
        },
        headers={**headers, "Retry-After": str(WINDOW_SECONDS)},
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, redis_client=None):
        super().__init__(app)
        self.redis = redis_client

    async def _count_and_record(self, key: str, now: float, marker: str) -> int:
        """Drop expired entries, count what is left, then record this call."""
        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(key, 0, now - WINDOW_SECONDS)
        pipe.zcard(key)
        pipe.zadd(key, {marker: now})
        pipe.expire(key, WINDOW_SECONDS * 2)
        _, seen, _, _ = await pipe.execute()
        return seen

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # No Redis (or a health check): let everything through.
        if self.redis is None or request.url.path == "/health":
            return await call_next(request)

        key, limit, tier = _bucket_key(request)
        now = time.time()
        seen = await self._count_and_record(key, now, f"{now}:{id(request)}")

        headers = {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(max(0, limit - seen - 1)),
            "X-RateLimit-Reset": str(int(now + WINDOW_SECONDS)),
        }
        if seen >= limit:
            return _limited(request, limit, tier, headers)

        response = await call_next(request)
        response.headers.update(headers)
        return response
