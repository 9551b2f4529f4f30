"""
API envelope and infrastructure tests.

Tests:
- Envelope shape (success/error)
- requestId on every response
- Rate limiting per tier (transition endpoints are stricter)
- Health check endpoint
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from services.api.config import settings
from services.api.middleware.rate_limit import _bucket_key, _get_rate_limit
from services.api.middleware.sentry import _strip_sensitive_data


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

class TestHealthEndpoint:
    """GET /health returns envelope with status and version."""

    @pytest.mark.asyncio
    async def test_health_returns_200(self, client):
        response = await client.get("/health")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_health_envelope_shape(self, client):
        response = await client.get("/health")
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "healthy"
        assert body["data"]["service"] == settings.app_name
        assert "version" in body["data"]

    @pytest.mark.asyncio
    async def test_health_has_request_id(self, client):
        response = await client.get("/health")
        assert "x-request-id" in response.headers


# ---------------------------------------------------------------------------
# Envelope shape
# ---------------------------------------------------------------------------

class TestAPIEnvelope:
    """All responses follow {success, data|error, requestId} shape."""

    @pytest.mark.asyncio
    async def test_404_error_envelope(self, client):
        response = await client.get("/nonexistent-route")
        body = response.json()
        assert response.status_code == 404
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_FOUND"
        assert "message" in body["error"]
        assert "requestId" in body

    @pytest.mark.asyncio
    async def test_missing_user_header_is_422(self, client):
        response = await client.post("/trips/t1/cancel")
        body = response.json()
        assert response.status_code == 422
        assert body["success"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_custom_request_id_header(self, client):
        custom_id = "test-req-12345"
        response = await client.get("/health", headers={"x-request-id": custom_id})
        assert response.headers["x-request-id"] == custom_id
        assert response.json()["requestId"] == custom_id

    @pytest.mark.asyncio
    async def test_request_id_on_engine_error(self, client):
        response = await client.get("/trips/missing/schedule", headers={"x-request-id": "req-9"})
        body = response.json()
        assert response.status_code == 404
        assert body["requestId"] == "req-9"


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

class TestRateLimitTiers:
    def test_transition_endpoints_use_transition_tier(self):
        for action in ("lock", "cancel", "open-voting", "complete"):
            limit, tier = _get_rate_limit("POST", f"/trips/t1/{action}", True)
            assert tier == "transition"
            assert limit == settings.rate_limit_transition_per_min

    def test_reads_use_auth_tier(self):
        assert _get_rate_limit("GET", "/trips/t1/schedule", True)[1] == "auth"

    def test_anonymous_tier(self):
        assert _get_rate_limit("POST", "/trips/t1/date-picks", False)[1] == "anon"

    def test_transition_bucket_is_per_trip(self):
        def key(path):
            request = MagicMock()
            request.method = "POST"
            request.url.path = path
            request.headers = {"x-user-id": "u1"}
            return _bucket_key(request)[0]

        assert key("/trips/t1/lock") == "ratelimit:transition:t1:user:u1"
        assert key("/trips/t1/lock") != key("/trips/t2/lock")
        assert key("/trips/t1/vote") == "ratelimit:auth:user:u1"


class TestRateLimiting:
    """Rate limiter returns 429 when limit exceeded."""

    @pytest.mark.asyncio
    async def test_over_limit_returns_429(self, client, mock_redis):
        mock_redis.pipeline.return_value.execute = AsyncMock(
            return_value=[None, settings.rate_limit_transition_per_min, None, None]
        )
        with patch.dict("services.api.main._redis_holder", {"client": mock_redis}):
            response = await client.post("/trips/t1/lock", headers={"X-User-Id": "u1"}, json={})
        body = response.json()
        assert response.status_code == 429
        assert body["error"]["code"] == "RATE_LIMITED"
        assert response.headers["retry-after"] == "60"

    @pytest.mark.asyncio
    async def test_under_limit_sets_headers(self, client, mock_redis):
        with patch.dict("services.api.main._redis_holder", {"client": mock_redis}):
            response = await client.get("/trips/missing/schedule", headers={"X-User-Id": "u1"})
        assert response.headers["x-ratelimit-limit"] == str(settings.rate_limit_auth_per_min)

    @pytest.mark.asyncio
    async def test_rate_limit_degrades_gracefully_without_redis(self, client):
        """Without Redis, rate limiting is bypassed (requests pass through)."""
        with patch.dict("services.api.main._redis_holder", {"client": None}):
            response = await client.get("/trips/missing/schedule")
        assert response.status_code == 404
        assert "x-ratelimit-limit" not in response.headers


# ---------------------------------------------------------------------------
# Sentry scrubbing
# ---------------------------------------------------------------------------

class TestSentryScrubbing:
    def test_sensitive_headers_filtered(self):
        event = {
            "request": {"headers": {"Authorization": "Bearer x", "X-User-Id": "u1", "X-Scheduler-Key": "k", "Accept": "*/*"}},
            "breadcrumbs": {"values": [{"data": {"headers": {"Cookie": "sid=1"}}}]},
        }
        scrubbed = _strip_sensitive_data(event, MagicMock())
        assert scrubbed["request"]["headers"]["Authorization"] == "[FILTERED]"
        assert scrubbed["request"]["headers"]["X-User-Id"] == "[FILTERED]"
        assert scrubbed["request"]["headers"]["X-Scheduler-Key"] == "[FILTERED]"
        assert scrubbed["request"]["headers"]["Accept"] == "*/*"
        assert scrubbed["breadcrumbs"]["values"][0]["data"]["headers"]["Cookie"] == "[FILTERED]"
