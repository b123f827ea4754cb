"""
Unit tests for rate limiting functionality
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi import Depends, FastAPI, HTTPException
from starlette.requests import Request
from httpx import AsyncClient, ASGITransport

from core.rate_limit import (
    RATE_LIMIT_CONFIG,
    BackoffMiddleware,
    ExponentialBackoff,
    RateLimiter,
    RateLimitMiddleware,
    classify_request,
    get_limiter,
    get_rate_limit_config,
    rate_limit,
)
from core.config import settings
from core.security import create_access_token
from services.rate_limit_service import RateLimitMonitor, rate_limit_monitor


class TestRateLimitConfig:
    """Limit resolution per endpoint type and role"""

    def test_api_subtypes(self):
        assert get_rate_limit_config("api", "read")["max"] == 200
        assert get_rate_limit_config("api", "write")["max"] == 50

    def test_admin_role_wins_for_api(self):
        assert get_rate_limit_config("api", "write", "admin")["max"] == 300

    def test_named_groups(self):
        assert get_rate_limit_config("auth", "resetPassword")["window"] == 3600
        assert get_rate_limit_config("apiKey", "verify")["max"] == 30

    def test_unknown_falls_back_to_default(self):
        assert get_rate_limit_config("api", "nope") == RATE_LIMIT_CONFIG["api"]["default"]
        assert get_rate_limit_config("other", "thing") == RATE_LIMIT_CONFIG["api"]["default"]

    def test_limiters_are_cached_per_role(self):
        with patch.dict("core.rate_limit._limiters", clear=True):
            first = get_limiter("api", "read")
            assert get_limiter("api", "read") is first
            assert get_limiter("api", "read", "admin") is not first
            assert first.prefix == "rl:api:read:default"


class TestRateLimiter:
    """Test RateLimiter class"""

    @pytest.fixture
    def rate_limiter(self):
        """Create rate limiter instance"""
        return RateLimiter(requests=5, window=60, prefix="test")

    @pytest.fixture
    def mock_redis_client(self):
        """Mock Redis client"""
        client = MagicMock()
        client.eval = AsyncMock(return_value=[1, 3])
        return client

    @pytest.mark.asyncio
    async def test_check_rate_limit_allowed(self, rate_limiter, mock_redis_client):
        with patch('core.rate_limit.get_redis_client', return_value=mock_redis_client):
            allowed, headers = await rate_limiter.check_rate_limit("test_key")

        assert allowed is True
        assert headers["X-RateLimit-Limit"] == "5"
        assert headers["X-RateLimit-Remaining"] == "2"
        assert "X-RateLimit-Reset" in headers
        assert "Retry-After" not in headers

    @pytest.mark.asyncio
    async def test_check_rate_limit_exceeded(self, rate_limiter, mock_redis_client):
        mock_redis_client.eval = AsyncMock(return_value=[0, 5])

        with patch('core.rate_limit.get_redis_client', return_value=mock_redis_client):
            allowed, headers = await rate_limiter.check_rate_limit("test_key")

        assert allowed is False
        assert headers["X-RateLimit-Remaining"] == "0"
        assert headers["Retry-After"] == "60"

    @pytest.mark.asyncio
    async def test_check_rate_limit_redis_key_format(self, rate_limiter, mock_redis_client):
        with patch('core.rate_limit.get_redis_client', return_value=mock_redis_client):
            with patch.object(settings, 'REDIS_PREFIX', 'myapp'):
                await rate_limiter.check_rate_limit("user123")

        args = mock_redis_client.eval.call_args.args
        assert args[1] == 1
        assert args[2] == "myapp:test:user123"
        assert args[5] == 5
        assert args[6] == 60

    @pytest.mark.asyncio
    async def test_redis_failure_denies_request(self, rate_limiter, mock_redis_client):
        mock_redis_client.eval = AsyncMock(side_effect=ConnectionError("redis down"))

        with patch('core.rate_limit.get_redis_client', return_value=mock_redis_client):
            allowed, headers = await rate_limiter.check_rate_limit("test_key")

        assert allowed is False
        assert headers["X-RateLimit-Remaining"] == "0"

    @pytest.mark.asyncio
    async def test_sliding_window_with_fake_redis(self, fake_redis):
        limiter = RateLimiter(requests=2, window=60, prefix="window")

        results = [(await limiter.check_rate_limit("ip"))[0] for _ in range(3)]

        assert results == [True, True, False]
        assert (await limiter.check_rate_limit("other-ip"))[0] is True


class TestRateLimitMonitor:

    def test_record_and_stats(self):
        monitor = RateLimitMonitor(max_events=10)
        monitor.record_event(ip="1.1.1.1", endpoint="/a", method="GET", blocked=False)
        monitor.record_event(ip="1.1.1.1", endpoint="/a", method="GET", blocked=True)
        monitor.record_event(ip="2.2.2.2", endpoint="/b", method="POST", blocked=True, user_id="u1")

        stats = monitor.get_stats()
        assert stats["total_requests"] == 3
        assert stats["blocked_requests"] == 2
        assert stats["requests_by_endpoint"] == {"/a": 2, "/b": 1}
        assert {"ip": "1.1.1.1", "count": 1} in stats["top_blocked_ips"]

    def test_events_are_bounded_and_newest_first(self):
        monitor = RateLimitMonitor(max_events=3)
        for i in range(5):
            monitor.record_event(ip=f"10.0.0.{i}", endpoint="/x", method="GET", blocked=False)

        events = monitor.get_events()
        assert [e["ip"] for e in events] == ["10.0.0.4", "10.0.0.3", "10.0.0.2"]
        assert len(monitor.get_events(limit=1)) == 1

    def test_clear_events(self):
        monitor = RateLimitMonitor(max_events=3)
        monitor.record_event(ip="1.1.1.1", endpoint="/x", method="GET", blocked=True)
        monitor.clear_events()

        assert monitor.get_events() == []
        assert monitor.get_stats()["total_requests"] == 0


class TestRateLimitMiddleware:
    """Middleware against a small app"""

    @pytest.fixture
    def limited_app(self):
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware)

        @app.get("/api/v1/things")
        async def things():
            return {"ok": True}

        @app.get("/health")
        async def health():
            return {"status": "healthy"}

        @app.post("/api/v1/auth/register", dependencies=[Depends(rate_limit("auth", "register"))])
        async def register():
            return {"ok": True}

        return app

    @pytest.fixture(autouse=True)
    def enabled(self):
        rate_limit_monitor.clear_events()
        with patch.object(settings, "RATE_LIMIT_ENABLED", True), \
                patch.object(settings, "RATE_LIMIT_TRUSTED_SERVICES", []), \
                patch.dict("core.rate_limit._limiters", clear=True), \
                patch.dict(RATE_LIMIT_CONFIG["api"]["read"], {"max": 2}):
            yield
        rate_limit_monitor.clear_events()

    async def _client(self, app):
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    @pytest.mark.asyncio
    async def test_blocks_after_limit(self, limited_app):
        async with await self._client(limited_app) as client:
            first = await client.get("/api/v1/things")
            await client.get("/api/v1/things")
            blocked = await client.get("/api/v1/things")

        assert first.status_code == 200
        assert first.headers["X-RateLimit-Limit"] == "2"
        assert blocked.status_code == 429
        assert blocked.json()["detail"] == RATE_LIMIT_CONFIG["api"]["read"]["message"]
        assert blocked.headers["Retry-After"] == "60"
        assert rate_limit_monitor.get_stats()["blocked_requests"] == 1

    @pytest.mark.asyncio
    async def test_health_is_not_limited(self, limited_app):
        async with await self._client(limited_app) as client:
            responses = [await client.get("/health") for _ in range(4)]

        assert all(r.status_code == 200 for r in responses)
        assert rate_limit_monitor.get_stats()["total_requests"] == 0

    @pytest.mark.asyncio
    async def test_trusted_ip_bypasses(self, limited_app):
        with patch.object(settings, "RATE_LIMIT_TRUSTED_SERVICES", ["127.0.0.1"]):
            async with await self._client(limited_app) as client:
                responses = [await client.get("/api/v1/things") for _ in range(4)]

        assert all(r.status_code == 200 for r in responses)

    @pytest.mark.asyncio
    async def test_admin_token_gets_admin_limit(self, limited_app):
        headers = {"Authorization": f"Bearer {create_access_token('admin-id', roles=['Admin'])}"}
        async with await self._client(limited_app) as client:
            responses = [await client.get("/api/v1/things", headers=headers) for _ in range(3)]

        assert all(r.status_code == 200 for r in responses)
        assert responses[0].headers["X-RateLimit-Limit"] == "300"

    @pytest.mark.asyncio
    async def test_endpoint_dependency(self, limited_app):
        with patch.dict(RATE_LIMIT_CONFIG["auth"]["register"], {"max": 1}):
            async with await self._client(limited_app) as client:
                await client.post("/api/v1/auth/register")
                blocked = await client.post("/api/v1/auth/register")

        assert blocked.status_code == 429


def request_for(method: str, path: str) -> Request:
    return Request({"type": "http", "method": method, "path": path, "headers": [], "query_string": b""})


class TestClassifyRequest:

    def test_registration_and_password_reset_use_auth_limits(self):
        assert classify_request(request_for("POST", "/api/v1/auth/register")) == ("auth", "register")
        assert classify_request(request_for("POST", "/api/v1/auth/reset-password/")) == ("auth", "resetPassword")

    def test_sso_callbacks_use_api_limits(self):
        assert classify_request(request_for("GET", "/api/v1/auth/oidc/abc/callback")) == ("api", "read")
        assert classify_request(request_for("POST", "/api/v1/auth/saml/callback/abc")) == ("api", "write")

    def test_api_key_endpoints(self):
        assert classify_request(request_for("POST", "/api/v1/api-keys/validate")) == ("apiKey", "verify")
        assert classify_request(request_for("POST", "/api/v1/api-keys/")) == ("apiKey", "create")
        assert classify_request(request_for("GET", "/api/v1/api-keys/")) == ("api", "read")


class TestExponentialBackoff:

    def test_delay_doubles_after_max_attempts(self):
        backoff = ExponentialBackoff(max_attempts=3, base_delay=1, max_delay=3600)

        assert backoff.retry_after(2) is None
        assert [backoff.retry_after(n) for n in (3, 4, 5, 6)] == [1, 2, 4, 8]

    def test_delay_is_capped(self):
        backoff = ExponentialBackoff(max_attempts=1, base_delay=1, max_delay=30)
        assert backoff.retry_after(20) == 30

    def test_sub_second_delays_round_up(self):
        assert ExponentialBackoff(max_attempts=1, base_delay=0.2, max_delay=60).retry_after(1) == 1

    @pytest.mark.asyncio
    async def test_counter_key_and_reset(self, fake_redis):
        backoff = ExponentialBackoff()

        await backoff.record("1.2.3.4", "/api/v1/auth/x", failed=True, previous_attempts=0)
        await backoff.record("1.2.3.4", "/api/v1/auth/x", failed=True, previous_attempts=1)

        assert await fake_redis.get("test:backoff:1.2.3.4:/api/v1/auth/x") == "2"
        assert await fake_redis.ttl("test:backoff:1.2.3.4:/api/v1/auth/x") > 0

        await backoff.record("1.2.3.4", "/api/v1/auth/x", failed=False, previous_attempts=2)
        assert await backoff.attempts("1.2.3.4", "/api/v1/auth/x") == 0


class TestBackoffMiddleware:

    @pytest.fixture
    def backoff_app(self):
        app = FastAPI()
        app.add_middleware(
            BackoffMiddleware,
            backoff=ExponentialBackoff(max_attempts=2, base_delay=5, max_delay=60),
            paths=["/api/v1/auth/"],
        )

        @app.post("/api/v1/auth/saml/callback/{provider_id}")
        async def callback(provider_id: str, ok: bool = False):
            if not ok:
                raise HTTPException(status_code=401, detail="SSO failed")
            return {"ok": True}

        @app.get("/api/v1/things")
        async def things():
            raise HTTPException(status_code=404)

        return app

    @pytest.fixture(autouse=True)
    def enabled(self):
        with patch.object(settings, "RATE_LIMIT_ENABLED", True), \
                patch.object(settings, "RATE_LIMIT_TRUSTED_SERVICES", []):
            yield

    async def _client(self, app):
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    @pytest.mark.asyncio
    async def test_repeated_failures_escalate_retry_after(self, backoff_app, fake_redis):
        url = "/api/v1/auth/saml/callback/abc"
        async with await self._client(backoff_app) as client:
            failures = [await client.post(url) for _ in range(2)]
            blocked = await client.post(url, params={"ok": True})
            await fake_redis.incr("test:backoff:127.0.0.1:" + url)
            blocked_longer = await client.post(url, params={"ok": True})

        assert [r.status_code for r in failures] == [401, 401]
        assert blocked.status_code == 429
        assert blocked.headers["Retry-After"] == "5"
        assert blocked_longer.headers["Retry-After"] == "10"
        assert "Too many failed attempts" in blocked.json()["detail"]

    @pytest.mark.asyncio
    async def test_success_clears_failures(self, backoff_app, fake_redis):
        url = "/api/v1/auth/saml/callback/abc"
        async with await self._client(backoff_app) as client:
            await client.post(url)
            assert (await client.post(url, params={"ok": True})).status_code == 200
            await client.post(url)
            second_round = await client.post(url)

        assert second_round.status_code == 401
        assert await fake_redis.get("test:backoff:127.0.0.1:" + url) == "2"

    @pytest.mark.asyncio
    async def test_other_paths_are_not_counted(self, backoff_app, fake_redis):
        async with await self._client(backoff_app) as client:
            responses = [await client.get("/api/v1/things") for _ in range(4)]

        assert all(r.status_code == 404 for r in responses)
        assert await fake_redis.get("test:backoff:127.0.0.1:/api/v1/things") is None
