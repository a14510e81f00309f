"""Tests for the rate limiting middleware."""

import httpx
import pytest
from fastapi import FastAPI

from app.middleware.rate_limit import (
    DEFAULT_RULES,
    InMemoryRateLimitStorage,
    RateLimitMiddleware,
    RateLimitRule,
    build_rate_limit_storage,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _app(rules: list[RateLimitRule] | None = None, **kwargs) -> FastAPI:
    app = FastAPI()

    @app.get("/api/v1/portal/consent/{token}")
    async def view(token: str) -> dict:
        return {"token": token}

    @app.post("/api/v1/consent/status")
    async def status() -> dict:
        return {"ok": True}

    @app.get("/api/v1/health")
    async def health() -> dict:
        return {"status": "healthy"}

    app.add_middleware(
        RateLimitMiddleware,
        rules=rules,
        storage=InMemoryRateLimitStorage(),
        **kwargs,
    )
    return app


def _client(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


class TestInMemoryStorage:
    """Tests for InMemoryRateLimitStorage."""

    def test_allows_until_limit(self) -> None:
        storage = InMemoryRateLimitStorage()

        results = [storage.hit("k", 3, 60).allowed for _ in range(4)]

        assert results == [True, True, True, False]

    def test_keys_are_independent(self) -> None:
        storage = InMemoryRateLimitStorage()
        storage.hit("a", 1, 60)

        assert storage.hit("b", 1, 60).allowed is True

    def test_window_slides(self) -> None:
        clock = FakeClock()
        storage = InMemoryRateLimitStorage(clock=clock)
        storage.hit("k", 2, 60)
        clock.now += 30
        storage.hit("k", 2, 60)

        assert storage.hit("k", 2, 60).allowed is False

        clock.now += 31
        decision = storage.hit("k", 2, 60)
        assert decision.allowed is True
        assert decision.remaining == 0

    def test_default_backend_is_in_memory(self) -> None:
        assert isinstance(build_rate_limit_storage(None), InMemoryRateLimitStorage)
        assert isinstance(build_rate_limit_storage(""), InMemoryRateLimitStorage)


class TestRateLimitRule:
    """Tests for route matching."""

    def test_template_matches_any_token(self) -> None:
        rule = RateLimitRule("GET", "/api/v1/portal/consent/{token}", 1, 60)

        assert rule.matches("GET", "/api/v1/portal/consent/abc")
        assert not rule.matches("POST", "/api/v1/portal/consent/abc")
        assert not rule.matches("GET", "/api/v1/portal/consent/abc/extra")

    def test_bucket_ignores_concrete_token(self) -> None:
        rule = RateLimitRule("GET", "/api/v1/portal/consent/{token}", 1, 60)

        assert rule.bucket("10.0.0.1") == "GET:/api/v1/portal/consent/{token}:10.0.0.1"


class TestRateLimitMiddleware:
    """Tests for RateLimitMiddleware."""

    @pytest.mark.asyncio
    async def test_portal_limit_spans_token_values(self) -> None:
        """Enumerating tokens from one client shares a single bucket."""
        rules = [RateLimitRule("GET", "/api/v1/portal/consent/{token}", 2, 60)]

        async with _client(_app(rules)) as client:
            first = await client.get("/api/v1/portal/consent/aaaa")
            second = await client.get("/api/v1/portal/consent/bbbb")
            third = await client.get("/api/v1/portal/consent/cccc")

        assert first.status_code == 200
        assert second.status_code == 200
        assert third.status_code == 429
        assert third.headers["Retry-After"]
        assert third.json()["detail"] == "Too many requests. Please try again later."

    @pytest.mark.asyncio
    async def test_forwarded_clients_get_separate_buckets(self) -> None:
        rules = [RateLimitRule("GET", "/api/v1/portal/consent/{token}", 1, 60)]

        async with _client(_app(rules)) as client:
            first = await client.get(
                "/api/v1/portal/consent/a", headers={"X-Forwarded-For": "10.0.0.1"}
            )
            second = await client.get(
                "/api/v1/portal/consent/a", headers={"X-Forwarded-For": "10.0.0.2, 10.0.0.9"}
            )

        assert first.status_code == 200
        assert second.status_code == 200

    @pytest.mark.asyncio
    async def test_headers_report_remaining(self) -> None:
        async with _client(_app(DEFAULT_RULES)) as client:
            response = await client.post("/api/v1/consent/status")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "120"
        assert response.headers["X-RateLimit-Remaining"] == "119"

    @pytest.mark.asyncio
    async def test_unmatched_routes_are_not_limited(self) -> None:
        async with _client(_app()) as client:
            response = await client.get("/api/v1/health")

        assert "X-RateLimit-Limit" not in response.headers

    @pytest.mark.asyncio
    async def test_disabled_middleware_passes_through(self) -> None:
        async with _client(_app(enabled=False)) as client:
            response = await client.post("/api/v1/consent/status")

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers
