"""Per-client request throttling for the consent surfaces.

The public portal is reachable by anyone holding a link, so lookups and
decisions are throttled per client IP across *all* token values; a client
cannot reset its budget by guessing a different token. Staff login and the
clinician status poll get their own budgets.

Counters live in process memory unless ``RATE_LIMIT_STORAGE_URL`` points at
Redis, which is required once more than one worker serves the API.
"""

import logging
import re
import time
from collections import deque
from dataclasses import dataclass, field
from typing import NamedTuple, Protocol

import redis
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

_TEMPLATE_SEGMENT = re.compile(r"\{[^/]+\}")


class RateLimitDecision(NamedTuple):
    """Outcome of counting one request against a bucket."""

    allowed: bool
    remaining: int
    reset_seconds: int


@dataclass
class RateLimitRule:
    """Budget for one route template.

    Templated segments (``{token}``) are collapsed when building the bucket
    key, so every concrete path under the template shares one budget.
    """

    method: str
    path: str
    requests: int
    window_seconds: int
    pattern: re.Pattern = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.pattern = re.compile("^" + _TEMPLATE_SEGMENT.sub("[^/]+", self.path) + "$")

    def matches(self, method: str, path: str) -> bool:
        return method == self.method and self.pattern.match(path) is not None

    def bucket(self, client_ip: str) -> str:
        return f"{self.method}:{self.path}:{client_ip}"


DEFAULT_RULES: list[RateLimitRule] = [
    RateLimitRule("POST", "/api/v1/auth/staff/login", requests=5, window_seconds=60),
    RateLimitRule("GET", "/api/v1/portal/consent/{token}", requests=30, window_seconds=60),
    RateLimitRule("POST", "/api/v1/portal/consent/decision", requests=10, window_seconds=60),
    # One poll every 3 s for a handful of open patients
    RateLimitRule("POST", "/api/v1/consent/status", requests=120, window_seconds=60),
    RateLimitRule("POST", "/api/v1/consent/requests", requests=20, window_seconds=3600),
]


def get_client_ip(request: Request) -> str:
    """Return the originating client address, honouring X-Forwarded-For."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


class RateLimitStorage(Protocol):
    """Counter backend used by the middleware."""

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision: ...


class InMemoryRateLimitStorage:
    """Sliding-window log kept in process memory.

    Suitable for a single worker and for tests.
    """

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        now = self._clock()
        hits = self._hits.setdefault(key, deque())
        while hits and now - hits[0] >= window_seconds:
            hits.popleft()

        if len(hits) >= limit:
            reset = max(1, int(window_seconds - (now - hits[0])))
            return RateLimitDecision(False, 0, reset)

        hits.append(now)
        reset = int(window_seconds - (now - hits[0]))
        return RateLimitDecision(True, limit - len(hits), reset)

    def reset(self) -> None:
        self._hits.clear()


class RedisRateLimitStorage:
    """Fixed-window counters shared by all workers through Redis."""

    def __init__(self, redis_url: str) -> None:
        self.redis = redis.from_url(redis_url)

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        now = int(time.time())
        window_key = f"consent:ratelimit:{key}:{now // window_seconds}"

        pipe = self.redis.pipeline()
        pipe.incr(window_key)
        pipe.expire(window_key, window_seconds)
        count = pipe.execute()[0]

        reset = window_seconds - (now % window_seconds)
        if count > limit:
            return RateLimitDecision(False, 0, reset)
        return RateLimitDecision(True, limit - count, reset)


def build_rate_limit_storage(storage_url: str | None) -> RateLimitStorage:
    """Pick Redis when a storage URL is configured, memory otherwise."""
    if storage_url:
        logger.info("Using Redis rate limit storage")
        return RedisRateLimitStorage(storage_url)
    return InMemoryRateLimitStorage()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Answers 429 once a client exhausts the budget of a matching rule."""

    def __init__(
        self,
        app,
        rules: list[RateLimitRule] | None = None,
        storage: RateLimitStorage | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(app)
        self.rules = DEFAULT_RULES if rules is None else rules
        self.storage = storage or InMemoryRateLimitStorage()
        self.enabled = enabled

    def match(self, method: str, path: str) -> RateLimitRule | None:
        for rule in self.rules:
            if rule.matches(method, path):
                return rule
        return None

    async def dispatch(self, request: Request, call_next) -> Response:
        rule = self.match(request.method, request.url.path) if self.enabled else None
        if rule is None:
            return await call_next(request)

        client_ip = get_client_ip(request)
        decision = self.storage.hit(rule.bucket(client_ip), rule.requests, rule.window_seconds)
        headers = {
            "X-RateLimit-Limit": str(rule.requests),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset": str(decision.reset_seconds),
        }

        if not decision.allowed:
            logger.warning(f"Rate limit exceeded: {rule.method} {rule.path} from {client_ip}")
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Too many requests. Please try again later.",
                    "retry_after": decision.reset_seconds,
                },
                headers={"Retry-After": str(decision.reset_seconds), **headers},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
