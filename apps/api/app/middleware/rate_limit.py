"""Per-caller write budgets for the ``/api`` surface.

Every mutating request draws one token from a bucket keyed by caller and budget. Stage
changes and batch sweeps get their own budgets so a burst of routine edits cannot starve
them; every other write in a module shares that module's general budget. Dry-run
endpoints only read and are never limited.
"""

from __future__ import annotations

import math
import re
import threading
import time
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.api.errors import error_response
from app.core.auth import resolve_subject
from app.core.config import Settings, get_settings


MUTATING_METHODS = frozenset({"POST", "PATCH", "PUT", "DELETE"})
WINDOW_SECONDS = 60


@dataclass(frozen=True)
class Budget:
    name: str
    capacity: int


@dataclass(frozen=True)
class _RouteRule:
    pattern: re.Pattern[str]
    kind: str


_EXEMPT = re.compile(r"^/api/projects/stages/validate$")
_RULES = (
    _RouteRule(re.compile(r"^/api/(?P<module>projects|deals)/[^/]+/stage$"), "stage_changes"),
    _RouteRule(
        re.compile(
            r"^/api/(?P<module>deals|leads|contracts)/"
            r"(probabilities/refresh|sla/escalations|expiration-notifications|auto-renewals)$"
        ),
        "batch_jobs",
    ),
)


def resolve_budget(path: str, settings: Settings) -> Budget | None:
    """Map a mutating path to its budget; ``None`` means the path is not limited."""
    if not path.startswith("/api/") or _EXEMPT.match(path):
        return None

    for rule in _RULES:
        match = rule.pattern.match(path)
        if match:
            capacity = getattr(settings, f"rate_limit_{rule.kind}_per_minute")
            return Budget(name=f"{match.group('module')}.{rule.kind}", capacity=capacity)

    parts = [part for part in path.split("/") if part]
    module = parts[1] if len(parts) > 1 else "api"
    return Budget(name=module, capacity=settings.rate_limit_mutations_per_minute)


@dataclass
class _Bucket:
    tokens: float
    refilled_at: float


class TokenBucketLimiter:
    def __init__(self, window_seconds: int = WINDOW_SECONDS) -> None:
        self.window_seconds = window_seconds
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _Bucket] = {}

    def take(self, subject: str, budget: Budget) -> tuple[bool, int]:
        """Spend one token; returns ``(allowed, retry_after_seconds)``."""
        if budget.capacity <= 0:
            return False, self.window_seconds

        now = time.monotonic()
        refill_per_second = budget.capacity / float(self.window_seconds)
        with self._lock:
            bucket = self._buckets.setdefault((subject, budget.name), _Bucket(float(budget.capacity), now))
            elapsed = max(0.0, now - bucket.refilled_at)
            bucket.tokens = min(float(budget.capacity), bucket.tokens + elapsed * refill_per_second)
            bucket.refilled_at = now

            if bucket.tokens < 1.0:
                return False, max(1, math.ceil((1.0 - bucket.tokens) / refill_per_second))
            bucket.tokens -= 1.0
            return True, 0

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = TokenBucketLimiter()


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled or request.method.upper() not in MUTATING_METHODS:
            return await call_next(request)

        budget = resolve_budget(request.url.path, settings)
        if budget is None:
            return await call_next(request)

        allowed, retry_after = _limiter.take(resolve_subject(request) or "anonymous", budget)
        if allowed:
            return await call_next(request)

        response = error_response(
            request,
            status_code=429,
            code="RATE_LIMITED",
            message="Too many requests",
            details={"budget": budget.name, "limit_per_minute": budget.capacity},
        )
        response.headers["Retry-After"] = str(retry_after)
        return response


def reset_rate_limiter() -> None:
    _limiter.clear()
