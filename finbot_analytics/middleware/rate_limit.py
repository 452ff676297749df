"""
Per-client request budget.

Each route has a cost, and a client may spend `limit` units per sliding
`period`. A cohort matrix costs several units; health checks are free.
Budgets live in Redis, or in process memory when Redis is unreachable.
In memory, clients idle for a full period are dropped.
"""
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Tuple
from uuid import uuid4
import time
from fastapi import Request, status
from fastapi.responses import JSONResponse
import redis
import structlog
from finbot_analytics.core.config import settings

logger = structlog.get_logger()

EXEMPT_PATHS = {"/health", "/"}

ROUTE_COSTS = {
    "/analytics/cohorts": 5,
    "/notifications/preview": 2,
    "/notifications/broadcast": 2,
    "/notifications/filters": 2,
}
DEFAULT_COST = 1


def request_cost(path: str) -> int:
    return ROUTE_COSTS.get(path.rstrip("/") or "/", DEFAULT_COST)


@dataclass
class BudgetDecision:
    allowed: bool
    remaining: int
    cost: int


class RequestBudget:
    """Sliding-window spend tracker keyed by client"""

    def __init__(self, limit: int, period: int, client: Optional[redis.Redis] = None):
        self.limit = limit
        self.period = period
        self.client = client
        # client key -> (timestamp, cost) of spends still inside the window
        self._spent: Dict[str, Deque[Tuple[float, int]]] = {}
        self._last_sweep = 0.0

    @property
    def tracked_clients(self) -> int:
        return len(self._spent)

    def spend(self, key: str, cost: int, now: Optional[float] = None) -> BudgetDecision:
        now = time.time() if now is None else now
        if self.client is not None:
            try:
                return self._spend_redis(key, cost, now)
            except redis.RedisError as e:
                logger.warning("request_budget_redis_lost", error=str(e))
                self.client = None
        return self._spend_memory(key, cost, now)

    def _spend_redis(self, key: str, cost: int, now: float) -> BudgetDecision:
        # One sorted-set member per unit spent, scored by time
        redis_key = f"request_budget:{key}"
        pipe = self.client.pipeline()
        pipe.zremrangebyscore(redis_key, 0, now - self.period)
        pipe.zcard(redis_key)
        _, spent = pipe.execute()

        if spent + cost > self.limit:
            return BudgetDecision(False, max(0, self.limit - spent), cost)

        token = uuid4().hex
        pipe = self.client.pipeline()
        pipe.zadd(redis_key, {f"{token}:{unit}": now for unit in range(cost)})
        pipe.expire(redis_key, self.period)
        pipe.execute()
        return BudgetDecision(True, self.limit - spent - cost, cost)

    def _spend_memory(self, key: str, cost: int, now: float) -> BudgetDecision:
        if now - self._last_sweep >= self.period:
            self._sweep(now)

        window = self._spent.setdefault(key, deque())
        self._expire(window, now)
        spent = sum(units for _, units in window)

        if spent + cost > self.limit:
            if not window:
                del self._spent[key]
            return BudgetDecision(False, max(0, self.limit - spent), cost)

        window.append((now, cost))
        return BudgetDecision(True, self.limit - spent - cost, cost)

    def _expire(self, window: Deque[Tuple[float, int]], now: float) -> None:
        while window and window[0][0] <= now - self.period:
            window.popleft()

    def _sweep(self, now: float) -> None:
        """Forget clients with nothing left inside the window"""
        for key in list(self._spent):
            window = self._spent[key]
            self._expire(window, now)
            if not window:
                del self._spent[key]
        self._last_sweep = now


def connect_redis(url: str) -> Optional[redis.Redis]:
    try:
        client = redis.from_url(url, decode_responses=True)
        client.ping()
    except redis.RedisError as e:
        logger.warning("request_budget_using_memory", error=str(e))
        return None
    logger.info("request_budget_using_redis")
    return client


request_budget = RequestBudget(
    limit=settings.rate_limit_requests,
    period=settings.rate_limit_period,
    client=connect_redis(settings.redis_url)
)


def client_key(request: Request) -> str:
    api_key = request.headers.get("X-API-Key")
    if api_key and settings.api_key and api_key == settings.api_key:
        return "admin"
    return f"ip:{request.client.host if request.client else 'unknown'}"


def budget_headers(decision: BudgetDecision) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(request_budget.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(request_budget.period),
        "X-RateLimit-Cost": str(decision.cost),
    }


async def rate_limit_middleware(request: Request, call_next):
    if request.url.path in EXEMPT_PATHS:
        return await call_next(request)

    key = client_key(request)
    decision = request_budget.spend(key, request_cost(request.url.path))

    if not decision.allowed:
        logger.warning(
            "rate_limit_exceeded",
            key=key,
            path=request.url.path,
            cost=decision.cost,
            remaining=decision.remaining
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "detail": "Request budget exhausted. Please try again later.",
                "retry_after": request_budget.period
            },
            headers={**budget_headers(decision), "Retry-After": str(request_budget.period)}
        )

    response = await call_next(request)
    for name, value in budget_headers(decision).items():
        response.headers[name] = value
    return response
