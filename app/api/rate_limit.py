"""Per-client rate limiting for public endpoints."""

import time
from collections import defaultdict, deque

from fastapi import HTTPException, Request, status

from app.config import get_settings

settings = get_settings()


class RateLimiter:
    """Sliding-window limiter usable as a FastAPI dependency.

    In-memory, so limits are per process.

    Usage:
        submit_limiter = RateLimiter("submit", max_calls=10, period=60)

        @router.post("", dependencies=[Depends(submit_limiter)])
        async def submit(): ...
    """

    def __init__(self, scope: str, max_calls: int, period: int) -> None:
        self.scope = scope
        self.max_calls = max_calls
        self.period = period
        self._calls: dict[str, deque[float]] = defaultdict(deque)

    def _key(self, request: Request) -> str:
        client_ip = request.client.host if request.client else "unknown"
        return f"{self.scope}:{client_ip}"

    def hit(self, key: str, now: float | None = None) -> bool:
        """Record a call for ``key``. Returns False if it is over the limit."""
        now = time.monotonic() if now is None else now
        calls = self._calls[key]
        while calls and now - calls[0] >= self.period:
            calls.popleft()
        if len(calls) >= self.max_calls:
            return False
        calls.append(now)
        return True

    async def __call__(self, request: Request) -> None:
        if not self.hit(self._key(request)):
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=(
                    f"Rate limit exceeded: max {self.max_calls} requests "
                    f"per {self.period} seconds"
                ),
            )

    def clear(self) -> None:
        self._calls.clear()


submit_limiter = RateLimiter(
    "submit",
    max_calls=settings.submit_rate_limit_calls,
    period=settings.submit_rate_limit_period,
)
upload_limiter = RateLimiter(
    "upload",
    max_calls=settings.submit_rate_limit_calls,
    period=settings.submit_rate_limit_period,
)


def clear_rate_limits() -> None:
    """Clear all rate limit data (useful for testing)."""
    submit_limiter.clear()
    upload_limiter.clear()
