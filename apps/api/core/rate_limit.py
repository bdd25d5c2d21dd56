"""
Request throttling.

Each caller gets a fixed window per path: authenticated requests are keyed
by the token subject, anonymous ones by client address. Counters live in
Redis; without Redis every request is let through.
"""
import logging
import time
from dataclasses import dataclass

from fastapi import Request, status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from core.cache import get_redis_client
from core.config import settings
from core.security import decode_access_token

logger = logging.getLogger(__name__)

EXEMPT_PATHS = ("/health", "/docs", "/openapi.json", "/redoc")

# Credential endpoints get a tighter budget than the rest of the API
STRICT_PREFIXES = {
    "/v1/auth/login": 10,
    "/v1/auth/register": 10,
}


@dataclass
class WindowState:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int

    def headers(self) -> dict:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


def caller_key(request: Request) -> str:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme == "Bearer" and token:
        claims = decode_access_token(token)
        if claims and claims.get("sub"):
            return f"user:{claims['sub']}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, default_limit: int = 60, window: int = 60):
        super().__init__(app)
        self.default_limit = default_limit
        self.window = window

    def limit_for(self, path: str) -> int:
        return next(
            (limit for prefix, limit in STRICT_PREFIXES.items() if path.startswith(prefix)),
            self.default_limit,
        )

    def hit(self, caller: str, path: str) -> WindowState:
        """Count one request against the caller's current window."""
        limit = self.limit_for(path)
        now = int(time.time())
        client = get_redis_client()
        if client is None:
            return WindowState(True, limit, limit, now + self.window)

        key = f"rate_limit:{caller}:{path}"
        try:
            pipe = client.pipeline()
            pipe.set(key, 0, ex=self.window, nx=True)
            pipe.incr(key)
            pipe.ttl(key)
            _, count, ttl = pipe.execute()
        except RedisError as e:
            logger.error(f"Rate limit counter failed for {caller}: {e}")
            return WindowState(True, limit, limit, now + self.window)

        reset_at = now + (ttl if ttl > 0 else self.window)
        return WindowState(count <= limit, limit, max(0, limit - count), reset_at)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not settings.RATE_LIMIT_ENABLED or path in EXEMPT_PATHS:
            return await call_next(request)

        state = self.hit(caller_key(request), path)
        if not state.allowed:
            logger.info(f"Throttled {path} (limit {state.limit}/{self.window}s)")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"success": False, "message": "Rate limit exceeded", "error": "RATE_LIMITED"},
                headers={**state.headers(), "Retry-After": str(max(0, state.reset_at - int(time.time())))},
            )

        response = await call_next(request)
        response.headers.update(state.headers())
        return response
