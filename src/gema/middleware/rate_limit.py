"""Rate limiting middleware — Redis-based fixed window.

Learn: Uses a per-minute counter stored in Redis.
Each IP gets a counter key like "gema:rl:{ip}:{minute}".

Gracefully skips rate limiting if Redis is not configured or
unavailable (e.g., in tests). A long-lived SSE stream counts once,
when it opens.
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from gema.realtime.pubsub import get_redis


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-based rate limiting per IP per minute."""

    def __init__(self, app, rpm: int = 100, key_prefix: str = "gema"):
        super().__init__(app)
        self.rpm = rpm
        self.key_prefix = key_prefix

    async def dispatch(self, request: Request, call_next) -> Response:
        redis = get_redis()
        if redis is None:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        window = int(time.time() // 60)
        key = f"{self.key_prefix}:rl:{client_ip}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 120)  # 2-min TTL for safety
        except Exception:
            # Redis error: let the request through
            return await call_next(request)

        if count > self.rpm:
            return JSONResponse(
                status_code=429,
                content={"success": False, "error": "rate limit exceeded, try again later"},
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.rpm - count))
        return response
