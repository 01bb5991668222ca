"""Rate limiting middleware — Redis-based fixed window per minute.

Learn: Each IP gets a counter key like "postpilot:rl:{ip}:{bucket}:{minute}".
Credential endpoints (login, register, refresh) get a stricter limit to
slow down password guessing and refresh-token brute force.

Gracefully skips rate limiting if Redis is unavailable (e.g., in tests).
"""

import time

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = structlog.get_logger()

STRICT_PATHS = (
    "/api/v1/auth/login",
    "/api/v1/auth/register",
    "/api/v1/auth/refresh",
)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-based rate limiting per IP per minute."""

    def __init__(self, app, default_rpm: int = 100, auth_rpm: int = 10):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.auth_rpm = auth_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        client = getattr(request.app.state, "redis", None)
        if client is None or not client.is_open:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        is_auth = request.url.path.startswith(STRICT_PATHS)
        rpm = self.auth_rpm if is_auth else self.default_rpm

        window = int(time.time() // 60)
        bucket = "auth" if is_auth else "api"
        key = f"postpilot:rl:{client_ip}:{bucket}:{window}"

        try:
            count = await client.hit(key, ttl_seconds=120)
        except RedisError as e:
            # Redis error — don't block the request
            logger.warning("rate_limit.redis_error", error=str(e))
            return await call_next(request)

        if count > rpm:
            return JSONResponse(
                status_code=429,
                content={
                    "statusCode": 429,
                    "message": "Rate limit exceeded. Try again later.",
                    "code": "RATE_LIMITED",
                    "success": False,
                },
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
