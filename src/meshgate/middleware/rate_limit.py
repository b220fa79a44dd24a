"""Rate limiting middleware — Redis fixed-window counters.

Learn: One counter per client IP, per bucket, per minute:
"meshgate:rl:{ip}:{bucket}:{minute}". Login endpoints (API-key login and
both OIDC legs) share a stricter bucket to slow down key guessing.

Skipped entirely when Redis isn't available (e.g. in tests).
"""

import time

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from meshgate.cache.redis import get_redis

logger = structlog.get_logger()

AUTH_PATH_PREFIXES = ("/api/v1/auth/login", "/api/v1/auth/oidc")


def is_auth_path(path: str) -> bool:
    return path.startswith(AUTH_PATH_PREFIXES)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP requests-per-minute limit."""

    def __init__(self, app, default_rpm: int = 100, auth_rpm: int = 10):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.auth_rpm = auth_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        is_auth = is_auth_path(request.url.path)
        rpm = self.auth_rpm if is_auth else self.default_rpm

        window = int(time.time() // 60)
        bucket = "auth" if is_auth else "api"
        key = f"meshgate:rl:{client_ip}:{bucket}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 120)
        except RedisError as e:
            logger.warning("ratelimit.redis_error", error=str(e))
            return await call_next(request)

        if count > rpm:
            logger.info("ratelimit.exceeded", client_ip=client_ip, bucket=bucket)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
