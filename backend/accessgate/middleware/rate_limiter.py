"""
Rate limiting middleware for access and token endpoints.

WHAT: Per-client request rate limiting in front of the access check and
the token issuance/redemption endpoints.

WHY: These endpoints are brute-force targets:
1. Token redemption accepts short numeric codes that can be guessed
2. Issuance sends notifications and can be abused to spam subjects
3. The access check reveals whether an address is authorized

The token lifecycle already limits issuance per subject and failed codes
per token; this layer limits raw request volume per client address.

HOW: Redis fixed window:
1. Each request increments a counter for client + endpoint
2. The counter key expires after the window duration
3. Over the limit -> 429 Too Many Requests with Retry-After

Design decisions:
- Fail-open: If Redis is unavailable, allow requests (prevents self-DOS)
- Per-endpoint limits
- Client identified by the same address extraction as request context
"""

from dataclasses import dataclass
from typing import Optional, Dict
import logging
import redis.asyncio as aioredis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from accessgate.core.config import settings
from accessgate.core.exceptions import RateLimitExceeded
from accessgate.middleware.request_context import get_client_ip


logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class RateLimitConfig:
    """
    Rate limit parameters for an endpoint.
    """

    requests_per_window: int = 10
    """Maximum number of requests allowed in the window."""

    window_seconds: int = 60
    """Duration of the rate limit window in seconds."""

    key_prefix: str = "ratelimit"
    """Redis key prefix for rate limit counters.

    WHY: Namespacing prevents key collisions with other Redis data.
    """


# Endpoint-specific rate limit configurations
# WHY: Code redemption is the guessable surface and gets the strictest limit
ENDPOINT_RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "/api/access/verify": RateLimitConfig(
        requests_per_window=30,
        window_seconds=60,
        key_prefix="ratelimit:access-verify",
    ),
    "/api/tokens/validate": RateLimitConfig(
        requests_per_window=10,
        window_seconds=60,
        key_prefix="ratelimit:token-validate",
    ),
    "/api/tokens/redeem": RateLimitConfig(
        requests_per_window=5,
        window_seconds=60,
        key_prefix="ratelimit:token-redeem",
    ),
    "/api/tokens/registration": RateLimitConfig(
        requests_per_window=10,
        window_seconds=60,
        key_prefix="ratelimit:token-registration",
    ),
    "/api/tokens/login-verification": RateLimitConfig(
        requests_per_window=3,
        window_seconds=60,
        key_prefix="ratelimit:login-verification",
    ),
}


# ============================================================================
# Rate Limit Result
# ============================================================================


@dataclass
class RateLimitResult:
    """
    Result of a rate limit check.

    Used both to decide whether to allow the request and to fill the
    X-RateLimit-* response headers.
    """

    allowed: bool
    """Whether the request is allowed (under limit)."""

    remaining: int
    """Requests remaining in the current window (-1 when unknown)."""

    reset_after: int
    """Seconds until the rate limit window resets."""

    limit: int
    """Maximum requests allowed per window."""


# ============================================================================
# Rate Limiter Service
# ============================================================================


class RateLimiter:
    """
    Rate limiter service using Redis.

    WHY: Redis-based rate limiting is shared across app instances, and INCR
    is atomic, so concurrent requests cannot under-count.

    HOW: Uses a Redis pipeline for increment + expire:
    1. INCR key (creates it with value 1 if new)
    2. EXPIRE key window_seconds
    3. Compare counter to limit
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        config: Optional[RateLimitConfig] = None,
    ):
        """
        Initialize rate limiter with Redis client.

        Args:
            redis_client: Async Redis client
            config: Default rate limit configuration
        """
        self._redis = redis_client
        self._config = config or RateLimitConfig()

    def _build_key(
        self,
        identifier: str,
        endpoint: str,
        config: Optional[RateLimitConfig] = None,
    ) -> str:
        """
        Build Redis key for rate limit counter.

        Format: {prefix}:{endpoint_normalized}:{identifier}
        """
        config = config or self._config
        normalized_endpoint = endpoint.strip("/").replace("/", ":")

        return f"{config.key_prefix}:{normalized_endpoint}:{identifier}"

    async def check_rate_limit(
        self,
        identifier: str,
        endpoint: str,
        config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        """
        Increment the client's counter and check it against the limit.

        Args:
            identifier: Client identifier (IP address)
            endpoint: API endpoint being accessed
            config: Endpoint-specific limits (defaults to the limiter's own)

        Returns:
            RateLimitResult with allowed status and metadata
        """
        config = config or self._config
        key = self._build_key(identifier, endpoint, config)

        try:
            pipe = self._redis.pipeline()
            pipe.incr(key)
            pipe.expire(key, config.window_seconds)

            results = await pipe.execute()
            current_count = results[0]

            allowed = current_count <= config.requests_per_window
            remaining = max(0, config.requests_per_window - current_count)

            return RateLimitResult(
                allowed=allowed,
                remaining=remaining,
                reset_after=config.window_seconds,
                limit=config.requests_per_window,
            )

        except Exception as e:
            # Fail-open: allow request if Redis is unavailable
            # WHY: A Redis outage must not lock every client out.
            logger.error(
                f"Rate limit Redis error (allowing request): {e}",
                extra={
                    "identifier": identifier,
                    "endpoint": endpoint,
                    "error": str(e),
                },
            )
            return RateLimitResult(
                allowed=True,
                remaining=-1,
                reset_after=config.window_seconds,
                limit=config.requests_per_window,
            )


# ============================================================================
# Global Rate Limiter Instance
# ============================================================================


_rate_limiter: Optional[RateLimiter] = None


async def get_rate_limiter() -> RateLimiter:
    """
    Get or create global rate limiter instance.

    HOW: Creates the Redis client on first call, reuses it afterwards.
    Tests replace this function to avoid Redis.

    Returns:
        RateLimiter instance
    """
    global _rate_limiter

    if _rate_limiter is None:
        redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        _rate_limiter = RateLimiter(redis_client=redis_client)

    return _rate_limiter


# ============================================================================
# Rate Limit Middleware
# ============================================================================


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Middleware applying ENDPOINT_RATE_LIMITS.

    WHY: Rejects abusive clients before any store is touched, and adds
    rate limit headers to every limited response.

    Usage:
        app.add_middleware(RateLimitMiddleware)
    """

    RATE_LIMITED_PATHS = frozenset(ENDPOINT_RATE_LIMITS)

    async def dispatch(self, request: Request, call_next):
        """
        Process request through rate limiting.

        Args:
            request: Incoming HTTP request
            call_next: Next middleware/handler in chain

        Returns:
            Response (either from handler or 429 if rate limited)
        """
        path = request.url.path

        if path not in self.RATE_LIMITED_PATHS:
            return await call_next(request)

        identifier = get_client_ip(request)

        try:
            limiter = await get_rate_limiter()
            result = await limiter.check_rate_limit(identifier, path, ENDPOINT_RATE_LIMITS[path])
        except Exception as e:
            # Fail-open
            logger.error(f"Rate limit middleware error: {e}")
            return await call_next(request)

        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={"identifier": identifier, "endpoint": path},
            )
            exceeded = RateLimitExceeded(
                message=f"Rate limit exceeded. Try again in {result.reset_after} seconds.",
                retry_after=result.reset_after,
            )
            return JSONResponse(
                status_code=exceeded.status_code,
                content=exceeded.to_dict(),
                headers={
                    "X-RateLimit-Limit": str(result.limit),
                    "X-RateLimit-Remaining": str(result.remaining),
                    "X-RateLimit-Reset": str(result.reset_after),
                    "Retry-After": str(result.reset_after),
                },
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(result.reset_after)

        return response
