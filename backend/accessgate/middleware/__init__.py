"""
Middleware package.

WHY: Middleware provides cross-cutting concerns like request context and
rate limiting that apply to all requests.
"""

from accessgate.middleware.request_context import (
    RequestContextMiddleware,
    get_request_context,
    get_client_ip,
    get_user_agent,
    RequestContext,
)
from accessgate.middleware.rate_limiter import (
    RateLimitMiddleware,
    RateLimiter,
    RateLimitConfig,
    RateLimitResult,
    get_rate_limiter,
    ENDPOINT_RATE_LIMITS,
)

__all__ = [
    # Request context
    "RequestContextMiddleware",
    "get_request_context",
    "get_client_ip",
    "get_user_agent",
    "RequestContext",
    # Rate limiting
    "RateLimitMiddleware",
    "RateLimiter",
    "RateLimitConfig",
    "RateLimitResult",
    "get_rate_limiter",
    "ENDPOINT_RATE_LIMITS",
]
