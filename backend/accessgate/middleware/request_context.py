"""
Request context middleware.

WHAT: Captures per-request context (request ID, client address, user agent)
and makes it available for the whole request lifecycle.

WHY: Access decisions and token events are security events. Log lines
from services and stores need the request ID and client address for
correlation without threading a request object through every call.

HOW: Stores context in request.state and in a ContextVar, so it can be
read from handlers and from services alike.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from accessgate.core.config import settings
from accessgate.services.ip_detection import addresses_from_headers


REQUEST_ID_HEADER = "X-Request-ID"


@dataclass(frozen=True)
class RequestContext:
    """
    Request-scoped context.

    Fields:
    - request_id: Unique identifier for the request (for log correlation)
    - ip_address: Client's address (considering proxies)
    - user_agent: Client's browser/application identifier
    - path: Request path
    - method: HTTP method
    """

    request_id: str
    ip_address: str
    user_agent: Optional[str]
    path: str
    method: str


# WHY: ContextVar gives each async request its own isolated context
_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """
    Get the current request context.

    Returns:
        RequestContext if within a request, None otherwise
    """
    return _request_context.get()


def get_client_ip(request: Request) -> str:
    """
    Best single client address for a request.

    Uses the same header rules as address detection, falling back to the
    direct connection address and finally "unknown".

    Security Note:
        These headers can be spoofed by clients if not behind a trusted proxy.
    """
    client_host = request.client.host if request.client else None
    candidates = addresses_from_headers(
        request.headers, client_host, settings.TRUST_FORWARDED_HEADERS
    )
    return candidates[0] if candidates else "unknown"


def get_user_agent(request: Request) -> Optional[str]:
    return request.headers.get("User-Agent")


def _request_id(request: Request) -> str:
    # Keep an upstream request ID if it is plausible, otherwise mint one
    incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if incoming and len(incoming) <= 64 and incoming.replace("-", "").isalnum():
        return incoming
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that captures and stores request context.

    HOW: Stores context in both:
    - request.state.context (for route handlers)
    - a ContextVar (for services without the request object)

    The request ID is echoed back in the X-Request-ID response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = _request_id(request)

        context = RequestContext(
            request_id=request_id,
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
            path=request.url.path,
            method=request.method,
        )

        request.state.context = context
        token = _request_context.set(context)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response

        finally:
            # Reset context var to prevent leaks
            _request_context.reset(token)
