"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the API
2. HTTP status code mapping for FastAPI
3. Structured error responses with contextual data
4. No token secrets or verification codes in error messages

The access-decision and token-lifecycle operations do not let these
exceptions escape: they translate them into reason codes. Administrative
operations and the HTTP layer raise them and rely on the handlers in
accessgate.core.exception_handlers.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        # WHY: Token secrets and codes are credentials in this domain
        sensitive_fields = {"password", "token", "secret", "key", "api_key", "code"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when authentication fails.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class AuthorizationError(AppException):
    """
    Raised when the caller lacks permissions for an action.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


class TokenExpiredError(AuthenticationError):
    """
    Raised when a JWT bearer token has expired.

    HTTP Status: 401 Unauthorized
    """

    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    """
    Raised when a JWT bearer token is malformed or has an invalid signature.

    HTTP Status: 401 Unauthorized
    """

    default_message = "Token is invalid"


# ============================================================================
# Validation & Input Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


class InputError(ValidationError):
    """
    Raised when input is malformed (bad address format, non-positive window).

    HTTP Status: 400 Bad Request
    """

    default_message = "Invalid input"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class ResourceAlreadyExistsError(AppException):
    """
    Raised when attempting to create a resource that already exists.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Resource already exists"


class DuplicateAddressError(ResourceAlreadyExistsError):
    """
    Raised when an address (after normalization) is already on the allow-list.

    HTTP Status: 409 Conflict
    """

    default_message = "This IP address is already on the allow-list"


class ActiveTokenConflictError(ResourceAlreadyExistsError):
    """
    Raised by a token store when the subject already holds an active token.

    WHY: The conditional create is the only place that can see a concurrent
    issuer win the race; the lifecycle manager turns this into
    TOKEN_ALREADY_ACTIVE.

    HTTP Status: 409 Conflict
    """

    default_message = "An active token already exists for this subject"


# ============================================================================
# State Exceptions
# ============================================================================


class InvalidStateTransitionError(AppException):
    """
    Raised when a token status transition is not allowed.

    Only active -> used and active -> expired exist; terminal states have
    no outgoing transitions. Stores check this before any conditional write.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Invalid state transition"


class ConfigurationError(AppException):
    """
    Raised when the application is started with an unusable configuration.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Invalid configuration"


# ============================================================================
# Infrastructure Exceptions
# ============================================================================


class ExternalServiceError(AppException):
    """
    Base exception for external service failures.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class DetectionUnavailableError(ExternalServiceError):
    """
    Raised when the IP-detection collaborator cannot be reached.

    WHY: Maps to NETWORK_ERROR, which callers render differently from a
    store outage (VERIFICATION_FAILED).

    HTTP Status: 502 Bad Gateway
    """

    default_message = "IP detection endpoint unreachable"


class NotificationError(ExternalServiceError):
    """
    Raised when a verification code could not be handed to the notification channel.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Notification delivery failed"


class StoreUnavailableError(AppException):
    """
    Raised when a persistent store is unreachable, times out, or fails.

    WHY: Store implementations convert driver errors into this single type
    so the core can map it to VERIFICATION_FAILED without knowing the backend.

    HTTP Status: 503 Service Unavailable
    """

    status_code = 503
    default_message = "Access store unavailable"


# ============================================================================
# Rate Limiting Exceptions
# ============================================================================


class RateLimitExceeded(AppException):
    """
    Raised when rate limit is exceeded.

    HTTP Status: 429 Too Many Requests
    """

    status_code = 429
    default_message = "Rate limit exceeded"
