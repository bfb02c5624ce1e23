"""
JWT authentication utilities.

WHY: Administrators and signed-in users reach the token and allow-list
endpoints with a bearer token issued by the platform's identity service.
This module creates and verifies those tokens; it does not manage accounts.

Claims used:
- sub: subject identifier (user id), also the actor recorded on admin writes
- role: "ADMIN" or "USER"
- email: optional, informational
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Any, Optional
from jose import jwt, JWTError

from accessgate.core.clock import utcnow
from accessgate.core.config import settings
from accessgate.core.exceptions import (
    TokenExpiredError,
    TokenInvalidError,
)


ADMIN_ROLE = "ADMIN"
USER_ROLE = "USER"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller extracted from a verified bearer token."""

    subject: str
    role: str
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Token includes:
    - Caller data (sub, role, email)
    - exp: Expiration time (default: JWT_EXPIRATION_MINUTES)
    - iat: Issued at time
    - nbf: Not before time

    Args:
        data: Claims to encode in the token
        expires_delta: Optional custom expiration time

    Returns:
        JWT token string
    """
    to_encode = data.copy()
    now = utcnow()

    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

    to_encode.update(
        {
            "exp": expire,
            "iat": now,
            "nbf": now,
        }
    )

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        TokenExpiredError: If token has expired
        TokenInvalidError: If token is malformed or signature invalid
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )

    except jwt.ExpiredSignatureError:
        raise TokenExpiredError(message="Token has expired")

    except JWTError as e:
        raise TokenInvalidError(
            message="Invalid token",
            error=str(e),
        )


def principal_from_payload(payload: Dict[str, Any]) -> Principal:
    """
    Build a Principal from verified claims.

    Raises:
        TokenInvalidError: If the subject claim is missing
    """
    subject = payload.get("sub")
    if not subject:
        raise TokenInvalidError(message="Invalid token: missing subject")

    return Principal(
        subject=str(subject),
        role=str(payload.get("role") or USER_ROLE),
        email=payload.get("email"),
    )
