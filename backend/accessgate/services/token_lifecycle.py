"""
Verification token lifecycle.

WHAT: Issues, validates, consumes and expires registration and
login-verification tokens, and rate-limits issuance and code guessing.

WHY: Tokens are single-use credentials. The two races that matter are
closed by the store, never by a read followed by a write:
1. Two redemptions of one token: consume is a compare-and-swap
   active -> used, so exactly one caller wins
2. Two issuances for one subject: create is conditional on the subject
   having no active token, so the loser sees TOKEN_ALREADY_ACTIVE
3. Concurrent code guesses: each guess claims an attempt with a guarded
   increment before the code is compared, so no more than
   max_code_attempts wrong codes are ever evaluated

HOW: State machine
    active --(consume wins)--> used
    active --(now > expires_at, seen by issue/validate/consume)--> expired
used and expired are terminal. Expiry is applied lazily: a token past
expires_at is never accepted even if nothing has marked it expired yet.

Every public operation returns a result object with a TokenReason. Store
failures and timeouts become VERIFICATION_FAILED instead of escaping.
"""

import asyncio
import enum
import hmac
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Optional, TypeVar

from accessgate.core.clock import Clock, utcnow
from accessgate.core.exceptions import (
    ActiveTokenConflictError,
    InputError,
    StoreUnavailableError,
)
from accessgate.stores.interfaces import TokenStore
from accessgate.stores.records import TokenPurpose, TokenStatus, VerificationToken


logger = logging.getLogger(__name__)

T = TypeVar("T")


class TokenReason(str, enum.Enum):
    """Outcome codes for issue/validate/consume."""

    OK = "OK"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_ALREADY_USED = "TOKEN_ALREADY_USED"
    TOKEN_SUBJECT_MISMATCH = "TOKEN_SUBJECT_MISMATCH"
    TOKEN_CODE_MISMATCH = "TOKEN_CODE_MISMATCH"
    RATE_LIMITED = "RATE_LIMITED"
    TOKEN_ALREADY_ACTIVE = "TOKEN_ALREADY_ACTIVE"
    SUBJECT_ALREADY_CONSUMED = "SUBJECT_ALREADY_CONSUMED"
    CODE_REQUIRED = "CODE_REQUIRED"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"


@dataclass(frozen=True)
class TokenPolicy:
    """Windows and limits applied by the lifecycle manager."""

    registration_window: timedelta = timedelta(hours=12)
    login_window: timedelta = timedelta(minutes=5)
    issue_limit: int = 5
    rate_window: timedelta = timedelta(hours=1)
    max_code_attempts: int = 5
    code_length: int = 6
    verified_window: timedelta = timedelta(hours=24)

    @classmethod
    def from_settings(cls, config) -> "TokenPolicy":
        return cls(
            registration_window=timedelta(hours=config.REGISTRATION_TOKEN_HOURS),
            login_window=timedelta(minutes=config.LOGIN_VERIFICATION_MINUTES),
            issue_limit=config.TOKEN_ISSUE_LIMIT,
            rate_window=timedelta(seconds=config.TOKEN_ISSUE_WINDOW_SECONDS),
            max_code_attempts=config.MAX_CODE_ATTEMPTS,
            code_length=config.TOKEN_CODE_LENGTH,
            verified_window=timedelta(hours=config.LOGIN_VERIFIED_HOURS),
        )

    def window_for(self, purpose: TokenPurpose) -> timedelta:
        if purpose is TokenPurpose.REGISTRATION:
            return self.registration_window
        return self.login_window


@dataclass(frozen=True)
class IssueResult:
    success: bool
    reason_code: TokenReason
    token: Optional[VerificationToken] = None


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason_code: TokenReason
    token: Optional[VerificationToken] = None


@dataclass(frozen=True)
class ConsumeResult:
    success: bool
    reason_code: TokenReason
    token: Optional[VerificationToken] = None


@dataclass(frozen=True)
class LoginVerificationStatus:
    needs_verification: bool
    last_verified_at: Optional[datetime] = None
    verified_until: Optional[datetime] = None


def normalize_subject(subject) -> str:
    """Subjects are compared trimmed and case-insensitively."""
    if not isinstance(subject, str):
        return ""
    return subject.strip().lower()


class TokenLifecycleManager:
    """
    Token issuance and redemption over a TokenStore.

    Args:
        store: Token persistence
        clock: Time source used when callers do not pass `now`
        policy: Windows and limits
        timeout: Seconds allowed per store call
    """

    def __init__(
        self,
        store: TokenStore,
        clock: Clock = utcnow,
        policy: Optional[TokenPolicy] = None,
        timeout: float = 5.0,
    ):
        self.store = store
        self.clock = clock
        self.policy = policy or TokenPolicy()
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    async def issue(
        self,
        subject: str,
        purpose: TokenPurpose,
        window: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> IssueResult:
        """
        Issue a new active token for a subject.

        Checks, in order: issuance rate, an existing active token (expired
        ones are retired on the way), and for registration tokens whether
        the subject already registered.

        Raises:
            InputError: If the subject is blank or the window is not positive
        """
        now = now or self.clock()
        subject = normalize_subject(subject)
        purpose = TokenPurpose(purpose)
        window = self.policy.window_for(purpose) if window is None else window

        if not subject:
            raise InputError(message="Subject cannot be empty")
        if window <= timedelta(0):
            raise InputError(message="Token window must be positive", window=str(window))

        try:
            issued = await self.attempts_in_window(subject, self.policy.rate_window, now=now)
            if issued >= self.policy.issue_limit:
                logger.warning(
                    "Token issuance rate limited",
                    extra={"purpose": purpose.value, "issued_in_window": issued},
                )
                return IssueResult(success=False, reason_code=TokenReason.RATE_LIMITED)

            active = await self._call(self.store.get_by_subject_active(subject))
            if active is not None:
                if not active.is_past_expiry(now):
                    return IssueResult(success=False, reason_code=TokenReason.TOKEN_ALREADY_ACTIVE)
                await self._expire(active, now)

            if purpose is TokenPurpose.REGISTRATION:
                if await self._call(self.store.has_used(subject, purpose)):
                    return IssueResult(
                        success=False,
                        reason_code=TokenReason.SUBJECT_ALREADY_CONSUMED,
                    )

            token = VerificationToken(
                id=uuid.uuid4().hex,
                subject=subject,
                purpose=purpose,
                secret=secrets.token_urlsafe(32),
                code=self._generate_code(),
                created_at=now,
                expires_at=now + window,
                status=TokenStatus.ACTIVE,
            )

            try:
                await self._call(self.store.create(token))
            except ActiveTokenConflictError:
                # A concurrent issuer created the subject's token first
                return IssueResult(success=False, reason_code=TokenReason.TOKEN_ALREADY_ACTIVE)

        except StoreUnavailableError as e:
            logger.error(f"Token issuance failed: {e.message}", extra={"purpose": purpose.value})
            return IssueResult(success=False, reason_code=TokenReason.VERIFICATION_FAILED)

        logger.info(
            f"Issued {purpose.value} token",
            extra={"token_id": token.id, "expires_at": token.expires_at.isoformat()},
        )
        return IssueResult(success=True, reason_code=TokenReason.OK, token=token)

    async def attempts_in_window(
        self,
        subject: str,
        window: timedelta,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Number of tokens created for the subject in the trailing window.

        Raises:
            StoreUnavailableError: If the store fails or times out
        """
        now = now or self.clock()
        return await self._call(
            self.store.count_created_since(normalize_subject(subject), now - window)
        )

    # ------------------------------------------------------------------
    # Validation and consumption
    # ------------------------------------------------------------------

    async def validate(
        self,
        token_ref: str,
        presented_subject: Optional[str] = None,
        presented_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """
        Check a presented token without consuming it.

        Args:
            token_ref: Token id or link secret
            presented_subject: Subject claimed by the caller, if any
            presented_code: Code typed by the caller, if any
            now: Validation time

        Returns:
            ValidationResult; a wrong code counts as a failed attempt
        """
        now = now or self.clock()

        try:
            token = await self._lookup(token_ref)
            if token is None:
                return ValidationResult(valid=False, reason_code=TokenReason.TOKEN_NOT_FOUND)

            terminal = await self._terminal_reason(token, now)
            if terminal is not None:
                return ValidationResult(valid=False, reason_code=terminal, token=token)

            if presented_subject is not None and normalize_subject(presented_subject) != token.subject:
                return ValidationResult(
                    valid=False,
                    reason_code=TokenReason.TOKEN_SUBJECT_MISMATCH,
                    token=token,
                )

            if token.attempts >= self.policy.max_code_attempts:
                return ValidationResult(valid=False, reason_code=TokenReason.RATE_LIMITED, token=token)

            code = presented_code.strip() if isinstance(presented_code, str) else ""
            if not code:
                if token.purpose is TokenPurpose.LOGIN_VERIFICATION:
                    return ValidationResult(
                        valid=False,
                        reason_code=TokenReason.CODE_REQUIRED,
                        token=token,
                    )
                return ValidationResult(valid=True, reason_code=TokenReason.OK, token=token)

            if not await self._call(
                self.store.reserve_code_attempt(token.id, self.policy.max_code_attempts, now)
            ):
                # Concurrent guesses used up the remaining attempts
                return ValidationResult(valid=False, reason_code=TokenReason.RATE_LIMITED, token=token)

            if token.code is None or not hmac.compare_digest(code.encode(), token.code.encode()):
                logger.info("Verification code mismatch", extra={"token_id": token.id})
                return ValidationResult(
                    valid=False,
                    reason_code=TokenReason.TOKEN_CODE_MISMATCH,
                    token=token,
                )

            # Only failed guesses count against the token
            await self._call(self.store.release_code_attempt(token.id))

        except StoreUnavailableError as e:
            logger.error(f"Token validation failed: {e.message}")
            return ValidationResult(valid=False, reason_code=TokenReason.VERIFICATION_FAILED)

        return ValidationResult(valid=True, reason_code=TokenReason.OK, token=token)

    async def consume(self, token_ref: str, now: Optional[datetime] = None) -> ConsumeResult:
        """
        Mark a token used.

        Exactly one of any number of concurrent callers succeeds; the others
        get TOKEN_ALREADY_USED.
        """
        now = now or self.clock()

        try:
            token = await self._lookup(token_ref)
            if token is None:
                return ConsumeResult(success=False, reason_code=TokenReason.TOKEN_NOT_FOUND)

            terminal = await self._terminal_reason(token, now)
            if terminal is not None:
                return ConsumeResult(success=False, reason_code=terminal, token=token)

            swapped = await self._call(
                self.store.compare_and_swap_status(
                    token.id, TokenStatus.ACTIVE, TokenStatus.USED, now
                )
            )
            if swapped:
                logger.info("Token consumed", extra={"token_id": token.id})
                return ConsumeResult(
                    success=True,
                    reason_code=TokenReason.OK,
                    token=token.with_status(TokenStatus.USED, now),
                )

            # Lost the race; report what the winner left behind
            current = await self._call(self.store.get_by_id(token.id))

        except StoreUnavailableError as e:
            logger.error(f"Token consumption failed: {e.message}")
            return ConsumeResult(success=False, reason_code=TokenReason.VERIFICATION_FAILED)

        if current is None:
            return ConsumeResult(success=False, reason_code=TokenReason.TOKEN_NOT_FOUND)
        if current.status is TokenStatus.EXPIRED:
            return ConsumeResult(success=False, reason_code=TokenReason.TOKEN_EXPIRED, token=current)
        return ConsumeResult(success=False, reason_code=TokenReason.TOKEN_ALREADY_USED, token=current)

    async def redeem(
        self,
        token_ref: str,
        presented_subject: Optional[str] = None,
        presented_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ConsumeResult:
        """Validate the presented token, then consume it."""
        now = now or self.clock()

        validation = await self.validate(
            token_ref,
            presented_subject=presented_subject,
            presented_code=presented_code,
            now=now,
        )
        if not validation.valid:
            return ConsumeResult(
                success=False,
                reason_code=validation.reason_code,
                token=validation.token,
            )

        return await self.consume(validation.token.id, now=now)

    async def login_verification_status(
        self,
        subject: str,
        now: Optional[datetime] = None,
    ) -> LoginVerificationStatus:
        """
        Whether the subject has to confirm a login-verification code again.

        A redeemed login-verification token keeps the subject verified for
        `verified_window`; after that, or if it never redeemed one, a new
        verification is needed.

        Raises:
            StoreUnavailableError: If the store fails or times out
        """
        now = now or self.clock()
        last_verified_at = await self._call(
            self.store.last_used_at(normalize_subject(subject), TokenPurpose.LOGIN_VERIFICATION)
        )
        if last_verified_at is None:
            return LoginVerificationStatus(needs_verification=True)

        verified_until = last_verified_at + self.policy.verified_window
        return LoginVerificationStatus(
            needs_verification=now > verified_until,
            last_verified_at=last_verified_at,
            verified_until=verified_until,
        )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def withdraw(self, token_id: str, now: Optional[datetime] = None) -> bool:
        """
        Retire an active token that never reached its recipient.

        Returns:
            True if the token was active and is now expired

        Raises:
            StoreUnavailableError: If the store fails or times out
        """
        now = now or self.clock()
        withdrawn = await self._call(
            self.store.compare_and_swap_status(token_id, TokenStatus.ACTIVE, TokenStatus.EXPIRED, now)
        )
        if withdrawn:
            logger.info("Undelivered token withdrawn", extra={"token_id": token_id})
        return withdrawn

    async def purge(self, older_than: timedelta, now: Optional[datetime] = None) -> int:
        """
        Delete tokens that expired more than `older_than` ago.

        Raises:
            InputError: If older_than is negative
            StoreUnavailableError: If the store fails or times out
        """
        if older_than < timedelta(0):
            raise InputError(message="Retention period cannot be negative")

        now = now or self.clock()
        return await self._call(self.store.purge_terminal_before(now - older_than))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(message="Token store timed out", store="tokens") from e

    async def _lookup(self, token_ref) -> Optional[VerificationToken]:
        if not isinstance(token_ref, str) or not token_ref.strip():
            return None
        token_ref = token_ref.strip()

        token = await self._call(self.store.get_by_id(token_ref))
        if token is None:
            token = await self._call(self.store.get_by_secret(token_ref))
        return token

    async def _terminal_reason(self, token: VerificationToken, now: datetime) -> Optional[TokenReason]:
        """Reason the token can no longer be used, expiring it lazily."""
        if token.status is TokenStatus.USED:
            return TokenReason.TOKEN_ALREADY_USED
        if token.status is TokenStatus.EXPIRED:
            return TokenReason.TOKEN_EXPIRED
        if token.is_past_expiry(now):
            await self._expire(token, now)
            return TokenReason.TOKEN_EXPIRED
        return None

    async def _expire(self, token: VerificationToken, now: datetime) -> None:
        # Losing this swap is fine: someone else already moved the token on
        if await self._call(
            self.store.compare_and_swap_status(token.id, TokenStatus.ACTIVE, TokenStatus.EXPIRED, now)
        ):
            logger.info("Token expired", extra={"token_id": token.id})

    def _generate_code(self) -> str:
        length = self.policy.code_length
        return str(secrets.randbelow(10 ** length)).zfill(length)
