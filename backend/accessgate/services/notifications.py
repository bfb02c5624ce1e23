"""
Verification code delivery.

WHAT: Hands registration links and login-verification codes to a
notification channel.

WHY: Sending messages is outside this service. Issuance endpoints only
need a channel that accepts a notice and reports whether it was taken.
The mock channel logs notices, which is what development uses; tests
also turn on recording so they can read the delivered code back.

HOW: NotificationChannel is the provider interface; MockNotificationChannel
keeps a bounded class-level record of delivered notices when recording
is turned on.
"""

import enum
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Optional

from accessgate.core.clock import utcnow
from accessgate.core.config import settings


logger = logging.getLogger(__name__)


class NoticeType(str, enum.Enum):
    REGISTRATION_INVITE = "registration_invite"
    LOGIN_VERIFICATION = "login_verification"


@dataclass
class VerificationNotice:
    """
    A code or link to deliver to a subject.

    Never logged as a whole: `code` and `link` are credentials.
    """

    recipient: str
    notice_type: NoticeType
    expires_at: datetime
    code: Optional[str] = None
    link: Optional[str] = None


@dataclass
class NotificationResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    channel: Optional[str] = None


class NotificationChannel(ABC):
    """
    Abstract delivery channel.

    WHY: Channels (e-mail, SMS, chat) can be swapped without touching the
    issuance endpoints.
    """

    @abstractmethod
    async def deliver(self, notice: VerificationNotice) -> NotificationResult:
        """
        Deliver a notice.

        Returns:
            NotificationResult with success status and channel details
        """
        pass


class MockNotificationChannel(NotificationChannel):
    """
    Mock channel for testing and development.

    Logs the delivery (without the credential) instead of sending it.
    Notices are only kept when MOCK_NOTIFICATION_RECORD is set, and then
    only the most recent SENT_HISTORY of them.
    """

    SENT_HISTORY = 100

    sent: Deque[VerificationNotice] = deque(maxlen=SENT_HISTORY)
    """Class-level record of delivered notices for testing."""

    async def deliver(self, notice: VerificationNotice) -> NotificationResult:
        logger.info(
            f"[MOCK NOTIFICATION] To: {notice.recipient}, Type: {notice.notice_type.value}"
        )

        if settings.MOCK_NOTIFICATION_RECORD:
            MockNotificationChannel.sent.append(notice)

        return NotificationResult(
            success=True,
            message_id=f"mock-{utcnow().timestamp()}",
            channel="mock",
        )

    @classmethod
    def clear_sent(cls):
        """Clear delivered notices (for test cleanup)."""
        cls.sent.clear()


def registration_link(secret: str, base_url: Optional[str] = None) -> str:
    """Link a registration token is redeemed through."""
    base = (base_url or settings.FRONTEND_URL).rstrip("/")
    return f"{base}/register?token={secret}"


_notification_channel: Optional[NotificationChannel] = None


def get_notification_channel() -> NotificationChannel:
    """
    Get or create the global notification channel.

    No real channel ships with the service, so the mock channel is used.
    """
    global _notification_channel

    if _notification_channel is None:
        logger.warning("No notification channel configured, using mock channel")
        _notification_channel = MockNotificationChannel()

    return _notification_channel
