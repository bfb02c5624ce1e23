"""
Access decision engine.

WHAT: Turns a caller's detected address(es), the allow-list and the
public-access override into an allow/deny verdict with a reason code.

WHY: The decision must be reproducible and explainable. Every verdict
carries a closed reason code so callers (and the HTTP layer) can tell an
unauthorized address apart from a store outage.

HOW: First match wins:
0. Development bypass -> DEVELOPMENT_MODE (logged at WARNING every time)
1. Public access enabled -> PUBLIC_ACCESS
2. No usable address -> IP_NOT_DETECTED
3. Every address malformed -> INVALID_IP_FORMAT
4. A normalized address is on the allow-list -> IP_AUTHORIZED
5. Otherwise -> IP_NOT_AUTHORIZED

The engine only reads. Store failures and timeouts become
VERIFICATION_FAILED; detector failures become NETWORK_ERROR. Nothing is
retried here, retry policy belongs to the caller.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, TYPE_CHECKING

from accessgate.core.clock import Clock, utcnow
from accessgate.core.exceptions import DetectionUnavailableError, StoreUnavailableError
from accessgate.services import ip_validation
from accessgate.services.ip_validation import IPType
from accessgate.stores.interfaces import AllowListStore, PublicAccessStore

if TYPE_CHECKING:
    from accessgate.services.ip_detection import AddressDetector


logger = logging.getLogger(__name__)


class AccessReason(str, enum.Enum):
    """Why a verdict came out the way it did."""

    PUBLIC_ACCESS = "PUBLIC_ACCESS"
    IP_AUTHORIZED = "IP_AUTHORIZED"
    IP_NOT_AUTHORIZED = "IP_NOT_AUTHORIZED"
    IP_NOT_DETECTED = "IP_NOT_DETECTED"
    INVALID_IP_FORMAT = "INVALID_IP_FORMAT"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    DEVELOPMENT_MODE = "DEVELOPMENT_MODE"


MESSAGES = {
    AccessReason.PUBLIC_ACCESS: "Public access enabled",
    AccessReason.IP_AUTHORIZED: "Access authorized",
    AccessReason.IP_NOT_AUTHORIZED: "Your IP address is not authorized to access this platform",
    AccessReason.IP_NOT_DETECTED: "Could not determine your IP address",
    AccessReason.INVALID_IP_FORMAT: "Invalid IP address format",
    AccessReason.VERIFICATION_FAILED: "Access verification failed",
    AccessReason.NETWORK_ERROR: "Network error while detecting your IP address",
    AccessReason.DEVELOPMENT_MODE: "Development mode - IP verification disabled",
}

# Placeholder some proxies report when they do not know the client address
UNKNOWN_ADDRESS = "unknown"


@dataclass(frozen=True)
class Verdict:
    """Outcome of one access decision."""

    allowed: bool
    reason_code: AccessReason
    message: str
    matched_address: Optional[str] = None
    detected_type: Optional[IPType] = None
    detected_addresses: List[str] = field(default_factory=list)
    decided_at: Optional[datetime] = None


def _usable(addresses: Optional[Iterable[str]]) -> List[str]:
    usable = []
    for address in addresses or []:
        if not isinstance(address, str):
            continue
        candidate = address.strip()
        if candidate and candidate.lower() != UNKNOWN_ADDRESS:
            usable.append(candidate)
    return usable


class AccessDecisionEngine:
    """
    Read-only access decision over the allow-list and public-access stores.

    Args:
        public_access_store: Source of the override singleton
        allow_list_store: Source of authorized addresses
        timeout: Seconds allowed per store or detector call
        bypass_enabled: Development/offline mode; every decision succeeds
        clock: Time source stamped on verdicts
    """

    def __init__(
        self,
        public_access_store: PublicAccessStore,
        allow_list_store: AllowListStore,
        timeout: float = 5.0,
        bypass_enabled: bool = False,
        clock: Clock = utcnow,
    ):
        self.public_access_store = public_access_store
        self.allow_list_store = allow_list_store
        self.timeout = timeout
        self.bypass_enabled = bypass_enabled
        self.clock = clock

    async def decide(
        self,
        detected_addresses: Optional[Iterable[str]],
        now: Optional[datetime] = None,
    ) -> Verdict:
        """
        Decide whether a caller with these addresses may access the platform.

        Args:
            detected_addresses: Addresses reported for the caller, most
                specific first (blank and "unknown" entries are ignored)
            now: Decision time (defaults to the engine clock)

        Returns:
            Verdict; never raises for store failures
        """
        now = now or self.clock()
        addresses = _usable(detected_addresses)

        if self.bypass_enabled:
            logger.warning(
                "ACCESS_CHECK_BYPASS is enabled: address check skipped",
                extra={"detected_addresses": addresses},
            )
            return self._verdict(True, AccessReason.DEVELOPMENT_MODE, now, addresses)

        try:
            config = await asyncio.wait_for(self.public_access_store.get(), self.timeout)
            if config.enabled:
                return self._verdict(True, AccessReason.PUBLIC_ACCESS, now, addresses)

            if not addresses:
                return self._verdict(False, AccessReason.IP_NOT_DETECTED, now, addresses)

            typed = [(address, ip_validation.classify(address)) for address in addresses]
            valid = [(address, ip_type) for address, ip_type in typed if ip_type is not IPType.INVALID]
            if not valid:
                return self._verdict(False, AccessReason.INVALID_IP_FORMAT, now, addresses)

            entries = await asyncio.wait_for(self.allow_list_store.list(), self.timeout)
        except asyncio.TimeoutError:
            logger.error("Access decision timed out waiting for a store")
            return self._verdict(False, AccessReason.VERIFICATION_FAILED, now, addresses)
        except StoreUnavailableError as e:
            logger.error(f"Access decision failed: {e.message}")
            return self._verdict(False, AccessReason.VERIFICATION_FAILED, now, addresses)

        allowed_by_key = {}
        for entry in entries:
            key = ip_validation.normalize(entry.address)
            if key is not None:
                allowed_by_key.setdefault(key, entry.address)

        for address, ip_type in valid:
            matched = allowed_by_key.get(ip_validation.normalize(address))
            if matched is not None:
                return self._verdict(
                    True,
                    AccessReason.IP_AUTHORIZED,
                    now,
                    addresses,
                    matched_address=matched,
                    detected_type=ip_type,
                )

        logger.info(
            "Access denied: address not on allow-list",
            extra={"detected_addresses": addresses},
        )
        return self._verdict(
            False,
            AccessReason.IP_NOT_AUTHORIZED,
            now,
            addresses,
            detected_type=valid[0][1],
        )

    async def decide_with_detector(
        self,
        detector: "AddressDetector",
        now: Optional[datetime] = None,
    ) -> Verdict:
        """
        Detect the caller's addresses, then decide.

        Detector failures and timeouts yield NETWORK_ERROR. In bypass mode
        the detector is not consulted at all.
        """
        now = now or self.clock()

        if self.bypass_enabled:
            return await self.decide([], now=now)

        try:
            addresses = await asyncio.wait_for(detector.detect(), self.timeout)
        except asyncio.TimeoutError:
            logger.error("Address detection timed out")
            return self._verdict(False, AccessReason.NETWORK_ERROR, now, [])
        except DetectionUnavailableError as e:
            logger.error(f"Address detection failed: {e.message}")
            return self._verdict(False, AccessReason.NETWORK_ERROR, now, [])

        return await self.decide(addresses, now=now)

    @staticmethod
    def _verdict(
        allowed: bool,
        reason: AccessReason,
        now: datetime,
        addresses: List[str],
        matched_address: Optional[str] = None,
        detected_type: Optional[IPType] = None,
    ) -> Verdict:
        return Verdict(
            allowed=allowed,
            reason_code=reason,
            message=MESSAGES[reason],
            matched_address=matched_address,
            detected_type=detected_type,
            detected_addresses=list(addresses),
            decided_at=now,
        )
