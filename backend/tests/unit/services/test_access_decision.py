"""
Tests for the access decision engine.

WHY: The verdict is the gate to the whole platform. These tests pin the
evaluation order (bypass, public access, detection, format, allow-list)
and check that outages are reported as such instead of as denials.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from accessgate.core.exceptions import DetectionUnavailableError, StoreUnavailableError
from accessgate.services.access_decision import AccessDecisionEngine, AccessReason
from accessgate.services.ip_detection import AddressDetector
from accessgate.services.ip_validation import IPType
from accessgate.stores.memory import MemoryAllowListStore, MemoryPublicAccessStore
from tests.factories import FrozenClock, T0


class StaticDetector(AddressDetector):
    def __init__(self, addresses):
        self.addresses = addresses

    async def detect(self):
        return list(self.addresses)


class FailingDetector(AddressDetector):
    async def detect(self):
        raise DetectionUnavailableError(message="endpoint unreachable")


class SlowDetector(AddressDetector):
    async def detect(self):
        await asyncio.sleep(1)
        return ["203.0.113.7"]


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def allow_list(clock):
    return MemoryAllowListStore(clock=clock)


@pytest.fixture
def public_access(clock):
    return MemoryPublicAccessStore(clock=clock)


@pytest.fixture
def engine(allow_list, public_access, clock):
    return AccessDecisionEngine(public_access, allow_list, timeout=0.5, clock=clock)


class TestDecide:
    """Tests for AccessDecisionEngine.decide()."""

    @pytest.mark.asyncio
    async def test_unlisted_address_denied(self, engine):
        """Public access disabled, empty allow-list -> IP_NOT_AUTHORIZED."""
        verdict = await engine.decide(["203.0.113.7"])

        assert verdict.allowed is False
        assert verdict.reason_code is AccessReason.IP_NOT_AUTHORIZED
        assert verdict.matched_address is None
        assert verdict.detected_type is IPType.IPV4

    @pytest.mark.asyncio
    async def test_listed_address_authorized(self, engine, allow_list):
        await allow_list.add("203.0.113.7", "office", "admin-1")

        verdict = await engine.decide(["203.0.113.7"])

        assert verdict.allowed is True
        assert verdict.reason_code is AccessReason.IP_AUTHORIZED
        assert verdict.matched_address == "203.0.113.7"
        assert verdict.detected_type is IPType.IPV4

    @pytest.mark.asyncio
    async def test_public_access_allows_without_addresses(self, engine, public_access):
        """Public access wins even when nothing was detected."""
        await public_access.set(True, actor="X", reason="open day")

        verdict = await engine.decide([])

        assert verdict.allowed is True
        assert verdict.reason_code is AccessReason.PUBLIC_ACCESS

    @pytest.mark.asyncio
    async def test_public_access_ignores_allow_list_and_format(self, engine, public_access):
        await public_access.set(True, actor="X")

        verdict = await engine.decide(["not-an-address"])

        assert verdict.allowed is True
        assert verdict.reason_code is AccessReason.PUBLIC_ACCESS

    @pytest.mark.asyncio
    @pytest.mark.parametrize("addresses", [[], None, ["", "  "], ["unknown"], ["UNKNOWN", ""]])
    async def test_nothing_detected(self, engine, addresses):
        verdict = await engine.decide(addresses)

        assert verdict.allowed is False
        assert verdict.reason_code is AccessReason.IP_NOT_DETECTED

    @pytest.mark.asyncio
    async def test_all_malformed(self, engine):
        verdict = await engine.decide(["999.1.1.1", "garbage"])

        assert verdict.allowed is False
        assert verdict.reason_code is AccessReason.INVALID_IP_FORMAT

    @pytest.mark.asyncio
    async def test_any_valid_listed_address_is_enough(self, engine, allow_list):
        """Malformed entries are skipped; one listed address authorizes."""
        await allow_list.add("2001:db8::1", "", "admin-1")

        verdict = await engine.decide(["garbage", "198.51.100.1", "2001:DB8:0:0:0:0:0:1"])

        assert verdict.allowed is True
        assert verdict.matched_address == "2001:db8::1"
        assert verdict.detected_type is IPType.IPV6

    @pytest.mark.asyncio
    async def test_ipv4_mapped_matches_ipv4_entry(self, engine, allow_list):
        await allow_list.add("203.0.113.7", "", "admin-1")

        verdict = await engine.decide(["::ffff:203.0.113.7"])

        assert verdict.allowed is True
        assert verdict.reason_code is AccessReason.IP_AUTHORIZED
        assert verdict.matched_address == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_verdict_carries_message_and_time(self, engine):
        verdict = await engine.decide([" 203.0.113.7 "])

        assert verdict.message
        assert verdict.decided_at == T0
        assert verdict.detected_addresses == ["203.0.113.7"]

    @pytest.mark.asyncio
    async def test_store_failure_is_verification_failed(self, allow_list, clock):
        public_access = AsyncMock()
        public_access.get = AsyncMock(side_effect=StoreUnavailableError())
        engine = AccessDecisionEngine(public_access, allow_list, clock=clock)

        verdict = await engine.decide(["203.0.113.7"])

        assert verdict.allowed is False
        assert verdict.reason_code is AccessReason.VERIFICATION_FAILED

    @pytest.mark.asyncio
    async def test_store_timeout_is_verification_failed(self, public_access, clock):
        async def slow_list():
            await asyncio.sleep(1)
            return []

        allow_list = AsyncMock()
        allow_list.list = slow_list
        engine = AccessDecisionEngine(public_access, allow_list, timeout=0.05, clock=clock)

        verdict = await engine.decide(["203.0.113.7"])

        assert verdict.reason_code is AccessReason.VERIFICATION_FAILED

    @pytest.mark.asyncio
    async def test_decide_does_not_write(self, engine, allow_list, public_access):
        await allow_list.add("203.0.113.7", "", "admin-1")
        before = (await allow_list.list(), await public_access.get())

        await engine.decide(["203.0.113.7"])
        await engine.decide(["198.51.100.9"])

        assert (await allow_list.list(), await public_access.get()) == before


class TestBypass:
    """Tests for development mode."""

    @pytest.mark.asyncio
    async def test_bypass_allows_everything(self, allow_list, public_access, clock, caplog):
        engine = AccessDecisionEngine(public_access, allow_list, bypass_enabled=True, clock=clock)

        with caplog.at_level("WARNING"):
            verdict = await engine.decide([])

        assert verdict.allowed is True
        assert verdict.reason_code is AccessReason.DEVELOPMENT_MODE
        assert "ACCESS_CHECK_BYPASS" in caplog.text

    @pytest.mark.asyncio
    async def test_bypass_skips_detector(self, allow_list, public_access, clock):
        engine = AccessDecisionEngine(public_access, allow_list, bypass_enabled=True, clock=clock)

        verdict = await engine.decide_with_detector(FailingDetector())

        assert verdict.reason_code is AccessReason.DEVELOPMENT_MODE


class TestDecideWithDetector:
    """Tests for AccessDecisionEngine.decide_with_detector()."""

    @pytest.mark.asyncio
    async def test_detected_addresses_are_decided(self, engine, allow_list):
        await allow_list.add("203.0.113.7", "", "admin-1")

        verdict = await engine.decide_with_detector(StaticDetector(["203.0.113.7"]))

        assert verdict.reason_code is AccessReason.IP_AUTHORIZED

    @pytest.mark.asyncio
    async def test_detector_failure_is_network_error(self, engine):
        verdict = await engine.decide_with_detector(FailingDetector())

        assert verdict.allowed is False
        assert verdict.reason_code is AccessReason.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_detector_timeout_is_network_error(self, allow_list, public_access, clock):
        engine = AccessDecisionEngine(public_access, allow_list, timeout=0.05, clock=clock)

        verdict = await engine.decide_with_detector(SlowDetector())

        assert verdict.reason_code is AccessReason.NETWORK_ERROR
