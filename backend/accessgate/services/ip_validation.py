"""
IP address format validation.

WHAT: Classifies address strings as IPv4, IPv6 or invalid, validates
user-entered addresses, and produces the canonical form used for
allow-list comparisons.

WHY: Both the access decision (detected addresses) and the allow-list
administration (entered addresses) must agree on what counts as the
same address, so there is exactly one place that decides.

HOW:
- IPv4: four dot-separated groups of 1-3 digits, each 0-255. Leading
  zeros are accepted and dropped on normalization.
- IPv6: parsed with the standard library ipaddress module, which covers
  full hextet form and "::" compression (including "::" and "::1"). Zone
  ids and prefixes are rejected. A dotted-quad tail is only accepted in
  the IPv4-mapped form; "::1.2.3.4", "64:ff9b::1.2.3.4" and other
  embedded forms are invalid.
- IPv4-mapped IPv6 (::ffff:a.b.c.d) normalizes to its IPv4 form so a proxy
  reporting the mapped form still matches a plain IPv4 entry.
"""

import enum
import ipaddress
import re
from dataclasses import dataclass
from typing import Optional

from accessgate.stores.records import AddressType


_IPV4_PATTERN = re.compile(r"(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})", re.ASCII)

INVALID_FORMAT_MESSAGE = (
    "Invalid IP address format. Valid examples:\n"
    "• IPv4: 192.168.1.1\n"
    "• IPv6: 2001:db8::1, ::1"
)
EMPTY_ADDRESS_MESSAGE = "IP address cannot be empty"


class IPType(str, enum.Enum):
    """Classification result."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"
    INVALID = "invalid"

    def as_address_type(self) -> Optional[AddressType]:
        if self is IPType.INVALID:
            return None
        return AddressType(self.value)


@dataclass(frozen=True)
class IPValidationResult:
    """Outcome of validate(): type on success, error message otherwise."""

    valid: bool
    type: Optional[IPType] = None
    error: Optional[str] = None


def _ipv4_octets(address: str) -> Optional[list]:
    match = _IPV4_PATTERN.fullmatch(address)
    if not match:
        return None
    octets = [int(group) for group in match.groups()]
    if all(0 <= octet <= 255 for octet in octets):
        return octets
    return None


def _parse_ipv6(address: str) -> Optional[ipaddress.IPv6Address]:
    if ":" not in address or "%" in address or "/" in address:
        return None
    try:
        parsed = ipaddress.IPv6Address(address)
    except ValueError:
        return None
    # Dotted-quad tails are only accepted in the IPv4-mapped form
    if "." in address and parsed.ipv4_mapped is None:
        return None
    return parsed


def classify(address) -> IPType:
    """
    Classify an address string.

    No trimming is done here; callers holding user input use validate().

    Args:
        address: Candidate address

    Returns:
        IPType.IPV4, IPType.IPV6 or IPType.INVALID
    """
    if not isinstance(address, str) or not address:
        return IPType.INVALID

    if _ipv4_octets(address) is not None:
        return IPType.IPV4

    if _parse_ipv6(address) is not None:
        return IPType.IPV6

    return IPType.INVALID


def validate(address) -> IPValidationResult:
    """
    Validate a user-entered address, trimming surrounding whitespace first.

    Returns:
        IPValidationResult with the detected type, or a human-readable error
        listing the accepted example forms
    """
    trimmed = address.strip() if isinstance(address, str) else ""

    if not trimmed:
        return IPValidationResult(valid=False, error=EMPTY_ADDRESS_MESSAGE)

    ip_type = classify(trimmed)
    if ip_type is IPType.INVALID:
        return IPValidationResult(valid=False, error=INVALID_FORMAT_MESSAGE)

    return IPValidationResult(valid=True, type=ip_type)


def normalize(address) -> Optional[str]:
    """
    Canonical comparison key for an address.

    Examples:
        "010.000.000.001" -> "10.0.0.1"
        "2001:DB8:0:0:0:0:0:1" -> "2001:db8::1"
        "::ffff:203.0.113.7" -> "203.0.113.7"

    Returns:
        The normalized address, or None if it is not a valid address
    """
    if not isinstance(address, str):
        return None
    candidate = address.strip()

    octets = _ipv4_octets(candidate)
    if octets is not None:
        return ".".join(str(octet) for octet in octets)

    parsed = _parse_ipv6(candidate)
    if parsed is None:
        return None
    if parsed.ipv4_mapped is not None:
        return str(parsed.ipv4_mapped)
    return parsed.compressed.lower()
