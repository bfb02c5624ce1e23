"""
Client address detection.

WHAT: Reports the address(es) a caller is connecting from, for the access
decision engine.

WHY: Detection is an external concern. Behind a proxy the TCP peer is the
proxy, so the client address has to be read from forwarding headers; in
other deployments an IP-echo endpoint is asked instead. The engine only
depends on the AddressDetector contract.

HOW:
- HeaderAddressDetector: reports the first forwarding header in priority
  order that carries an address, else the direct connection address
- HttpAddressDetector: GETs an IP-echo endpoint with httpx; JSON
  ({"ip": ...} or {"addresses": [...]}) and plain-text bodies are accepted

Security Note:
    Forwarding headers can be spoofed by clients unless a trusted proxy
    strips or overwrites them. Set TRUST_FORWARDED_HEADERS=false when the
    service is reached directly.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Mapping, Optional

import httpx

from accessgate.core.exceptions import DetectionUnavailableError


logger = logging.getLogger(__name__)


# Checked in order; the first header carrying a usable address wins
FORWARDING_HEADERS = (
    "x-forwarded-for",
    "x-real-ip",
    "x-client-ip",
    "cf-connecting-ip",
    "x-cluster-client-ip",
    "forwarded",
)

# Platform-provided connection address, used after the forwarding headers
CONNECTION_HEADERS = ("x-nf-client-connection-ip",)


class AddressDetector(ABC):
    """Source of the caller's address(es)."""

    @abstractmethod
    async def detect(self) -> List[str]:
        """
        Return detected addresses, most specific first.

        Raises:
            DetectionUnavailableError: If detection could not be performed
        """


def _strip_port(value: str) -> str:
    value = value.strip().strip('"')
    # [2001:db8::1]:443 -> 2001:db8::1
    if value.startswith("["):
        end = value.find("]")
        return value[1:end] if end != -1 else value
    # 203.0.113.7:8080 -> 203.0.113.7 (a bare IPv6 address has several colons)
    if value.count(":") == 1:
        return value.split(":", 1)[0]
    return value


def _first_forwarded_for(value: str) -> Optional[str]:
    """Client address from an RFC 7239 Forwarded header (for=...)."""
    first_hop = value.split(",")[0]
    for pair in first_hop.split(";"):
        name, _, param = pair.strip().partition("=")
        if name.lower() == "for" and param:
            return _strip_port(param)
    return None


def _address_from_header(header: str, value: str) -> Optional[str]:
    if header == "forwarded":
        address = _first_forwarded_for(value)
    elif header == "x-forwarded-for":
        # Format: "client, proxy1, proxy2"
        address = value.split(",")[0].strip()
    else:
        address = _strip_port(value)

    if not address or address.lower() == "unknown":
        return None
    return address


def addresses_from_headers(
    headers: Mapping[str, str],
    client_host: Optional[str] = None,
    trust_forwarded: bool = True,
) -> List[str]:
    """
    Extract the client address from request headers.

    Only the first header in priority order that carries a usable address
    is reported. Lower-priority headers are ignored, so a client cannot
    add its own X-Client-IP next to the X-Forwarded-For set by the proxy.

    Args:
        headers: Request headers (case-insensitive mapping, or lower-case keys)
        client_host: Direct TCP peer address, used when no header is usable
        trust_forwarded: False when no proxy sits in front of the service;
            only the TCP peer is reported then

    Returns:
        At most one candidate address
    """
    if trust_forwarded:
        for header in FORWARDING_HEADERS + CONNECTION_HEADERS:
            value = headers.get(header)
            if not value:
                continue
            address = _address_from_header(header, value)
            if address:
                return [address]

    return [client_host] if client_host else []


class HeaderAddressDetector(AddressDetector):
    """Detects the caller from the headers of the current request."""

    def __init__(
        self,
        headers: Mapping[str, str],
        client_host: Optional[str] = None,
        trust_forwarded: bool = True,
    ):
        self.headers = headers
        self.client_host = client_host
        self.trust_forwarded = trust_forwarded

    @classmethod
    def from_request(cls, request, trust_forwarded: bool = True) -> "HeaderAddressDetector":
        client_host = request.client.host if request.client else None
        return cls(request.headers, client_host, trust_forwarded)

    async def detect(self) -> List[str]:
        return addresses_from_headers(self.headers, self.client_host, self.trust_forwarded)


class HttpAddressDetector(AddressDetector):
    """
    Asks an IP-echo endpoint for the caller's public address.

    Args:
        url: Endpoint returning the address
        timeout: Request timeout in seconds
        client: Optional shared httpx.AsyncClient (tests inject a mock transport)
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def detect(self) -> List[str]:
        try:
            if self._client is not None:
                response = await self._client.get(self.url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.url)

        except httpx.TimeoutException as e:
            logger.error(f"IP detection endpoint timeout: {e}")
            raise DetectionUnavailableError(
                message="IP detection request timed out",
                url=self.url,
            ) from e

        except httpx.RequestError as e:
            logger.error(f"IP detection request error: {e}")
            raise DetectionUnavailableError(
                message="Failed to connect to IP detection endpoint",
                url=self.url,
                error=str(e),
            ) from e

        if response.status_code != 200:
            logger.error(f"IP detection endpoint returned {response.status_code}")
            raise DetectionUnavailableError(
                message="IP detection endpoint returned an error",
                upstream_status=response.status_code,
            )

        return self._parse(response)

    @staticmethod
    def _parse(response: httpx.Response) -> List[str]:
        content_type = response.headers.get("content-type", "")
        if "json" not in content_type:
            text = response.text.strip()
            return [text] if text else []

        try:
            body = response.json()
        except ValueError as e:
            raise DetectionUnavailableError(
                message="IP detection endpoint returned invalid JSON",
            ) from e

        if isinstance(body, dict):
            if isinstance(body.get("addresses"), list):
                return [str(address) for address in body["addresses"] if address]
            if body.get("ip"):
                return [str(body["ip"])]
        return []
