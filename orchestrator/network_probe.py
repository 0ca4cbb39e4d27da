"""
Public address discovery.

Asks an address-echo service for the installation's public IPv4 and IPv6
address. Each request is pinned to one address family by binding the local
side of the connection, and the whole call is bounded by a timeout.
"""

import asyncio
import ipaddress
import logging
from typing import Optional

import httpx

logger = logging.getLogger("network_probe")

IPV4_ECHO_URL = "https://api.ipify.org"
IPV6_ECHO_URL = "https://api6.ipify.org"
DEFAULT_TIMEOUT_SECONDS = 2.0


class ProbeError(Exception):
    """Raised when a public address cannot be discovered."""


class ProbeTimeout(ProbeError):
    """Raised when discovery does not finish within its timeout."""


class PublicAddressProbe:
    """Discovers public addresses over HTTP."""

    def __init__(
        self,
        ipv4_url: str = IPV4_ECHO_URL,
        ipv6_url: str = IPV6_ECHO_URL,
        transport_v4: Optional[httpx.AsyncBaseTransport] = None,
        transport_v6: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.ipv4_url = ipv4_url
        self.ipv6_url = ipv6_url
        self._transport_v4 = transport_v4
        self._transport_v6 = transport_v6

    async def public_ipv4(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> str:
        transport = self._transport_v4 or httpx.AsyncHTTPTransport(local_address="0.0.0.0")
        return await self._probe(self.ipv4_url, transport, 4, timeout)

    async def public_ipv6(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> str:
        transport = self._transport_v6 or httpx.AsyncHTTPTransport(local_address="::")
        return await self._probe(self.ipv6_url, transport, 6, timeout)

    async def _probe(
        self,
        url: str,
        transport: httpx.AsyncBaseTransport,
        family: int,
        timeout: float,
    ) -> str:
        try:
            text = await asyncio.wait_for(self._fetch(url, transport, timeout), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ProbeTimeout(f"IPv{family} discovery timed out after {timeout}s") from e
        except (httpx.HTTPError, OSError) as e:
            raise ProbeError(f"IPv{family} discovery failed: {e}") from e

        try:
            address = ipaddress.ip_address(text.strip())
        except ValueError as e:
            raise ProbeError(f"IPv{family} discovery returned a non-address: {text[:64]!r}") from e
        if address.version != family:
            raise ProbeError(f"IPv{family} discovery returned an IPv{address.version} address")
        return str(address)

    async def _fetch(self, url: str, transport: httpx.AsyncBaseTransport, timeout: float) -> str:
        async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.text
