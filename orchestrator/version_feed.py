"""
Remote version feed client.

The feed is a JSON document keyed by product name:

    {"coolify": {"main": {"version": "3.12.1"}}, ...}

The installation's app id (when configured) and current version are sent as
query parameters for feed-side targeting.
"""

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger("version_feed")


class VersionFeedError(Exception):
    """Raised when the feed is unreachable or malformed."""


class VersionFeedClient:
    """Fetches the latest published version for one product line."""

    def __init__(
        self,
        url: str,
        product: str,
        app_id: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.product = product
        self.app_id = app_id
        self.timeout = timeout
        self._transport = transport

    def build_params(self, current_version: str) -> Dict[str, str]:
        params = {"version": current_version}
        if self.app_id:
            params["appId"] = self.app_id
        return params

    async def fetch_latest_version(self, current_version: str) -> str:
        """
        Return the latest published version of the product.

        Raises:
            VersionFeedError: On transport errors, non-2xx responses or an
                unexpected document shape
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.url, params=self.build_params(current_version))
                response.raise_for_status()
                document = response.json()
        except httpx.HTTPError as e:
            raise VersionFeedError(f"Version feed request failed: {e}") from e
        except ValueError as e:
            raise VersionFeedError(f"Version feed returned invalid JSON: {e}") from e

        return self.extract_version(document)

    def extract_version(self, document: Any) -> str:
        """Pull `<product>.main.version` out of a feed document."""
        try:
            version = document[self.product]["main"]["version"]
        except (KeyError, TypeError) as e:
            raise VersionFeedError(f"Version feed has no main version for {self.product!r}") from e

        if not isinstance(version, str) or not version.strip():
            raise VersionFeedError(f"Version feed returned an empty version for {self.product!r}")
        logger.debug(f"Latest published {self.product} version: {version}")
        return version.strip()
