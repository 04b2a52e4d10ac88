"""
Idealista partner REST API client.

Secondary source for listing images. Authentication is a bearer token
obtained elsewhere (OAuth acquisition is not handled here) plus the feed key
header the partner API expects.

API Documentation:
https://developers.idealista.com/
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from propfeed.core.errors import AuthenticationError, ConfigurationError
from propfeed.core.http_client import BaseAPIClient
from propfeed.core.models import Image
from propfeed.sources.idealista.extraction import (
    as_list,
    first_present,
    parse_digits,
    text_value,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]


class PartnerAPIClient(BaseAPIClient):
    """
    Client for the partner API image endpoint.

    Rate Limits:
    - Not documented; we use conservative defaults
    - Default: 4 concurrent requests, 3 attempts per request
    """

    SOURCE_NAME = "partner-api"

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        feed_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        """
        Initialize the partner API client.

        Args:
            base_url: Partner API root (sandbox or production)
            token: Static bearer token
            token_provider: Coroutine function returning a fresh bearer token;
                takes precedence over token
            feed_key: Value of the feedKey header
            transport: Optional httpx transport (tests)
            **kwargs: Passed to BaseAPIClient (timeouts, retries, concurrency)
        """
        if not token and token_provider is None:
            raise ConfigurationError(
                "Partner API needs a bearer token or a token provider",
                source=self.SOURCE_NAME,
                missing_config="PARTNER_API_TOKEN",
            )
        super().__init__(base_url=base_url, transport=transport, **kwargs)
        self._token = token
        self._token_provider = token_provider
        self.feed_key = feed_key
        self._current_token: Optional[str] = token

    def _build_headers(self) -> Dict[str, str]:
        headers = super()._build_headers()
        headers["Authorization"] = f"Bearer {self._current_token}"
        if self.feed_key:
            headers["feedKey"] = self.feed_key
        return headers

    async def _refresh_token(self) -> None:
        if self._token_provider is not None:
            self._current_token = await self._token_provider()
        if not self._current_token:
            raise AuthenticationError("No bearer token available", source=self.SOURCE_NAME)

    async def get_property_images(self, property_id: str) -> List[Image]:
        """
        Fetch the images of one listing.

        Args:
            property_id: Listing identifier

        Returns:
            Images ordered by position (empty when the listing has none)

        Raises:
            APIError: On HTTP or network failure after retries
        """
        await self._refresh_token()
        data = await self.get(
            f"v1/properties/{property_id}/images",
            resource_id=f"images:{property_id}",
        )
        images = parse_image_response(data)
        logger.info(f"[{self.SOURCE_NAME}] Fetched {len(images)} images for {property_id}")
        return images


def parse_image_response(data: Any) -> List[Image]:
    """Map an image endpoint response ({"images": [...]}) onto Image models."""
    entries = data.get("images") if isinstance(data, dict) else data

    images = []
    for index, entry in enumerate(as_list(entries)):
        if not isinstance(entry, dict):
            entry = {"url": entry}
        entry = {str(k).lower(): v for k, v in entry.items()}

        url = text_value(first_present(entry, ("url", "multimediapath", "path")))
        if not url:
            continue

        position = parse_digits(first_present(entry, ("position",)))
        images.append(Image(
            url=url,
            position=index + 1 if position is None else position,
            tag=text_value(first_present(entry, ("tag", "multimediatag"))),
            width=parse_digits(first_present(entry, ("width",))),
            height=parse_digits(first_present(entry, ("height",))),
        ))

    images.sort(key=lambda image: image.position)
    return images
