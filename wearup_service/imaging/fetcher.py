"""
Image Fetcher
Shared HTTP client for downloading layer images.
"""
import asyncio
import base64
import binascii
import logging
from typing import Optional

import httpx

from wearup_service.core.errors import LayerFetchError

logger = logging.getLogger(__name__)

USER_AGENT = "WearUp-ImageProcessor/1.0"
DEFAULT_TIMEOUT = 15.0
DEFAULT_POOL_SIZE = 50
DEFAULT_MAX_BYTES = 25 * 1024 * 1024
MAX_REDIRECTS = 3


def decode_data_uri(uri: str) -> bytes:
    """Decode a data:image/...;base64,... URI."""
    header, _, payload = uri.partition(",")
    if not header.startswith("data:image/") or ";base64" not in header or not payload:
        raise LayerFetchError("Unsupported data URI", url=uri[:40])
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise LayerFetchError(f"Invalid base64 image data: {e}", url=uri[:40]) from e


class ImageFetcher:
    """
    Downloads image bytes over a pooled connection.

    One instance is shared by all requests; the pool bounds the fan-out of
    concurrent layer fetches. `timeout` caps the whole download, not each
    read, so a slow trickle fails like a dead server.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        pool_size: int = DEFAULT_POOL_SIZE,
        max_bytes: int = DEFAULT_MAX_BYTES,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_connections=pool_size, max_keepalive_connections=pool_size),
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            headers={"User-Agent": USER_AGENT},
        )

    async def fetch(self, url: str) -> bytes:
        """
        Fetch image bytes.

        Raises:
            LayerFetchError: On network errors, timeouts, oversized bodies
                or non-2xx responses
        """
        if url.startswith("data:"):
            return decode_data_uri(url)

        try:
            data = await asyncio.wait_for(self._download(url), self.timeout)
        except asyncio.TimeoutError as e:
            raise LayerFetchError(f"Timed out after {self.timeout}s", url=url) from e

        if not data:
            raise LayerFetchError("Empty response body", url=url)
        return data

    async def _download(self, url: str) -> bytes:
        try:
            async with self._client.stream("GET", url) as response:
                response.raise_for_status()

                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > self.max_bytes:
                    raise LayerFetchError(f"Image of {declared} bytes exceeds {self.max_bytes}", url=url)

                chunks = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > self.max_bytes:
                        raise LayerFetchError(f"Image exceeds {self.max_bytes} bytes", url=url)
                    chunks.append(chunk)
        except httpx.TimeoutException as e:
            raise LayerFetchError(f"Timed out after {self.timeout}s", url=url) from e
        except httpx.HTTPStatusError as e:
            raise LayerFetchError(f"HTTP {e.response.status_code}", url=url) from e
        except httpx.HTTPError as e:
            raise LayerFetchError(f"Request failed: {e}", url=url) from e

        return b"".join(chunks)

    async def aclose(self):
        await self._client.aclose()
