"""
Tests for the image fetcher, driven through httpx.MockTransport.
"""
import asyncio
import base64
import time

import httpx
import pytest

from conftest import png_bytes
from wearup_service.core.errors import LayerFetchError
from wearup_service.imaging.fetcher import ImageFetcher, decode_data_uri

URL = "https://img.example/top.png"


def _fetcher(handler, timeout=2.0, max_bytes=1024 * 1024):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ImageFetcher(timeout=timeout, max_bytes=max_bytes, client=client)


def _fetch(fetcher, url=URL):
    async def run():
        try:
            return await fetcher.fetch(url)
        finally:
            await fetcher.aclose()
    return asyncio.run(run())


# ==================== DATA URIS ====================

class TestDataUri:
    """Inline data:image URIs never touch the network."""

    def test_base64_payload_is_decoded(self):
        data = png_bytes()
        uri = "data:image/png;base64," + base64.b64encode(data).decode()

        def handler(request):
            raise AssertionError("network used for a data URI")

        assert _fetch(_fetcher(handler), uri) == data

    def test_malformed_base64_is_rejected(self):
        with pytest.raises(LayerFetchError):
            decode_data_uri("data:image/png;base64,@@not-base64@@")

    @pytest.mark.parametrize("uri", [
        "data:text/plain;base64,aGVsbG8=",
        "data:image/png,raw",
        "data:image/png;base64,",
    ])
    def test_unsupported_data_uris(self, uri):
        with pytest.raises(LayerFetchError):
            decode_data_uri(uri)


# ==================== HTTP ====================

class TestHttpFetch:
    """Status codes, bodies and transport errors."""

    def test_returns_body(self):
        data = png_bytes()
        fetcher = _fetcher(lambda request: httpx.Response(200, content=data))

        assert _fetch(fetcher) == data

    @pytest.mark.parametrize("status", [404, 500, 503])
    def test_error_status_is_layer_fetch_error(self, status):
        fetcher = _fetcher(lambda request: httpx.Response(status, content=b"nope"))

        with pytest.raises(LayerFetchError, match=f"HTTP {status}"):
            _fetch(fetcher)

    def test_empty_body(self):
        fetcher = _fetcher(lambda request: httpx.Response(200, content=b""))

        with pytest.raises(LayerFetchError, match="Empty"):
            _fetch(fetcher)

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(LayerFetchError, match="Request failed"):
            _fetch(_fetcher(handler))

    def test_oversized_body_is_rejected(self):
        fetcher = _fetcher(lambda request: httpx.Response(200, content=b"x" * 100), max_bytes=10)

        with pytest.raises(LayerFetchError, match="exceeds"):
            _fetch(fetcher)

    def test_oversized_stream_without_length_is_rejected(self):
        async def body():
            for _ in range(10):
                yield b"x" * 8

        fetcher = _fetcher(lambda request: httpx.Response(200, content=body()), max_bytes=30)

        with pytest.raises(LayerFetchError, match="exceeds"):
            _fetch(fetcher)


# ==================== TIMEOUTS ====================

class TestTimeout:
    """The timeout bounds the whole download."""

    def test_stalled_server(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, content=b"late")

        with pytest.raises(LayerFetchError, match="Timed out"):
            _fetch(_fetcher(handler, timeout=0.1))

    def test_trickled_body_hits_total_deadline(self):
        async def body():
            for _ in range(100):
                await asyncio.sleep(0.05)
                yield b"x"

        fetcher = _fetcher(lambda request: httpx.Response(200, content=body()), timeout=0.3)

        start = time.monotonic()
        with pytest.raises(LayerFetchError, match="Timed out"):
            _fetch(fetcher)
        assert time.monotonic() - start < 2.0
