"""
Unit tests for the update service client and size-guarded streaming.
"""

import asyncio
import gzip

import httpx
import pytest

from service_crx.app.adapters.webstore_client import FetchBudget, SizeGuardedStream, WebStoreClient
from service_crx.app.domain.errors import PayloadTooLarge, UpstreamError, UpstreamTimeout
from shared.config import DEFAULT_CRX_URL_TEMPLATE


EXTENSION_ID = "nmmhkkegccagdldgiimedpiccmgmieda"
MIB = 1024 * 1024


async def chunked(total: int, chunk_size: int = MIB):
    """Emit ``total`` bytes without advertising a length."""
    sent = 0
    while sent < total:
        size = min(chunk_size, total - sent)
        sent += size
        yield b"\x00" * size


def make_client(handler, limit: int = 20 * MIB, timeout: float = 9.0, **kwargs) -> WebStoreClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebStoreClient(
        DEFAULT_CRX_URL_TEMPLATE,
        FetchBudget.uniform(limit),
        timeout_seconds=timeout,
        http_client=http_client,
        **kwargs,
    )


class TestSizeGuardedStream:
    """Test cases for SizeGuardedStream."""

    @pytest.mark.asyncio
    async def test_relays_within_limit(self):
        """Test stream within limit relayed."""
        guard = SizeGuardedStream(chunked(3 * MIB), limit=20 * MIB)

        received = b"".join([chunk async for chunk in guard])

        assert len(received) == 3 * MIB
        assert guard.bytes_sent == 3 * MIB

    @pytest.mark.asyncio
    async def test_aborts_unadvertised_oversize(self):
        """Test unadvertised oversize aborted."""
        guard = SizeGuardedStream(chunked(21 * MIB), limit=20 * MIB)
        delivered = 0

        with pytest.raises(PayloadTooLarge) as exc_info:
            async for chunk in guard:
                delivered += len(chunk)

        assert delivered <= 20 * MIB
        assert guard.bytes_sent == delivered
        assert exc_info.value.details["advertised"] is False

    @pytest.mark.asyncio
    async def test_exact_limit_allowed(self):
        """Test stream of exactly the limit."""
        guard = SizeGuardedStream(chunked(4096, chunk_size=1000), limit=4096)

        assert sum([len(chunk) async for chunk in guard]) == 4096


class TestWebStoreClient:
    """Test cases for WebStoreClient."""

    def test_build_url(self):
        """Test upstream URL construction."""
        client = make_client(lambda request: httpx.Response(200))

        url = client.build_url(EXTENSION_ID)

        assert url.startswith("https://clients2.google.com/service/update2/crx?response=redirect")
        assert "prodversion=131.0.0.0" in url
        assert "acceptformat=crx2,crx3" in url
        assert f"x=id%3D{EXTENSION_ID}%26uc" in url

    @pytest.mark.asyncio
    async def test_fetch_buffered(self):
        """Test buffered fetch."""
        body = b"Cr24" + b"\x00" * 100

        def handler(request):
            assert request.headers["Accept-Encoding"] == "identity"
            return httpx.Response(200, content=body)

        client = make_client(handler)

        assert await client.fetch_buffered(EXTENSION_ID) == body

    @pytest.mark.asyncio
    async def test_fetch_buffered_returns_buffer_without_copy(self):
        """Test buffered fetch returns the read buffer."""
        client = make_client(lambda request: httpx.Response(200, content=b"Cr24" + b"\x00" * 16))

        data = await client.fetch_buffered(EXTENSION_ID)

        assert isinstance(data, bytearray)
        assert len(data) == 20

    @pytest.mark.asyncio
    async def test_encoded_body_drops_advertised_length(self):
        """Test encoded body drops its advertised length."""
        body = b"Cr24" + b"\x07" * 4096
        encoded = gzip.compress(body)

        def handler(request):
            return httpx.Response(
                200,
                headers={"Content-Encoding": "gzip", "Content-Length": str(len(encoded))},
                content=encoded,
            )

        client = make_client(handler)
        payload = await client.fetch_stream(EXTENSION_ID)

        assert payload.advertised_length == len(encoded)
        assert payload.content_length is None
        assert b"".join([chunk async for chunk in payload]) == body

    @pytest.mark.asyncio
    async def test_follows_redirects(self):
        """Test redirects followed."""
        def handler(request):
            if request.url.host == "clients2.google.com":
                return httpx.Response(302, headers={"Location": "https://cdn.example.test/ext.crx"})
            return httpx.Response(200, content=b"crx-bytes")

        client = make_client(handler)

        assert await client.fetch_buffered(EXTENSION_ID) == b"crx-bytes"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 403, 500, 503])
    async def test_upstream_error_status_propagated(self, status):
        """Test upstream error status kept."""
        client = make_client(lambda request: httpx.Response(status, content=b"nope"))

        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_stream(EXTENSION_ID)

        assert exc_info.value.status_code == status
        assert exc_info.value.code == "UPSTREAM_ERROR"

    @pytest.mark.asyncio
    async def test_missing_body(self):
        """Test missing body."""
        client = make_client(lambda request: httpx.Response(204))

        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_stream(EXTENSION_ID)

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_advertised_oversize_rejected_without_reading(self):
        """Test advertised oversize rejected before reading."""
        read = []

        async def body():
            read.append(True)
            yield b"x"

        def handler(request):
            return httpx.Response(200, headers={"Content-Length": str(30 * MIB)}, content=body())

        client = make_client(handler)

        with pytest.raises(PayloadTooLarge) as exc_info:
            await client.fetch_stream(EXTENSION_ID)

        assert exc_info.value.status_code == 413
        assert exc_info.value.details["advertised"] is True
        assert read == []

    @pytest.mark.asyncio
    async def test_streamed_oversize_aborts(self):
        """Test streamed oversize aborted."""
        client = make_client(lambda request: httpx.Response(200, content=chunked(21 * MIB)))
        payload = await client.fetch_stream(EXTENSION_ID)
        delivered = 0

        assert payload.content_length is None
        with pytest.raises(PayloadTooLarge):
            async for chunk in payload:
                delivered += len(chunk)

        assert delivered <= 20 * MIB
        assert payload.response.is_closed

    @pytest.mark.asyncio
    async def test_buffered_oversize_aborts(self):
        """Test buffered oversize aborted."""
        client = make_client(lambda request: httpx.Response(200, content=chunked(2048, 256)), limit=1024)

        with pytest.raises(PayloadTooLarge):
            await client.fetch_buffered(EXTENSION_ID)

    @pytest.mark.asyncio
    async def test_separate_budget_limits(self):
        """Test separate advertised and actual limits."""
        client = make_client(lambda request: httpx.Response(200, content=b"x" * 2048))
        client.budget = FetchBudget(max_advertised_bytes=4096, max_actual_bytes=1024)

        with pytest.raises(PayloadTooLarge) as exc_info:
            await client.fetch_buffered(EXTENSION_ID)

        assert exc_info.value.details["advertised"] is False

    @pytest.mark.asyncio
    async def test_timeout_before_headers(self):
        """Test timeout before headers."""
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, content=b"late")

        client = make_client(handler, timeout=0.05)

        with pytest.raises(UpstreamTimeout) as exc_info:
            await client.fetch_buffered(EXTENSION_ID)

        assert exc_info.value.code == "UPSTREAM_TIMEOUT"
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_timeout_during_body(self):
        """Test timeout during body."""
        async def slow_body():
            yield b"first"
            await asyncio.sleep(1)
            yield b"second"

        client = make_client(lambda request: httpx.Response(200, content=slow_body()), timeout=0.1)
        payload = await client.fetch_stream(EXTENSION_ID)

        with pytest.raises(UpstreamTimeout):
            async for _ in payload:
                pass

        assert payload.response.is_closed

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        """Test transport failure."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_buffered(EXTENSION_ID)

        assert exc_info.value.code == "UPSTREAM_ERROR"
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_records_upstream_latency(self):
        """Test upstream latency recorded."""
        from shared.metrics import get_metrics_collector

        metrics = get_metrics_collector("crx")
        client = make_client(lambda request: httpx.Response(200, content=b"crx"), metrics=metrics)

        await client.fetch_buffered(EXTENSION_ID)

        assert metrics.registry.get_sample_value(
            "crx_upstream_duration_seconds_count", {"mode": "archive"}
        ) == 1
