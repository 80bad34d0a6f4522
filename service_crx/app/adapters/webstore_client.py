"""
Update service client for the fetch proxy.

Fetches CRX files under a wall-clock deadline and a byte ceiling. The
response is never retried; one attempt decides the outcome of a request.
"""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Optional

import httpx

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..domain.errors import PayloadTooLarge, UpstreamError, UpstreamTimeout


@dataclass(frozen=True)
class FetchBudget:
    """Size ceilings for one fetch.

    ``max_advertised_bytes`` is checked against Content-Length before the
    body is read, ``max_actual_bytes`` against the bytes that really arrive.
    """

    max_advertised_bytes: int
    max_actual_bytes: int

    @classmethod
    def uniform(cls, limit: int) -> "FetchBudget":
        return cls(max_advertised_bytes=limit, max_actual_bytes=limit)


class SizeGuardedStream:
    """Relay chunks from ``source`` while counting them against ``limit``.

    Holds at most one chunk. The chunk that pushes the running total past
    the limit is never yielded; :class:`PayloadTooLarge` is raised instead,
    so a consumer that already sent headers ends with a broken transfer
    rather than a silently oversized one.
    """

    def __init__(self, source: AsyncIterable[bytes], limit: int):
        self._source = source
        self.limit = limit
        self.bytes_received = 0
        self.bytes_sent = 0

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._relay()

    async def _relay(self) -> AsyncIterator[bytes]:
        async for chunk in self._source:
            self.bytes_received += len(chunk)
            if self.bytes_received > self.limit:
                raise PayloadTooLarge(self.limit, observed=self.bytes_received)
            self.bytes_sent += len(chunk)
            yield chunk


class UpstreamPayload:
    """An open upstream response whose body has not been read yet.

    Iterating yields the body under the fetch deadline and size guard and
    releases the connection when iteration ends for any reason. ``aclose``
    is safe to call more than once and covers the never-iterated case.
    """

    def __init__(self, response: httpx.Response, budget: FetchBudget, deadline: float,
                 timeout_seconds: float, chunk_size: int):
        self.response = response
        self.budget = budget
        self.deadline = deadline
        self.timeout_seconds = timeout_seconds
        self.chunk_size = chunk_size
        self.advertised_length = _parse_content_length(response.headers.get("Content-Length"))
        # Content-Length counts encoded bytes; the relayed body is decoded
        self.content_length = None if _is_encoded(response) else self.advertised_length
        self.guard = SizeGuardedStream(self._timed_chunks(), budget.max_actual_bytes)
        self.logger = get_logger("crx.upstream")

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.guard:
                yield chunk
        except (PayloadTooLarge, UpstreamError) as e:
            self.logger.warning(
                "Upstream transfer aborted",
                code=e.code,
                bytes_sent=self.guard.bytes_sent,
            )
            raise
        finally:
            await self.aclose()

    async def _timed_chunks(self) -> AsyncIterator[bytes]:
        chunks = self.response.aiter_bytes(self.chunk_size)
        loop = asyncio.get_running_loop()
        while True:
            if loop.time() >= self.deadline:
                raise UpstreamTimeout(self.timeout_seconds)
            try:
                async with asyncio.timeout_at(self.deadline):
                    chunk = await chunks.__anext__()
            except StopAsyncIteration:
                return
            except (TimeoutError, httpx.TimeoutException) as e:
                raise UpstreamTimeout(self.timeout_seconds) from e
            except httpx.HTTPError as e:
                raise UpstreamError("Upstream transfer failed", details={"error": str(e)}) from e
            yield chunk

    async def aclose(self) -> None:
        await self.response.aclose()


def _is_encoded(response: httpx.Response) -> bool:
    encoding = response.headers.get("Content-Encoding", "").strip().lower()
    return encoding not in ("", "identity")


def _parse_content_length(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        length = int(value.strip())
    except ValueError:
        return None
    return length if length >= 0 else None


class WebStoreClient:
    """Client for the Chrome update service."""

    def __init__(
        self,
        url_template: str,
        budget: FetchBudget,
        timeout_seconds: float = 9.0,
        chunk_size: int = 64 * 1024,
        prodversion: str = "131.0.0.0",
        accept_formats: str = "crx2,crx3",
        http_client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.url_template = url_template
        self.budget = budget
        self.timeout_seconds = timeout_seconds
        self.chunk_size = chunk_size
        self.prodversion = prodversion
        self.accept_formats = accept_formats
        self.metrics = metrics
        self.logger = get_logger("crx.webstore_client")
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get the shared HTTP client, creating it on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=httpx.Timeout(self.timeout_seconds),
            )
        return self._client

    def build_url(self, extension_id: str) -> str:
        return self.url_template.format(
            id=extension_id,
            prodversion=self.prodversion,
            accept_formats=self.accept_formats,
        )

    async def open(self, extension_id: str, mode: str = "raw") -> UpstreamPayload:
        """Send the request and return once response headers have arrived.

        Status and advertised size are checked here, before any body bytes
        are read. On every failure path the response is closed before the
        error propagates.
        """
        url = self.build_url(extension_id)
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + self.timeout_seconds
        client = self._get_client()
        request = client.build_request("GET", url, headers={"Accept-Encoding": "identity"})

        try:
            async with asyncio.timeout_at(deadline):
                response = await client.send(request, stream=True, follow_redirects=True)
        except (TimeoutError, httpx.TimeoutException) as e:
            self.logger.warning("Upstream request timed out", url=url, timeout_seconds=self.timeout_seconds)
            raise UpstreamTimeout(self.timeout_seconds) from e
        except httpx.HTTPError as e:
            self.logger.error("Upstream request failed", url=url, error=str(e))
            raise UpstreamError("Failed to download CRX file", details={"error": str(e)}) from e

        if self.metrics:
            self.metrics.observe_histogram("crx_upstream_duration_seconds", loop.time() - started, mode=mode)

        payload = UpstreamPayload(response, self.budget, deadline, self.timeout_seconds, self.chunk_size)
        try:
            self._check_response(url, response, payload.advertised_length)
        except Exception:
            await payload.aclose()
            raise
        return payload

    def _check_response(self, url: str, response: httpx.Response, content_length: Optional[int]) -> None:
        if not response.is_success:
            self.logger.error(
                "Upstream returned failure status",
                url=url,
                status_code=response.status_code,
            )
            raise UpstreamError("Failed to fetch CRX file", upstream_status=response.status_code)

        if content_length is not None and content_length > self.budget.max_advertised_bytes:
            self.logger.warning(
                "Upstream advertised oversized payload",
                url=url,
                content_length=content_length,
                limit=self.budget.max_advertised_bytes,
            )
            raise PayloadTooLarge(self.budget.max_advertised_bytes, observed=content_length, advertised=True)

        if response.status_code == 204 or content_length == 0:
            raise UpstreamError("No response body from upstream", upstream_status=response.status_code)

    async def fetch_stream(self, extension_id: str) -> UpstreamPayload:
        """Open the upstream response for chunk-by-chunk relay."""
        return await self.open(extension_id, mode="raw")

    async def fetch_buffered(self, extension_id: str) -> bytearray:
        """Read the whole body into memory, bounded by the same ceiling."""
        payload = await self.open(extension_id, mode="archive")
        buffer = bytearray()
        try:
            async for chunk in payload:
                buffer.extend(chunk)
        finally:
            await payload.aclose()

        if len(buffer) > self.budget.max_actual_bytes:
            raise PayloadTooLarge(self.budget.max_actual_bytes, observed=len(buffer))
        if not buffer:
            raise UpstreamError("No response body from upstream", upstream_status=payload.response.status_code)

        self.logger.debug("Upstream payload buffered", extension_id=extension_id, size=len(buffer))
        return buffer

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
