"""
Request pipeline shared by the raw and archive endpoints.

validate -> rate limit -> fetch -> (relay container | strip header and send archive)
"""

from typing import AsyncIterator, Optional

from fastapi import Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from shared.errors import AccessLayerException
from shared.logging import get_logger, set_fetch_context
from shared.metrics import MetricsCollector

from ..adapters.webstore_client import UpstreamPayload, WebStoreClient
from ..ratelimit.fixed_window import FixedWindowRateLimiter
from .container import DEFAULT_SCAN_WINDOW, strip_container
from .errors import RateLimited
from .identifiers import normalize_extension_id
from .responses import DeliveryMode, build_headers


class ExtensionFetchPipeline:
    """Serve one extension fetch in either delivery mode."""

    def __init__(
        self,
        rate_limiter: FixedWindowRateLimiter,
        client: WebStoreClient,
        metrics: Optional[MetricsCollector] = None,
        scan_window: int = DEFAULT_SCAN_WINDOW,
        max_name_length: Optional[int] = None,
    ):
        self.rate_limiter = rate_limiter
        self.client = client
        self.metrics = metrics
        self.scan_window = scan_window
        self.max_name_length = max_name_length
        self.logger = get_logger("crx.pipeline")

    def admit(self, raw_id: str, caller_key: str, endpoint: str) -> str:
        """Validate the id and charge the caller's window; return the normalized id."""
        extension_id = normalize_extension_id(raw_id)
        set_fetch_context(caller_key=caller_key, extension_id=extension_id)

        decision = self.rate_limiter.check_and_record(caller_key)
        if not decision.allowed:
            if self.metrics:
                self.metrics.increment_counter("rate_limit_hits_total", endpoint=endpoint)
            raise RateLimited(decision.limit, self.rate_limiter.window_seconds, decision.reset_in_seconds)
        return extension_id

    async def handle(
        self,
        raw_id: str,
        caller_key: str,
        mode: DeliveryMode,
        name: Optional[str] = None,
        endpoint: Optional[str] = None,
    ) -> Response:
        try:
            extension_id = self.admit(raw_id, caller_key, endpoint or mode.value)
            if mode is DeliveryMode.RAW:
                response = await self._deliver_container(extension_id)
            else:
                response = await self._deliver_archive(extension_id, name)
        except AccessLayerException as e:
            self._record_outcome(mode, e.code.lower())
            raise

        self._record_outcome(mode, "ok")
        return response

    async def _deliver_container(self, extension_id: str) -> Response:
        payload = await self.client.fetch_stream(extension_id)
        headers = build_headers(
            extension_id,
            DeliveryMode.RAW,
            content_length=payload.content_length,
        )
        self.logger.info(
            "Relaying CRX container",
            extension_id=extension_id,
            content_length=payload.content_length,
        )
        return StreamingResponse(
            self._count_sent(payload, DeliveryMode.RAW),
            media_type=DeliveryMode.RAW.media_type,
            headers=headers,
            background=BackgroundTask(payload.aclose),
        )

    async def _deliver_archive(self, extension_id: str, name: Optional[str]) -> Response:
        data = await self.client.fetch_buffered(extension_id)
        archive = strip_container(data, self.scan_window)
        headers = build_headers(
            extension_id,
            DeliveryMode.ARCHIVE,
            name=name,
            content_length=len(archive),
            max_name_length=self.max_name_length,
        )
        self.logger.info(
            "Delivering extracted archive",
            extension_id=extension_id,
            container_bytes=len(data),
            archive_bytes=len(archive),
        )
        if self.metrics:
            self.metrics.increment_counter("crx_bytes_sent_total", len(archive), mode=DeliveryMode.ARCHIVE.value)
        return Response(content=archive, media_type=DeliveryMode.ARCHIVE.media_type, headers=headers)

    async def _count_sent(self, payload: UpstreamPayload, mode: DeliveryMode) -> AsyncIterator[bytes]:
        async for chunk in payload:
            if self.metrics:
                self.metrics.increment_counter("crx_bytes_sent_total", len(chunk), mode=mode.value)
            yield chunk

    def _record_outcome(self, mode: DeliveryMode, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("crx_fetches_total", mode=mode.value, outcome=outcome)
