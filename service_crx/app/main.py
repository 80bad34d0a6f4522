"""
Extension fetch proxy service.
"""

from typing import Any, Dict, Optional

import httpx
from fastapi import Query, Request, Response

from shared.base_service import BaseService
from shared.config import ServiceConfig

from .adapters.webstore_client import FetchBudget, WebStoreClient
from .domain.identifiers import normalize_extension_id
from .domain.pipeline import ExtensionFetchPipeline
from .domain.responses import DeliveryMode
from .ratelimit.fixed_window import FixedWindowRateLimiter, RateLimitStore, get_caller_key


class CrxProxyService(BaseService):
    """Fetch proxy service implementation.

    The rate-limit store and HTTP client are owned here and handed to the
    pipeline; tests inject their own through the constructor.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        store: Optional[RateLimitStore] = None,
        budget: Optional[FetchBudget] = None,
    ):
        super().__init__("crx", 8000, config=config)

        self.rate_limit_store = store or RateLimitStore()
        self.rate_limiter = FixedWindowRateLimiter(
            self.rate_limit_store,
            limit=self.config.rate_limit_requests,
            window_seconds=self.config.rate_limit_window_seconds,
            metrics=self.metrics,
        )
        self.webstore_client = WebStoreClient(
            self.config.crx_url_template,
            budget or FetchBudget.uniform(self.config.max_crx_bytes),
            timeout_seconds=self.config.upstream_timeout_seconds,
            chunk_size=self.config.stream_chunk_bytes,
            prodversion=self.config.crx_prodversion,
            accept_formats=self.config.crx_accept_formats,
            http_client=http_client,
            metrics=self.metrics,
        )
        self.pipeline = ExtensionFetchPipeline(
            self.rate_limiter,
            self.webstore_client,
            metrics=self.metrics,
            scan_window=self.config.archive_scan_window_bytes,
            max_name_length=self.config.max_name_length,
        )

        self._setup_proxy_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.crx_service = self

    async def startup(self) -> None:
        self.rate_limiter.start_sweeper()
        self.logger.info(
            "Fetch proxy started",
            rate_limit=self.rate_limiter.limit,
            window_seconds=self.rate_limiter.window_seconds,
            max_bytes=self.webstore_client.budget.max_actual_bytes,
        )

    async def shutdown(self) -> None:
        await self.rate_limiter.stop_sweeper()
        await self.webstore_client.aclose()

    async def _check_dependencies(self) -> Dict[str, Any]:
        return {
            "rate_limit_sweeper": "running" if self.rate_limiter.sweeper_running else "stopped",
            "rate_limit_entries": len(self.rate_limit_store),
        }

    def _proxy_url(self, path: str) -> str:
        base = (self.config.public_base_url or "").rstrip("/")
        return f"{base}{path}"

    def _setup_proxy_routes(self):
        """Set up extension fetch routes."""

        @self.app.get("/api/raw/{extension_id}")
        async def get_raw_container(extension_id: str, request: Request) -> Response:
            """Stream the signed CRX container unmodified."""
            return await self.pipeline.handle(
                extension_id,
                get_caller_key(request),
                DeliveryMode.RAW,
                endpoint="/api/raw",
            )

        @self.app.get("/api/crx/{extension_id}")
        async def get_crx_legacy(extension_id: str, request: Request) -> Response:
            """Legacy path of the raw container endpoint."""
            return await self.pipeline.handle(
                extension_id,
                get_caller_key(request),
                DeliveryMode.RAW,
                endpoint="/api/crx",
            )

        @self.app.get("/api/archive/{extension_id}")
        async def get_archive(
            extension_id: str,
            request: Request,
            name: Optional[str] = Query(None, description="Display name used as filename prefix"),
        ) -> Response:
            """Strip the CRX header and return the embedded ZIP archive."""
            return await self.pipeline.handle(
                extension_id,
                get_caller_key(request),
                DeliveryMode.ARCHIVE,
                name=name,
                endpoint="/api/archive",
            )

        @self.app.get("/api/links/{extension_id}")
        async def get_links(extension_id: str) -> Dict[str, str]:
            """Direct update-service link and proxy links for an extension."""
            normalized = normalize_extension_id(extension_id)
            return {
                "id": normalized,
                "upstream_url": self.webstore_client.build_url(normalized),
                "raw_url": self._proxy_url(f"/api/raw/{normalized}"),
                "archive_url": self._proxy_url(f"/api/archive/{normalized}"),
            }


def create_app(**kwargs):
    """Create FastAPI application."""
    service = CrxProxyService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = CrxProxyService()
    service.run()
