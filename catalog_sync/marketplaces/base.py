"""
Catalog Sync - Marketplace Adapter Contract
Every marketplace implements paging, listing creation and listing updates behind this interface.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from ..exceptions import MarketplaceAPIError
from ..models import ExportResult, Marketplace, Page, Product, ProductUpdate

logger = logging.getLogger(__name__)


class MarketplaceAdapter(ABC):
    """
    Marketplace-specific knowledge: endpoints, field mapping and protocol quirks.

    Adapters hold no catalog state. Identity resolution, link persistence and
    sync logging live in the importer/exporter that drive them.
    """

    MARKETPLACE: Marketplace
    MAX_PAGES: int = 1000
    PAGE_DELAY: float = 0.0  # seconds between pages
    MAX_RETRIES: int = 3
    RETRY_DELAY: float = 2.0  # seconds, doubles each retry
    TIMEOUT: float = 60.0

    def __init__(self, settings=None, transport: Optional[httpx.AsyncBaseTransport] = None,
                 token_manager=None):
        self.settings = settings
        self.token_manager = token_manager
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        if settings is not None:
            self.TIMEOUT = settings.http_timeout
            if settings.import_page_delay:
                self.PAGE_DELAY = settings.import_page_delay

    @property
    def name(self) -> str:
        return self.MARKETPLACE.value

    @abstractmethod
    async def fetch_page(self, token: str, cursor: Any = None) -> Page:
        """Fetch one page of listings. cursor=None means the first page."""

    @abstractmethod
    async def create_listing(self, token: str, product: Product) -> ExportResult:
        """Create the product on the marketplace and return its external id."""

    @abstractmethod
    async def update_listing(self, token: str, external_id: str, updates: ProductUpdate) -> ExportResult:
        """Push only the fields present in updates."""

    async def get_client(self) -> httpx.AsyncClient:
        """HTTP client, created lazily."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(transport=self._transport, timeout=self.TIMEOUT)
        return self._client

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a request, retrying transient failures with exponential backoff.

        Raises:
            MarketplaceAPIError: on a non-2xx answer or after the last retry
        """
        client = await self.get_client()
        last_error: Optional[MarketplaceAPIError] = None

        for attempt in range(self.MAX_RETRIES):
            try:
                response = await client.request(method, url, **kwargs)
                if response.is_success:
                    return response
                last_error = MarketplaceAPIError(
                    f"{method} {url} failed: {response.text[:200]}",
                    status_code=response.status_code,
                    marketplace=self.name,
                )
            except httpx.TransportError as e:
                last_error = MarketplaceAPIError(f"{method} {url} failed: {e}", marketplace=self.name)

            if not last_error.is_retryable or attempt == self.MAX_RETRIES - 1:
                break

            delay = self.RETRY_DELAY * (2 ** attempt)
            logger.warning(
                f"[{self.name.upper()}] {last_error} - retrying in {delay}s "
                f"(attempt {attempt + 2}/{self.MAX_RETRIES})"
            )
            await asyncio.sleep(delay)

        raise last_error

    def __repr__(self):
        return f"<{self.__class__.__name__} marketplace={self.name}>"
