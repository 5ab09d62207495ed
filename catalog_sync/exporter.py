"""
Catalog Sync - Exporter
Publishes canonical products to a marketplace and pushes partial updates to
existing listings. Results are always returned, never raised.
"""

import logging
from datetime import datetime
from typing import Dict, Optional, Union

from .database import CatalogStore
from .exceptions import ProductNotFoundError
from .models import (
    ExportResult,
    LogStatus,
    Marketplace,
    MarketplaceLink,
    ProductStatus,
    ProductUpdate,
    SyncAction,
    SyncStatus,
)
from .marketplaces import MarketplaceAdapter
from .tokens import MOCK_TOKEN, TokenManager

logger = logging.getLogger(__name__)

PUBLISHABLE_STATUSES = (ProductStatus.IMPORTED, ProductStatus.OPTIMIZED, ProductStatus.PUBLISHED)
CURATED_STATUSES = (ProductStatus.OPTIMIZED, ProductStatus.PUBLISHED)


class CatalogExporter:
    """
    Marketplace writer for one adapter.

    Handles everything around the API call: status gate, token, link
    persistence and the sync log.
    """

    def __init__(
        self,
        adapter: MarketplaceAdapter,
        store: CatalogStore,
        token_manager: Optional[TokenManager] = None,
        settings=None,
    ):
        self.adapter = adapter
        self.store = store
        self.token_manager = token_manager
        self.require_optimized = bool(settings.publish_requires_optimized) if settings is not None else False

    @property
    def marketplace(self) -> Marketplace:
        return self.adapter.MARKETPLACE

    async def _resolve_token(self) -> str:
        token = None
        if self.token_manager is not None:
            token = await self.token_manager.get_access_token(self.marketplace)
        if not token:
            logger.warning(f"[{self.adapter.name.upper()}] No token, using placeholder")
            return MOCK_TOKEN
        return token

    def _allowed_statuses(self):
        return CURATED_STATUSES if self.require_optimized else PUBLISHABLE_STATUSES

    async def publish_product(self, product_id: str) -> ExportResult:
        """Create the product on the marketplace and link it."""
        tag = self.adapter.name.upper()
        self.store.log_sync(self.marketplace, SyncAction.EXPORT, LogStatus.PENDING)

        try:
            product = self.store.get_product(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)

            if product.status not in self._allowed_statuses():
                raise ValueError(f"Product status '{product.status.value}' cannot be published")

            token = await self._resolve_token()
            result = await self.adapter.create_listing(token, product)

            if result.success and not result.external_id:
                result = ExportResult(success=False, error="Marketplace returned no external id")

            if not result.success:
                logger.error(f"[{tag}] Publish of {product_id} failed: {result.error}")
                self.store.log_sync(self.marketplace, SyncAction.EXPORT, LogStatus.FAILED, result.error)
                return result

            self.store.upsert_link(MarketplaceLink(
                product_id=product_id,
                marketplace=self.marketplace,
                external_id=result.external_id,
                price=product.price,
                quantity=product.quantity,
                sync_status=SyncStatus.SYNCED,
                last_synced_at=datetime.now(),
            ))
            if product.status != ProductStatus.PUBLISHED:
                self.store.update_product(product_id, {"status": ProductStatus.PUBLISHED})

            logger.info(f"[{tag}] Published {product_id} as {result.external_id}",
                        extra={"marketplace": self.marketplace.value, "product_id": product_id})
            self.store.log_sync(self.marketplace, SyncAction.EXPORT, LogStatus.SUCCESS)
            return result

        except Exception as e:
            logger.error(f"[{tag}] Publish of {product_id} failed: {e}")
            self.store.log_sync(self.marketplace, SyncAction.EXPORT, LogStatus.FAILED, str(e))
            return ExportResult(success=False, error=str(e))

    async def update_product(self, product_id: str, updates: Union[ProductUpdate, Dict]) -> ExportResult:
        """
        Push the fields present in updates to the linked listing.

        Writes exactly one sync log entry. A missing link is a failed result.
        """
        tag = self.adapter.name.upper()
        link = None
        try:
            if not isinstance(updates, ProductUpdate):
                updates = ProductUpdate(**updates)

            link = self.store.get_link(product_id, self.marketplace)
            if link is None:
                message = "Product not linked to this marketplace"
                logger.warning(f"[{tag}] {message}: {product_id}")
                self.store.log_sync(self.marketplace, SyncAction.UPDATE, LogStatus.FAILED, message)
                return ExportResult(success=False, error=message)

            token = await self._resolve_token()
            result = await self.adapter.update_listing(token, link.external_id, updates)

        except Exception as e:
            result = ExportResult(success=False, error=str(e) or e.__class__.__name__)

        if not result.success:
            logger.error(f"[{tag}] Update of {product_id} failed: {result.error}")
            if link is not None:
                self.store.update_link(product_id, self.marketplace, {"sync_status": SyncStatus.FAILED})
            self.store.log_sync(self.marketplace, SyncAction.UPDATE, LogStatus.FAILED, result.error)
            return result

        fields = {"sync_status": SyncStatus.SYNCED, "last_synced_at": datetime.now()}
        changes = updates.changes()
        if "price" in changes:
            fields["price"] = changes["price"]
        if "quantity" in changes:
            fields["quantity"] = changes["quantity"]
        self.store.update_link(product_id, self.marketplace, fields)

        logger.info(f"[{tag}] Updated {product_id}: {', '.join(changes) or 'no fields'}",
                    extra={"marketplace": self.marketplace.value, "product_id": product_id})
        self.store.log_sync(self.marketplace, SyncAction.UPDATE, LogStatus.SUCCESS)
        return ExportResult(success=True, external_id=link.external_id)
