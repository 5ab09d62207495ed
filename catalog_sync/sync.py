"""
Catalog Sync - Sync Service
Fans product updates out to every linked marketplace and routes incoming
marketplace stock changes back through the catalog.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Union

from .database import CatalogStore
from .exceptions import DatabaseError, ProductNotFoundError
from .exporter import CatalogExporter
from .models import (
    ExportResult,
    LogStatus,
    Marketplace,
    MarketplaceLink,
    MarketplaceOutcome,
    Product,
    ProductUpdate,
    SyncAction,
    SyncReport,
    SyncStatus,
)

logger = logging.getLogger(__name__)


class SyncService:
    """
    Fan-out over marketplace exporters.

    Every dispatched marketplace call is awaited to completion; a failing
    marketplace is recorded in the report and never cancels its siblings.
    """

    def __init__(self, store: CatalogStore, exporters: Dict[Marketplace, CatalogExporter]):
        self.store = store
        self.exporters = {Marketplace(mp): exporter for mp, exporter in exporters.items()}

    async def _dispatch(self, product_id: str, link: MarketplaceLink, updates: ProductUpdate) -> ExportResult:
        exporter = self.exporters.get(link.marketplace)
        if exporter is None:
            message = f"No exporter configured for {link.marketplace.value}"
            self.store.log_sync(link.marketplace, SyncAction.UPDATE, LogStatus.FAILED, message)
            return ExportResult(success=False, error=message)
        return await exporter.update_product(product_id, updates)

    async def sync_product_update_to_all(
        self,
        product_id: str,
        updates: Union[ProductUpdate, Dict],
        exclude: Optional[Marketplace] = None,
    ) -> SyncReport:
        """
        Push updates to every marketplace the product is linked to.

        Args:
            product_id: Canonical product id
            updates: Partial update, only present fields are sent
            exclude: Marketplace to leave out (source of the change)

        Returns:
            SyncReport with one outcome per linked marketplace
        """
        report = SyncReport(product_id=product_id)
        try:
            if not isinstance(updates, ProductUpdate):
                updates = ProductUpdate(**updates)
            links = self.store.get_links(product_id, exclude=Marketplace(exclude) if exclude else None)
        except (DatabaseError, ValueError) as e:
            logger.error(f"Cannot sync product {product_id}: {e}")
            report.error = str(e)
            return report

        if not links:
            logger.debug(f"Product {product_id} has no marketplace links to sync")
            return report

        logger.info(
            f"Syncing product {product_id} to {', '.join(l.marketplace.value for l in links)}",
            extra={"product_id": product_id, "action": SyncAction.UPDATE.value},
        )

        results = await asyncio.gather(
            *(self._dispatch(product_id, link, updates) for link in links),
            return_exceptions=True,
        )

        for link, result in zip(links, results):
            marketplace = link.marketplace.value
            if isinstance(result, BaseException):
                error = str(result) or result.__class__.__name__
                logger.error(f"[{marketplace.upper()}] Sync of {product_id} raised: {error}")
                self._record_crash(product_id, link.marketplace, error)
                report.outcomes.append(MarketplaceOutcome(marketplace=marketplace, success=False, error=error))
            elif not result.success:
                logger.error(f"[{marketplace.upper()}] Sync of {product_id} failed: {result.error}")
                report.outcomes.append(MarketplaceOutcome(marketplace=marketplace, success=False,
                                                          error=result.error))
            else:
                report.outcomes.append(MarketplaceOutcome(marketplace=marketplace, success=True))

        if report.failed:
            logger.warning(f"Product {product_id}: {len(report.succeeded)} synced, failed on {report.failed}")
        return report

    def _record_crash(self, product_id: str, marketplace: Marketplace, error: str):
        """Status and log entry for an exporter that raised instead of returning."""
        try:
            self.store.update_link(product_id, marketplace, {"sync_status": SyncStatus.FAILED})
        except DatabaseError as e:
            logger.error(f"[{marketplace.value.upper()}] Could not mark link failed: {e}")
        self.store.log_sync(marketplace, SyncAction.UPDATE, LogStatus.FAILED, error)

    async def handle_incoming_stock_update(
        self,
        marketplace: Marketplace,
        external_id: str,
        new_quantity: int,
    ) -> SyncReport:
        """
        Apply a stock change reported by a marketplace.

        The canonical quantity and the source link snapshot are updated, then
        the quantity is pushed to every other linked marketplace. Nothing is
        sent back to the source.
        """
        try:
            source = Marketplace(marketplace)
            quantity = int(new_quantity)
            if quantity < 0:
                raise ValueError(f"Negative quantity {quantity}")
        except (TypeError, ValueError) as e:
            logger.error(f"Rejected stock update from {marketplace} for {external_id}: {e}")
            return SyncReport(error=str(e))

        logger.info(f"[{source.value.upper()}] Stock update for {external_id}: {quantity}")

        try:
            link = self.store.find_link_by_external_id(source, external_id)
            if link is None:
                message = f"Link not found for {source.value} {external_id}"
                logger.error(message)
                return SyncReport(error=message)

            self.store.update_product(link.product_id, {"quantity": quantity})
            self.store.update_link(link.product_id, source, {
                "quantity": quantity,
                "sync_status": SyncStatus.SYNCED,
                "last_synced_at": datetime.now(),
            })
        except DatabaseError as e:
            logger.error(f"Failed to update central stock for {source.value} {external_id}: {e}")
            return SyncReport(error=str(e))

        return await self.sync_product_update_to_all(
            link.product_id, ProductUpdate(quantity=quantity), exclude=source
        )

    def _require_product(self, product_id: str) -> Product:
        product = self.store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    async def apply_central_update(self, product_id: str, updates: Union[ProductUpdate, Dict]) -> SyncReport:
        """Save a manual edit to the catalog and propagate what marketplaces care about."""
        try:
            if not isinstance(updates, ProductUpdate):
                updates = ProductUpdate(**updates)
            self._require_product(product_id)
            if not updates.is_empty:
                self.store.update_product(product_id, updates.changes())
        except ProductNotFoundError as e:
            logger.warning(f"Central update: {e}")
            return SyncReport(product_id=product_id, error=e.message)
        except (DatabaseError, ValueError) as e:
            logger.error(f"Central update of {product_id} failed: {e}")
            return SyncReport(product_id=product_id, error=str(e))

        if not updates.touches_listing:
            logger.debug(f"Update of {product_id} has nothing to push")
            return SyncReport(product_id=product_id)

        return await self.sync_product_update_to_all(product_id, updates)

    async def batch_sync(self, product_ids: List[str]) -> Dict[str, SyncReport]:
        """Force-push title, description, price and quantity of each product."""
        reports: Dict[str, SyncReport] = {}
        for product_id in product_ids:
            try:
                product = self._require_product(product_id)
            except ProductNotFoundError as e:
                logger.warning(f"Batch sync: {e}")
                reports[product_id] = SyncReport(product_id=product_id, error=e.message)
                continue

            reports[product_id] = await self.sync_product_update_to_all(product_id, ProductUpdate(
                title=product.title,
                description=product.description,
                price=product.price,
                quantity=product.quantity,
            ))

        synced = sum(1 for r in reports.values() if r.success)
        logger.info(f"Batch sync finished: {synced}/{len(product_ids)} products fully synced")
        return reports
