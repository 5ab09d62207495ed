"""
Catalog Sync - Importer
Pulls marketplace listings page by page, resolves them to canonical products
and records the marketplace link.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .database import CatalogStore
from .exceptions import ImportCancelledError
from .marketplaces import MarketplaceAdapter, build_adapter
from .models import (
    ImportedProduct,
    ImportResult,
    LogStatus,
    Marketplace,
    MarketplaceLink,
    Product,
    ProductStatus,
    SyncAction,
    SyncStatus,
    is_placeholder_title,
)
from .tokens import MOCK_TOKEN, TokenManager

logger = logging.getLogger(__name__)


class ImportContext:
    """Cancellation token for one import run."""

    def __init__(self, marketplace: Optional[Marketplace] = None):
        self.marketplace = marketplace
        self.started_at = datetime.now()
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self):
        if self._cancelled:
            raise ImportCancelledError(
                marketplace=self.marketplace.value if self.marketplace else None
            )


class ProductUpserter:
    """
    Identity resolution and upsert of imported listings.

    Lookup order: existing link for (marketplace, external_id), then EAN,
    then SKU, then a new product. Existing products only get empty or
    placeholder fields filled in; curated content is never replaced.
    """

    def __init__(self, store: CatalogStore):
        self.store = store

    def resolve(self, item: ImportedProduct) -> Optional[Product]:
        link = self.store.find_link_by_external_id(item.marketplace, item.external_id)
        if link:
            product = self.store.get_product(link.product_id)
            if product:
                return product

        product = self.store.find_product_by_ean(item.ean)
        if product:
            logger.debug(f"Product found for EAN {item.ean}, merging")
            return product

        product = self.store.find_product_by_sku(item.sku)
        if product:
            logger.debug(f"Product found for SKU {item.sku}, merging")
        return product

    @staticmethod
    def backfill(product: Product, item: ImportedProduct) -> Dict:
        """Fields of product that are missing and can be taken from the import."""
        fields = {}
        if is_placeholder_title(product.title) and not is_placeholder_title(item.title):
            fields["title"] = item.title
        if not product.description.strip() and item.description.strip():
            fields["description"] = item.description
        if not product.ean.strip() and item.ean:
            fields["ean"] = item.ean
        if not product.sku.strip() and item.sku:
            fields["sku"] = item.sku
        if not product.images and item.images:
            fields["images"] = item.images
        if not product.weight and item.weight:
            fields["weight"] = item.weight
        return fields

    def upsert(self, item: ImportedProduct) -> Product:
        """Save one imported listing and return its canonical product."""
        if not item.external_id:
            raise ValueError(f"{item.marketplace.value} item without external id (sku={item.sku or '-'})")

        product = self.resolve(item)
        if product is None:
            product = self.store.insert_product(Product(
                title=item.title,
                description=item.description,
                sku=item.sku,
                ean=item.ean,
                price=item.price,
                quantity=item.quantity,
                weight=item.weight,
                images=item.images,
                status=ProductStatus.IMPORTED,
            ))
        else:
            fields = self.backfill(product, item)
            if fields:
                self.store.update_product(product.id, fields)
                product = product.model_copy(update=fields)

        self.store.upsert_link(MarketplaceLink(
            product_id=product.id,
            marketplace=item.marketplace,
            external_id=item.external_id,
            price=item.price,
            quantity=item.quantity,
            sync_status=SyncStatus.SYNCED,
            last_synced_at=datetime.now(),
        ))
        return product


class CatalogImporter:
    """Runs one marketplace import: token, sequential pages, upsert, sync log."""

    def __init__(self, adapter: MarketplaceAdapter, store: CatalogStore,
                 token_manager: Optional[TokenManager] = None):
        self.adapter = adapter
        self.store = store
        self.token_manager = token_manager
        self.upserter = ProductUpserter(store)

    @property
    def marketplace(self) -> Marketplace:
        return self.adapter.MARKETPLACE

    async def _resolve_token(self) -> str:
        token = None
        if self.token_manager is not None:
            token = await self.token_manager.get_access_token(self.marketplace)
        if not token:
            logger.warning(f"[{self.adapter.name.upper()}] No access token, continuing with placeholder")
            return MOCK_TOKEN
        return token

    async def run_import(self, context: Optional[ImportContext] = None) -> ImportResult:
        """
        Import every listing of the marketplace.

        Never raises. A page failure after at least one saved item still
        counts as a successful (partial) import; cancellation is reported as
        a failed run with the items saved so far.
        """
        context = context or ImportContext(self.marketplace)
        tag = self.adapter.name.upper()
        saved = 0
        failed_items = 0

        logger.info(f"[{tag}] Starting import")
        self.store.log_sync(self.marketplace, SyncAction.IMPORT, LogStatus.PENDING)

        try:
            context.raise_if_cancelled()
            token = await self._resolve_token()

            cursor = None
            page_error: Optional[Exception] = None
            for page_number in range(1, self.adapter.MAX_PAGES + 1):
                context.raise_if_cancelled()
                if page_number > 1 and self.adapter.PAGE_DELAY:
                    await asyncio.sleep(self.adapter.PAGE_DELAY)

                try:
                    page = await self.adapter.fetch_page(token, cursor)
                except Exception as e:
                    logger.error(f"[{tag}] Page {page_number} failed: {e}")
                    page_error = e
                    break

                if not page.items:
                    logger.info(f"[{tag}] Page {page_number} empty, done")
                    break

                for item in page.items:
                    context.raise_if_cancelled()
                    try:
                        self.upserter.upsert(item)
                        saved += 1
                    except Exception as e:
                        failed_items += 1
                        logger.error(f"[{tag}] Failed to save item {item.external_id or item.sku or '?'}: {e}")

                logger.info(f"[{tag}] Page {page_number} done, {saved} saved so far")

                cursor = page.next_cursor
                if cursor is None:
                    break
            else:
                logger.warning(f"[{tag}] Page ceiling ({self.adapter.MAX_PAGES}) reached")

            if page_error is not None and saved == 0:
                raise page_error

        except ImportCancelledError as e:
            logger.warning(f"[{tag}] {e.message} after {saved} items")
            self.store.log_sync(self.marketplace, SyncAction.IMPORT, LogStatus.FAILED, e.message)
            return ImportResult(success=False, count=saved, error=e.message)

        except Exception as e:
            logger.error(f"[{tag}] Import failed: {e}")
            self.store.log_sync(self.marketplace, SyncAction.IMPORT, LogStatus.FAILED, str(e))
            return ImportResult(success=False, count=saved, error=str(e))

        if saved == 0:
            logger.warning(f"[{tag}] Import finished without any products")
        if failed_items:
            logger.warning(f"[{tag}] {failed_items} items skipped")
        logger.info(f"[{tag}] Import finished: {saved} products", extra={
            "marketplace": self.marketplace.value, "action": SyncAction.IMPORT.value, "count": saved,
        })
        self.store.log_sync(self.marketplace, SyncAction.IMPORT, LogStatus.SYNCED)
        return ImportResult(success=True, count=saved)


def _as_marketplace(value) -> Optional[Marketplace]:
    try:
        return Marketplace(value)
    except ValueError:
        return None


class ImportRunner:
    """
    Operator-facing import control.

    Each run gets its own ImportContext, so imports of different
    marketplaces can run side by side and be stopped individually.
    """

    def __init__(
        self,
        store: CatalogStore,
        token_manager: Optional[TokenManager] = None,
        settings=None,
        adapter_factory: Optional[Callable[[Marketplace], MarketplaceAdapter]] = None,
    ):
        self.store = store
        self.token_manager = token_manager
        self.settings = settings
        self.adapter_factory = adapter_factory or self._default_adapter
        self._running: Dict[Marketplace, ImportContext] = {}

    def _default_adapter(self, marketplace: Marketplace) -> MarketplaceAdapter:
        return build_adapter(marketplace, settings=self.settings, token_manager=self.token_manager)

    def _is_configured(self, marketplace: Marketplace) -> bool:
        """Credentials in settings or in the store; otherwise the import runs on the placeholder token."""
        if self.settings is None:
            return True
        if getattr(self.settings, f"{marketplace.value}_configured", False):
            return True
        return self.store.get_credential(marketplace) is not None

    def is_running(self, marketplace: Optional[Marketplace] = None) -> bool:
        if marketplace is None:
            return bool(self._running)
        return _as_marketplace(marketplace) in self._running

    async def run(self, marketplace: Marketplace) -> ImportResult:
        name, marketplace = marketplace, _as_marketplace(marketplace)
        if marketplace is None:
            logger.error(f"Unknown marketplace: {name}")
            return ImportResult(success=False, error=f"Unknown marketplace: {name}")
        if marketplace in self._running:
            return ImportResult(success=False, error=f"Import already running for {marketplace.value}")

        context = ImportContext(marketplace)
        self._running[marketplace] = context
        adapter = None
        try:
            adapter = self.adapter_factory(marketplace)
            importer = CatalogImporter(adapter, self.store, self.token_manager)
            return await importer.run_import(context)
        except Exception as e:
            logger.error(f"[{marketplace.value.upper()}] Could not start import: {e}")
            self.store.log_sync(marketplace, SyncAction.IMPORT, LogStatus.FAILED, str(e))
            return ImportResult(success=False, error=str(e))
        finally:
            self._running.pop(marketplace, None)
            if adapter is not None:
                await adapter.close()

    def stop(self, marketplace: Optional[Marketplace] = None) -> List[str]:
        """Request cancellation of one or all running imports."""
        if marketplace is not None:
            targets = [_as_marketplace(marketplace)]
        else:
            targets = list(self._running)

        stopped = []
        for target in targets:
            context = self._running.get(target)
            if context is not None:
                context.cancel()
                stopped.append(context.marketplace.value)
        if stopped:
            logger.info(f"Stop requested for: {', '.join(stopped)}")
        return stopped

    def status(self) -> Dict[str, Dict]:
        return {
            mp.value: {
                "running": mp in self._running,
                "started_at": self._running[mp].started_at.isoformat() if mp in self._running else None,
                "stopping": self._running[mp].cancelled if mp in self._running else False,
            }
            for mp in Marketplace
        }

    async def import_all(self, marketplaces: Optional[List[Marketplace]] = None) -> Dict[str, ImportResult]:
        """Import every marketplace in turn; one failure does not stop the rest."""
        results: Dict[str, ImportResult] = {}
        for marketplace in marketplaces or list(Marketplace):
            known = _as_marketplace(marketplace)
            key = known.value if known else str(marketplace)
            if known and not self._is_configured(known):
                logger.warning(f"[{key.upper()}] No credentials configured, importing with placeholder token")

            result = await self.run(marketplace)
            results[key] = result
            if result.success:
                logger.info(f"[{key.upper()}] Imported {result.count}")
            else:
                logger.error(f"[{key.upper()}] Import failed: {result.error}")
        return results
