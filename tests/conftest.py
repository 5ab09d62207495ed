"""
Catalog Sync - Test Fixtures
Shared fixtures for pytest tests.
"""

import pytest
from pathlib import Path
from decimal import Decimal
from typing import Dict, List, Optional

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import Settings
from catalog_sync.database import CatalogStore
from catalog_sync.marketplaces.base import MarketplaceAdapter
from catalog_sync.models import (
    ExportResult,
    ImportedProduct,
    Marketplace,
    MarketplaceLink,
    Page,
    Product,
    ProductStatus,
    SyncStatus,
)


# =============================================================================
# FAKE MARKETPLACE
# =============================================================================

class FakeAdapter(MarketplaceAdapter):
    """
    In-memory marketplace.

    pages: list of pages (lists of ImportedProduct) served in order
    fail_page_at: page index that raises instead of answering
    update_error / update_raises: make update_listing fail or raise
    on_page: callback(page_index) run before a page is served
    """

    def __init__(
        self,
        marketplace: Marketplace,
        pages: Optional[List[List[ImportedProduct]]] = None,
        fail_page_at: Optional[int] = None,
        update_error: Optional[str] = None,
        update_raises: Optional[Exception] = None,
        create_result: Optional[ExportResult] = None,
        create_raises: Optional[Exception] = None,
        on_page=None,
    ):
        super().__init__()
        self.MARKETPLACE = marketplace
        self.pages = pages or []
        self.fail_page_at = fail_page_at
        self.update_error = update_error
        self.update_raises = update_raises
        self.create_result = create_result
        self.create_raises = create_raises
        self.on_page = on_page
        self.fetch_calls: List = []
        self.create_calls: List = []
        self.update_calls: List = []

    async def fetch_page(self, token, cursor=None) -> Page:
        index = cursor or 0
        self.fetch_calls.append((token, index))
        if self.on_page is not None:
            self.on_page(index)
        if index == self.fail_page_at:
            raise ConnectionError(f"page {index} unavailable")
        if index >= len(self.pages):
            return Page(items=[])
        next_cursor = index + 1 if index + 1 < len(self.pages) else None
        return Page(items=self.pages[index], next_cursor=next_cursor)

    async def create_listing(self, token, product) -> ExportResult:
        self.create_calls.append((token, product.id))
        if self.create_raises is not None:
            raise self.create_raises
        if self.create_result is not None:
            return self.create_result
        return ExportResult(success=True, external_id=f"{self.name}-{product.id[:8]}")

    async def update_listing(self, token, external_id, updates) -> ExportResult:
        self.update_calls.append((token, external_id, updates.changes()))
        if self.update_raises is not None:
            raise self.update_raises
        if self.update_error is not None:
            return ExportResult(success=False, error=self.update_error)
        return ExportResult(success=True, external_id=external_id)


@pytest.fixture
def fake_adapter():
    """Factory for FakeAdapter instances."""
    return FakeAdapter


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def make_item():
    """Factory for imported marketplace items."""
    def _make(marketplace: Marketplace, external_id: str, **fields) -> ImportedProduct:
        data = {
            "title": f"Item {external_id}",
            "sku": "",
            "ean": "",
            "price": Decimal("10.00"),
            "quantity": 5,
        }
        data.update(fields)
        return ImportedProduct(marketplace=marketplace, external_id=external_id, **data)
    return _make


@pytest.fixture
def sample_product() -> Product:
    """Curated product ready to publish."""
    return Product(
        title="Gartenschlauch 20m",
        description="Flexibler Gartenschlauch mit Anschlussstücken",
        sku="GS-20",
        ean="4001234567890",
        price=Decimal("24.99"),
        quantity=12,
        weight=1.8,
        images=["https://cdn.example.com/gs20.jpg"],
        status=ProductStatus.OPTIMIZED,
    )


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        otto_client_id="otto-id",
        otto_client_secret="otto-secret",
        kaufland_client_key="kl-client",
        kaufland_secret_key="kl-secret",
        shopify_access_token="shpat_test",
        shopify_shop_domain="shop.example.com",
        ebay_seller_id="seller1",
    )


# =============================================================================
# STORE FIXTURES
# =============================================================================

@pytest.fixture
def temp_store(tmp_path):
    """Create a temporary catalog store for testing."""
    store = CatalogStore(tmp_path / "catalog.db")
    yield store
    store.close()


@pytest.fixture
def linked_product(temp_store, sample_product) -> Dict:
    """Product linked to Otto (A1) and eBay (B1)."""
    temp_store.insert_product(sample_product)
    for marketplace, external_id in ((Marketplace.OTTO, "A1"), (Marketplace.EBAY, "B1")):
        temp_store.upsert_link(MarketplaceLink(
            product_id=sample_product.id,
            marketplace=marketplace,
            external_id=external_id,
            price=sample_product.price,
            quantity=sample_product.quantity,
            sync_status=SyncStatus.SYNCED,
        ))
    return {"product": sample_product, "store": temp_store}
