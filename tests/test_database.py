"""
Catalog Sync - Database Tests
Tests for CatalogStore SQLite operations.
"""

import pytest
from pathlib import Path
from decimal import Decimal
from datetime import datetime, timedelta

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_sync.database import CatalogStore
from catalog_sync.models import (
    Credential,
    LogStatus,
    Marketplace,
    MarketplaceLink,
    Product,
    ProductStatus,
    SyncAction,
    SyncStatus,
)


def _link(product_id, marketplace, external_id, **fields) -> MarketplaceLink:
    return MarketplaceLink(product_id=product_id, marketplace=marketplace, external_id=external_id, **fields)


class TestStoreInitialization:
    """Tests for store initialization."""

    def test_store_creates_file(self, tmp_path):
        """Store should create the SQLite file (and missing folders)."""
        db_path = tmp_path / "data" / "catalog.db"
        store = CatalogStore(db_path)

        assert db_path.exists()
        store.close()

    def test_stats_empty(self, temp_store):
        stats = temp_store.get_stats()

        assert stats["total_products"] == 0
        assert stats["synced"] == 0
        assert set(stats["marketplaces"]) == {"otto", "ebay", "kaufland", "shopify"}


class TestProducts:
    """Tests for product persistence."""

    def test_insert_and_get(self, temp_store, sample_product):
        temp_store.insert_product(sample_product)
        loaded = temp_store.get_product(sample_product.id)

        assert loaded.title == sample_product.title
        assert loaded.price == Decimal("24.99")
        assert loaded.images == sample_product.images
        assert loaded.status == ProductStatus.OPTIMIZED

    def test_get_unknown_product(self, temp_store):
        assert temp_store.get_product("missing") is None

    def test_find_by_ean_trims(self, temp_store, sample_product):
        temp_store.insert_product(sample_product)
        assert temp_store.find_product_by_ean("  4001234567890 ").id == sample_product.id

    def test_blank_ean_never_matches(self, temp_store):
        """Products without EAN must not be merged with each other."""
        temp_store.insert_product(Product(title="A", ean=""))
        assert temp_store.find_product_by_ean("") is None
        assert temp_store.find_product_by_ean("   ") is None

    def test_find_by_sku(self, temp_store, sample_product):
        temp_store.insert_product(sample_product)
        assert temp_store.find_product_by_sku("GS-20").id == sample_product.id
        assert temp_store.find_product_by_sku("") is None

    def test_update_product_ignores_unknown_columns(self, temp_store, sample_product):
        temp_store.insert_product(sample_product)
        updated = temp_store.update_product(sample_product.id, {"quantity": 0, "bogus": 1})

        assert updated
        product = temp_store.get_product(sample_product.id)
        assert product.quantity == 0
        assert product.updated_at is not None

    def test_update_product_nothing_to_update(self, temp_store, sample_product):
        temp_store.insert_product(sample_product)
        assert not temp_store.update_product(sample_product.id, {"bogus": 1})

    def test_delete_product_cascades_links(self, temp_store, sample_product):
        temp_store.insert_product(sample_product)
        temp_store.upsert_link(_link(sample_product.id, Marketplace.OTTO, "A1"))

        assert temp_store.delete_product(sample_product.id)
        assert temp_store.get_product(sample_product.id) is None
        assert temp_store.count_links() == 0

    def test_delete_products_batch(self, temp_store):
        ids = [temp_store.insert_product(Product(title=f"P{i}")).id for i in range(3)]

        assert temp_store.delete_products(ids[:2]) == 2
        assert temp_store.count_products() == 1

    def test_count_by_status(self, temp_store):
        temp_store.insert_product(Product(title="A", status=ProductStatus.OPTIMIZED))
        temp_store.insert_product(Product(title="B"))

        assert temp_store.count_products(status=ProductStatus.OPTIMIZED) == 1
        assert temp_store.count_products() == 2


class TestLinks:
    """Tests for marketplace links."""

    def test_upsert_is_unique_per_marketplace(self, temp_store, sample_product):
        """Second upsert for the same (product, marketplace) updates in place."""
        temp_store.insert_product(sample_product)
        temp_store.upsert_link(_link(sample_product.id, Marketplace.OTTO, "A1", quantity=5))
        temp_store.upsert_link(_link(sample_product.id, Marketplace.OTTO, "A2", quantity=7,
                                     sync_status=SyncStatus.SYNCED))

        assert temp_store.count_links(product_id=sample_product.id) == 1
        link = temp_store.get_link(sample_product.id, Marketplace.OTTO)
        assert link.external_id == "A2"
        assert link.quantity == 7
        assert link.sync_status == SyncStatus.SYNCED

    def test_find_by_external_id(self, temp_store, sample_product):
        temp_store.insert_product(sample_product)
        temp_store.upsert_link(_link(sample_product.id, Marketplace.KAUFLAND, "389371064017"))

        link = temp_store.find_link_by_external_id(Marketplace.KAUFLAND, "389371064017")
        assert link.product_id == sample_product.id
        assert temp_store.find_link_by_external_id(Marketplace.OTTO, "389371064017") is None

    def test_get_links_excluding(self, linked_product):
        store, product = linked_product["store"], linked_product["product"]

        links = store.get_links(product.id, exclude=Marketplace.OTTO)
        assert [l.marketplace for l in links] == [Marketplace.EBAY]

    def test_update_link_snapshot(self, linked_product):
        store, product = linked_product["store"], linked_product["product"]
        now = datetime.now()

        store.update_link(product.id, Marketplace.OTTO, {
            "price": Decimal("12.50"), "sync_status": SyncStatus.FAILED, "last_synced_at": now,
        })
        link = store.get_link(product.id, Marketplace.OTTO)
        assert link.price == Decimal("12.50")
        assert link.sync_status == SyncStatus.FAILED
        assert link.last_synced_at == now

    def test_cleanup_single_marketplace_keeps_products(self, linked_product):
        store = linked_product["store"]

        result = store.cleanup_marketplace("otto")
        assert result == {"links": 1, "products": 0}
        assert store.count_products() == 1
        assert store.count_links() == 1

    def test_cleanup_all(self, linked_product):
        store = linked_product["store"]

        result = store.cleanup_marketplace("all")
        assert result == {"links": 2, "products": 1}
        assert store.count_products() == 0

    def test_stats_count_links(self, linked_product):
        stats = linked_product["store"].get_stats()

        assert stats["synced"] == 2
        assert stats["marketplaces"]["otto"] == 1
        assert stats["marketplaces"]["kaufland"] == 0


class TestCredentials:
    """Tests for stored credentials."""

    def test_save_and_get(self, temp_store):
        temp_store.save_credential(Credential(
            marketplace=Marketplace.KAUFLAND, client_key="ck", secret_key="sk",
        ))
        credential = temp_store.get_credential(Marketplace.KAUFLAND)

        assert credential.client_key == "ck"
        assert credential.secret_key == "sk"
        assert credential.source == "store"

    def test_save_replaces(self, temp_store):
        temp_store.save_credential(Credential(marketplace=Marketplace.OTTO, access_token="old"))
        temp_store.save_credential(Credential(marketplace=Marketplace.OTTO, access_token="new"))

        assert temp_store.get_credential(Marketplace.OTTO).access_token == "new"

    def test_missing_credential(self, temp_store):
        assert temp_store.get_credential(Marketplace.SHOPIFY) is None


class TestSyncLogs:
    """Tests for the audit log."""

    def test_newest_first(self, temp_store):
        temp_store.log_sync(Marketplace.OTTO, SyncAction.IMPORT, LogStatus.PENDING)
        temp_store.log_sync(Marketplace.OTTO, SyncAction.IMPORT, LogStatus.FAILED, "timeout")

        logs = temp_store.get_sync_logs()
        assert logs[0].status == LogStatus.FAILED
        assert logs[0].error_message == "timeout"
        assert logs[1].status == LogStatus.PENDING

    def test_filter_by_marketplace(self, temp_store):
        temp_store.log_sync(Marketplace.OTTO, SyncAction.UPDATE, LogStatus.SUCCESS)
        temp_store.log_sync(Marketplace.EBAY, SyncAction.UPDATE, LogStatus.SUCCESS)

        assert temp_store.count_sync_logs(marketplace="otto") == 1
        assert [l.marketplace for l in temp_store.get_sync_logs(marketplace="ebay")] == ["ebay"]

    def test_filter_by_since(self, temp_store):
        temp_store.log_sync(Marketplace.OTTO, SyncAction.UPDATE, LogStatus.SUCCESS)

        assert temp_store.count_sync_logs(since=datetime.now() - timedelta(hours=1)) == 1
        assert temp_store.count_sync_logs(since=datetime.now() + timedelta(hours=1)) == 0

    def test_paging(self, temp_store):
        for _ in range(5):
            temp_store.log_sync(Marketplace.SHOPIFY, SyncAction.EXPORT, LogStatus.SUCCESS)

        assert len(temp_store.get_sync_logs(limit=2)) == 2
        assert len(temp_store.get_sync_logs(limit=2, offset=4)) == 1
