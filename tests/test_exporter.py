"""
Catalog Sync - Exporter Tests
Tests for publish and update against a fake marketplace.
"""

import asyncio
from pathlib import Path
from decimal import Decimal

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_sync.exporter import CatalogExporter
from catalog_sync.models import (
    ExportResult,
    LogStatus,
    Marketplace,
    Product,
    ProductStatus,
    ProductUpdate,
    SyncAction,
    SyncStatus,
)
from catalog_sync.tokens import MOCK_TOKEN


class TestPublish:
    """Tests for publish_product."""

    def test_publish_creates_one_link(self, temp_store, sample_product, fake_adapter):
        temp_store.insert_product(sample_product)
        adapter = fake_adapter(Marketplace.SHOPIFY)

        result = asyncio.run(CatalogExporter(adapter, temp_store).publish_product(sample_product.id))

        assert result.success
        assert result.external_id
        assert temp_store.count_links(product_id=sample_product.id) == 1
        link = temp_store.get_link(sample_product.id, Marketplace.SHOPIFY)
        assert link.external_id == result.external_id
        assert link.sync_status == SyncStatus.SYNCED
        assert link.price == Decimal("24.99")
        assert link.quantity == 12

    def test_publish_marks_product_published(self, temp_store, sample_product, fake_adapter):
        temp_store.insert_product(sample_product)

        asyncio.run(CatalogExporter(fake_adapter(Marketplace.OTTO), temp_store).publish_product(sample_product.id))

        assert temp_store.get_product(sample_product.id).status == ProductStatus.PUBLISHED

    def test_publish_twice_keeps_single_link(self, temp_store, sample_product, fake_adapter):
        temp_store.insert_product(sample_product)
        exporter = CatalogExporter(fake_adapter(Marketplace.OTTO), temp_store)

        asyncio.run(exporter.publish_product(sample_product.id))
        asyncio.run(exporter.publish_product(sample_product.id))

        assert temp_store.count_links(product_id=sample_product.id) == 1

    def test_publish_logs_export(self, temp_store, sample_product, fake_adapter):
        temp_store.insert_product(sample_product)

        asyncio.run(CatalogExporter(fake_adapter(Marketplace.EBAY), temp_store).publish_product(sample_product.id))

        logs = temp_store.get_sync_logs(marketplace="ebay")
        assert [(l.action, l.status) for l in logs] == [
            (SyncAction.EXPORT, LogStatus.SUCCESS),
            (SyncAction.EXPORT, LogStatus.PENDING),
        ]

    def test_publish_uses_placeholder_token(self, temp_store, sample_product, fake_adapter):
        temp_store.insert_product(sample_product)
        adapter = fake_adapter(Marketplace.OTTO)

        asyncio.run(CatalogExporter(adapter, temp_store).publish_product(sample_product.id))

        assert adapter.create_calls[0][0] == MOCK_TOKEN

    def test_publish_missing_product(self, temp_store, fake_adapter):
        adapter = fake_adapter(Marketplace.OTTO)

        result = asyncio.run(CatalogExporter(adapter, temp_store).publish_product("missing"))

        assert not result.success
        assert result.error == "Product not found [product_id=missing]"
        assert adapter.create_calls == []
        assert temp_store.get_sync_logs()[0].error_message == result.error

    def test_publish_requires_optimized(self, temp_store, fake_adapter, test_settings):
        product = temp_store.insert_product(Product(title="Rohimport", status=ProductStatus.IMPORTED))
        settings = test_settings.model_copy(update={"publish_requires_optimized": True})
        adapter = fake_adapter(Marketplace.OTTO)

        result = asyncio.run(CatalogExporter(adapter, temp_store, settings=settings).publish_product(product.id))

        assert not result.success
        assert adapter.create_calls == []

    def test_marketplace_rejection(self, temp_store, sample_product, fake_adapter):
        temp_store.insert_product(sample_product)
        adapter = fake_adapter(Marketplace.KAUFLAND,
                               create_result=ExportResult(success=False, error="EAN unknown"))

        result = asyncio.run(CatalogExporter(adapter, temp_store).publish_product(sample_product.id))

        assert not result.success
        assert result.error == "EAN unknown"
        assert temp_store.count_links() == 0
        assert temp_store.get_sync_logs()[0].status == LogStatus.FAILED

    def test_exception_is_returned_not_raised(self, temp_store, sample_product, fake_adapter):
        temp_store.insert_product(sample_product)
        adapter = fake_adapter(Marketplace.EBAY, create_raises=RuntimeError("socket closed"))

        result = asyncio.run(CatalogExporter(adapter, temp_store).publish_product(sample_product.id))

        assert not result.success
        assert "socket closed" in result.error
        assert temp_store.count_links() == 0


class TestUpdate:
    """Tests for update_product."""

    def test_missing_link_is_reported(self, temp_store, sample_product, fake_adapter):
        temp_store.insert_product(sample_product)
        adapter = fake_adapter(Marketplace.OTTO)

        result = asyncio.run(CatalogExporter(adapter, temp_store).update_product(
            sample_product.id, ProductUpdate(price=Decimal("12.50"))
        ))

        assert not result.success
        assert result.error == "Product not linked to this marketplace"
        assert adapter.update_calls == []
        assert temp_store.count_sync_logs() == 1

    def test_update_sends_only_present_fields(self, linked_product, fake_adapter):
        store, product = linked_product["store"], linked_product["product"]
        adapter = fake_adapter(Marketplace.OTTO)

        result = asyncio.run(CatalogExporter(adapter, store).update_product(product.id, {"price": "12.50"}))

        assert result.success
        assert adapter.update_calls == [(MOCK_TOKEN, "A1", {"price": Decimal("12.50")})]

    def test_update_refreshes_snapshot(self, linked_product, fake_adapter):
        store, product = linked_product["store"], linked_product["product"]

        asyncio.run(CatalogExporter(fake_adapter(Marketplace.OTTO), store).update_product(
            product.id, ProductUpdate(price=Decimal("12.50"), quantity=0)
        ))

        link = store.get_link(product.id, Marketplace.OTTO)
        assert link.price == Decimal("12.50")
        assert link.quantity == 0
        assert link.sync_status == SyncStatus.SYNCED
        assert link.last_synced_at is not None

    def test_update_writes_one_log_entry(self, linked_product, fake_adapter):
        store, product = linked_product["store"], linked_product["product"]

        asyncio.run(CatalogExporter(fake_adapter(Marketplace.OTTO), store).update_product(
            product.id, ProductUpdate(quantity=3)
        ))

        logs = store.get_sync_logs()
        assert len(logs) == 1
        assert (logs[0].action, logs[0].status) == (SyncAction.UPDATE, LogStatus.SUCCESS)

    def test_failed_update_marks_link_failed(self, linked_product, fake_adapter):
        store, product = linked_product["store"], linked_product["product"]
        adapter = fake_adapter(Marketplace.EBAY, update_error="Individual update failed")

        result = asyncio.run(CatalogExporter(adapter, store).update_product(product.id, ProductUpdate(quantity=1)))

        assert not result.success
        link = store.get_link(product.id, Marketplace.EBAY)
        assert link.sync_status == SyncStatus.FAILED
        assert link.quantity == 12
        assert store.get_sync_logs()[0].error_message == "Individual update failed"

    def test_raising_adapter_is_contained(self, linked_product, fake_adapter):
        store, product = linked_product["store"], linked_product["product"]
        adapter = fake_adapter(Marketplace.OTTO, update_raises=TimeoutError("read timeout"))

        result = asyncio.run(CatalogExporter(adapter, store).update_product(product.id, ProductUpdate(quantity=1)))

        assert not result.success
        assert "read timeout" in result.error
        assert store.get_link(product.id, Marketplace.OTTO).sync_status == SyncStatus.FAILED
