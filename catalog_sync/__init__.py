"""
Catalog Sync - catalog_sync package
"""

from .database import CatalogStore
from .exporter import CatalogExporter
from .importer import CatalogImporter, ImportContext, ImportRunner, ProductUpserter
from .marketplaces import ADAPTERS, build_adapter
from .models import (
    Marketplace,
    Product,
    ProductUpdate,
    ImportResult,
    ExportResult,
    SyncReport,
)
from .sync import SyncService
from .tokens import TokenManager, StoreCredentialProvider, SettingsCredentialProvider

__all__ = [
    "CatalogStore",
    "CatalogExporter",
    "CatalogImporter",
    "ImportContext",
    "ImportRunner",
    "ProductUpserter",
    "ADAPTERS",
    "build_adapter",
    "Marketplace",
    "Product",
    "ProductUpdate",
    "ImportResult",
    "ExportResult",
    "SyncReport",
    "SyncService",
    "TokenManager",
    "StoreCredentialProvider",
    "SettingsCredentialProvider",
]
