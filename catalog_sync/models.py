"""
Catalog Sync - Pydantic Models
Data models for canonical products, marketplace links, credentials and results.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class Marketplace(str, Enum):
    """Marketplaces the catalog can be linked to."""
    OTTO = "otto"
    EBAY = "ebay"
    KAUFLAND = "kaufland"
    SHOPIFY = "shopify"


class ProductStatus(str, Enum):
    """Product lifecycle: imported -> optimized -> published."""
    IMPORTED = "imported"
    OPTIMIZED = "optimized"
    PUBLISHED = "published"


class SyncStatus(str, Enum):
    """Sync state of a marketplace link."""
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class SyncAction(str, Enum):
    IMPORT = "import"
    EXPORT = "export"
    UPDATE = "update"


class LogStatus(str, Enum):
    """Status values written to the sync log."""
    PENDING = "pending"
    SUCCESS = "success"  # export / update
    SYNCED = "synced"    # import
    FAILED = "failed"


PLACEHOLDER_TITLE = "Unknown Title"

# Titles adapters emit when the marketplace has none
PLACEHOLDER_TITLES = frozenset(t.lower() for t in (
    PLACEHOLDER_TITLE,
    "Unknown eBay Item",
    "Unknown Kaufland Item",
))


def is_placeholder_title(title: Optional[str]) -> bool:
    if not title or not title.strip():
        return True
    return title.strip().lower() in PLACEHOLDER_TITLES


class Product(BaseModel):
    """Canonical product owned by the catalog store."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = ""
    description: str = ""
    sku: str = ""
    ean: str = ""
    price: Decimal = Decimal("0")
    quantity: int = Field(default=0, ge=0)
    weight: float = 0.0
    images: List[str] = Field(default_factory=list)
    status: ProductStatus = ProductStatus.IMPORTED
    shipping_type: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None


class ImportedProduct(BaseModel):
    """A marketplace listing mapped into the canonical shape."""
    marketplace: Marketplace
    external_id: str
    title: str = PLACEHOLDER_TITLE
    description: str = ""
    sku: str = ""
    ean: str = ""
    price: Decimal = Decimal("0")
    quantity: int = 0
    weight: float = 0.0
    images: List[str] = Field(default_factory=list)

    @field_validator("sku", "ean", "external_id", mode="before")
    @classmethod
    def clean_identifier(cls, v):
        """Identifiers arrive as ints, None or padded strings."""
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("quantity", mode="before")
    @classmethod
    def clamp_quantity(cls, v):
        if v is None or v == "":
            return 0
        try:
            return max(0, int(float(v)))
        except (TypeError, ValueError):
            return 0

    @field_validator("price", mode="before")
    @classmethod
    def parse_price(cls, v):
        if v is None or v == "":
            return Decimal("0")
        try:
            return Decimal(str(v))
        except ArithmeticError:
            return Decimal("0")


class MarketplaceLink(BaseModel):
    """A product listed as one external entity on one marketplace."""
    product_id: str
    marketplace: Marketplace
    external_id: str
    price: Optional[Decimal] = None
    quantity: Optional[int] = None
    sync_status: SyncStatus = SyncStatus.PENDING
    last_synced_at: Optional[datetime] = None


class Credential(BaseModel):
    """Per-marketplace credential material (OAuth, HMAC keys or API key)."""
    marketplace: Marketplace
    source: str = "store"  # 'store' or 'env'
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None  # epoch milliseconds
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    client_key: Optional[str] = None
    secret_key: Optional[str] = None
    api_key: Optional[str] = None

    @property
    def from_env(self) -> bool:
        return self.source == "env"

    @property
    def has_material(self) -> bool:
        """True if anything usable for authentication is present."""
        return bool(
            self.access_token or self.client_id or self.client_key or self.api_key
        )

    def secrets(self) -> Dict[str, Any]:
        """Credential fields as persisted in the store (no bookkeeping)."""
        return self.model_dump(exclude={"marketplace", "source"}, exclude_none=True)


class SyncLogEntry(BaseModel):
    """Append-only audit record."""
    id: Optional[int] = None
    marketplace: str
    action: SyncAction
    status: LogStatus
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)


class ProductUpdate(BaseModel):
    """
    Partial update pushed to marketplaces.

    Only fields explicitly set are sent; a price or quantity of 0 is a
    real value and is propagated.
    """
    price: Optional[Decimal] = Field(default=None, ge=0)
    quantity: Optional[int] = Field(default=None, ge=0)
    title: Optional[str] = None
    description: Optional[str] = None
    weight: Optional[float] = None
    images: Optional[List[str]] = None
    shipping_type: Optional[str] = None
    sku: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        """Fields present in this update, None values dropped."""
        return {
            k: v for k, v in self.model_dump(exclude_unset=True).items()
            if v is not None
        }

    @property
    def is_empty(self) -> bool:
        return not self.changes()

    @property
    def touches_listing(self) -> bool:
        """True when marketplaces care about this edit."""
        return any(
            k in self.changes()
            for k in ("price", "quantity", "title", "description")
        )


class Page(BaseModel):
    """One page of marketplace listings."""
    items: List[ImportedProduct] = Field(default_factory=list)
    next_cursor: Optional[Any] = None


class ImportResult(BaseModel):
    success: bool
    count: int = 0
    error: Optional[str] = None


class ExportResult(BaseModel):
    success: bool
    external_id: Optional[str] = None
    error: Optional[str] = None


class MarketplaceOutcome(BaseModel):
    """Result of one marketplace call inside a fan-out."""
    marketplace: str
    success: bool
    error: Optional[str] = None


class SyncReport(BaseModel):
    """Settled outcome of a fan-out, one entry per dispatched marketplace."""
    product_id: Optional[str] = None
    outcomes: List[MarketplaceOutcome] = Field(default_factory=list)
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def succeeded(self) -> List[str]:
        return [o.marketplace for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[str]:
        return [o.marketplace for o in self.outcomes if not o.success]

    @property
    def success(self) -> bool:
        return self.error is None and not self.failed
