"""
Catalog Sync - Otto Adapter
Paging follows the `links[rel=next]` entries of the v4 product listing; price
and quantity live behind two separate endpoints.
"""

import logging
from typing import Any, Dict, List, Optional

from ..exceptions import MarketplaceAPIError
from ..models import (
    PLACEHOLDER_TITLE,
    ExportResult,
    ImportedProduct,
    Marketplace,
    Page,
    Product,
    ProductUpdate,
)
from .base import MarketplaceAdapter

logger = logging.getLogger(__name__)


class OttoAdapter(MarketplaceAdapter):

    MARKETPLACE = Marketplace.OTTO
    MAX_PAGES = 50
    PAGE_SIZE = 50
    BASE_URL = "https://api.otto.market"

    def __init__(self, settings=None, transport=None, token_manager=None):
        super().__init__(settings, transport, token_manager)
        if settings is not None and settings.otto_base_url:
            self.BASE_URL = settings.otto_base_url.rstrip("/")

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def fetch_page(self, token: str, cursor: Any = None) -> Page:
        url = cursor or f"{self.BASE_URL}/v4/products?limit={self.PAGE_SIZE}"
        response = await self.request("GET", url, headers=self._headers(token))
        data = response.json()

        if isinstance(data, list):
            raw_items = data
        else:
            raw_items = data.get("productVariations") or data.get("resources") or []

        items = [self._map_item(raw) for raw in raw_items]
        next_url = None if not items else self._next_link(data)
        return Page(items=items, next_cursor=next_url)

    def _map_item(self, raw: Dict) -> ImportedProduct:
        pricing = raw.get("pricing") or {}
        standard_price = pricing.get("standardPrice") or {}
        stock = raw.get("stock") or {}
        description = raw.get("productDescription") or {}
        return ImportedProduct(
            marketplace=self.MARKETPLACE,
            external_id=raw.get("productReference") or raw.get("sku"),
            title=raw.get("productName") or raw.get("productReference") or PLACEHOLDER_TITLE,
            description=description.get("description") or raw.get("description") or "",
            sku=raw.get("sku") or raw.get("partnerSku"),
            ean=raw.get("ean") or raw.get("gtin"),
            price=standard_price.get("amount") or raw.get("price"),
            quantity=stock.get("quantity") or raw.get("quantity"),
            images=[m["location"] for m in raw.get("mediaAssets") or [] if m.get("location")],
        )

    def _next_link(self, data: Any) -> Optional[str]:
        if not isinstance(data, dict):
            return None
        links = data.get("links")
        if not isinstance(links, list):
            return None
        for link in links:
            if link.get("rel") == "next" and link.get("href"):
                href = link["href"]
                if href.startswith("http"):
                    return href
                return f"{self.BASE_URL}{href}" if href.startswith("/") else f"{self.BASE_URL}/{href}"
        return None

    async def create_listing(self, token: str, product: Product) -> ExportResult:
        if not product.sku:
            return ExportResult(success=False, error="Otto listings need a SKU")

        variation = {
            "productReference": product.sku,
            "sku": product.sku,
            "ean": product.ean or None,
            "productDescription": {
                "description": product.description,
                "bulletPoints": [],
            },
            "mediaAssets": [{"type": "IMAGE", "location": url} for url in product.images],
            "pricing": {
                "standardPrice": {"amount": float(product.price), "currency": "EUR"},
            },
        }
        if product.title:
            variation["productName"] = product.title

        headers = self._headers(token)
        await self.request("POST", f"{self.BASE_URL}/v5/products", json=[variation], headers=headers)
        await self.request(
            "POST",
            f"{self.BASE_URL}/v1/availability/quantities",
            json=[{"sku": product.sku, "quantity": product.quantity}],
            headers=headers,
        )
        logger.info(f"[OTTO] Created listing {product.sku}")
        return ExportResult(success=True, external_id=product.sku)

    async def update_listing(self, token: str, external_id: str, updates: ProductUpdate) -> ExportResult:
        changes = updates.changes()
        sku = changes.get("sku") or external_id
        headers = self._headers(token)
        errors: List[str] = []

        if "price" in changes:
            try:
                await self.request(
                    "POST",
                    f"{self.BASE_URL}/v5/products/prices",
                    json=[{
                        "sku": sku,
                        "standardPrice": {"amount": float(changes["price"]), "currency": "EUR"},
                    }],
                    headers=headers,
                )
            except MarketplaceAPIError as e:
                logger.error(f"[OTTO] Price update failed for {sku}: {e}")
                errors.append(f"Price: {e}")

        if "quantity" in changes:
            try:
                await self.request(
                    "POST",
                    f"{self.BASE_URL}/v1/availability/quantities",
                    json=[{"sku": sku, "quantity": changes["quantity"]}],
                    headers=headers,
                )
            except MarketplaceAPIError as e:
                logger.error(f"[OTTO] Quantity update failed for {sku}: {e}")
                errors.append(f"Qty: {e}")

        if errors:
            return ExportResult(success=False, error=" | ".join(errors))
        return ExportResult(success=True, external_id=external_id)
