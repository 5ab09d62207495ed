"""
Catalog Sync - eBay Adapter
Listings are read through the Browse API (seller-filtered search), created
through the Inventory API (inventory item + offer) and updated with
bulk_update_price_quantity, which answers 200 even when the item failed.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from ..exceptions import MarketplaceAPIError
from ..models import (
    ExportResult,
    ImportedProduct,
    Marketplace,
    Page,
    Product,
    ProductUpdate,
)
from .base import MarketplaceAdapter

logger = logging.getLogger(__name__)


class EbayAdapter(MarketplaceAdapter):

    MARKETPLACE = Marketplace.EBAY
    PAGE_SIZE = 100
    API_URL = "https://api.ebay.com"
    PLACEHOLDER = "Unknown eBay Item"

    def __init__(self, settings=None, transport=None, token_manager=None):
        super().__init__(settings, transport, token_manager)
        self.seller_id = settings.ebay_seller_id if settings is not None else ""
        self.marketplace_id = settings.ebay_marketplace_id if settings is not None else "EBAY_DE"

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Content-Language": "de-DE",
            "X-EBAY-C-MARKETPLACE-ID": self.marketplace_id,
        }

    def _first_page_url(self) -> str:
        # "q= " matches every item when a seller filter is applied
        url = f"{self.API_URL}/buy/browse/v1/item_summary/search?q=%20&limit={self.PAGE_SIZE}"
        if self.seller_id:
            url += "&filter=" + quote(f"sellers:{{{self.seller_id}}}")
        return url

    async def fetch_page(self, token: str, cursor: Any = None) -> Page:
        url = cursor or self._first_page_url()
        response = await self.request("GET", url, headers=self._headers(token))
        data = response.json()

        items = [self._map_item(raw) for raw in data.get("itemSummaries") or []]

        next_url = data.get("next") if items else None
        # eBay sometimes drops the query parameter from the next link
        if next_url and "q=" not in next_url:
            next_url += "&q=%20"
        return Page(items=items, next_cursor=next_url)

    def _map_item(self, raw: Dict) -> ImportedProduct:
        price = raw.get("price") or {}
        image = raw.get("image") or {}
        return ImportedProduct(
            marketplace=self.MARKETPLACE,
            external_id=raw.get("itemId"),
            title=raw.get("title") or self.PLACEHOLDER,
            description=raw.get("shortDescription") or "",
            sku=raw.get("sku") or raw.get("legacyItemId") or raw.get("itemId"),
            ean=raw.get("gtin") or raw.get("ean") or raw.get("upc") or raw.get("isbn"),
            price=price.get("value"),
            quantity=1,  # Browse API does not expose stock
            images=[image["imageUrl"]] if image.get("imageUrl") else [],
        )

    async def create_listing(self, token: str, product: Product) -> ExportResult:
        if not product.sku:
            return ExportResult(success=False, error="eBay inventory items need a SKU")

        headers = self._headers(token)
        inventory_item = {
            "availability": {
                "shipToLocationAvailability": {"quantity": product.quantity},
            },
            "condition": "NEW",
            "product": {
                "title": product.title,
                "description": product.description,
                "imageUrls": product.images,
            },
        }
        if product.ean:
            inventory_item["product"]["ean"] = [product.ean]

        await self.request(
            "PUT",
            f"{self.API_URL}/sell/inventory/v1/inventory_item/{quote(product.sku, safe='')}",
            json=inventory_item,
            headers=headers,
        )

        offer = {
            "sku": product.sku,
            "marketplaceId": self.marketplace_id,
            "format": "FIXED_PRICE",
            "availableQuantity": product.quantity,
            "listingDescription": product.description,
            "pricingSummary": {
                "price": {"value": str(product.price), "currency": "EUR"},
            },
        }
        response = await self.request(
            "POST", f"{self.API_URL}/sell/inventory/v1/offer", json=offer, headers=headers,
        )
        offer_id = response.json().get("offerId")
        if not offer_id:
            return ExportResult(success=False, error="eBay did not return an offerId")

        logger.info(f"[EBAY] Created offer {offer_id} for SKU {product.sku}")
        return ExportResult(success=True, external_id=str(offer_id))

    async def _offer_sku(self, token: str, offer_id: str) -> Optional[str]:
        """SKU behind an offer id, or None for imported listings keyed by SKU or item id."""
        try:
            response = await self.request(
                "GET",
                f"{self.API_URL}/sell/inventory/v1/offer/{quote(offer_id, safe='')}",
                headers=self._headers(token),
            )
        except MarketplaceAPIError as e:
            logger.debug(f"[EBAY] No offer {offer_id}, using it as SKU: {e}")
            return None
        return response.json().get("sku") or None

    async def update_listing(self, token: str, external_id: str, updates: ProductUpdate) -> ExportResult:
        changes = updates.changes()
        if "price" not in changes and "quantity" not in changes:
            logger.debug(f"[EBAY] Nothing to push for {external_id} (only price/quantity are synced)")
            return ExportResult(success=True, external_id=external_id)

        sku = changes.get("sku")
        offer_sku = None
        if not sku:
            offer_sku = await self._offer_sku(token, external_id)
            sku = offer_sku or external_id

        request: Dict[str, Any] = {"sku": sku}
        if "price" in changes:
            offer: Dict[str, Any] = {"price": {"value": str(changes["price"]), "currency": "EUR"}}
            if offer_sku:
                offer["offerId"] = external_id
            request["offers"] = [offer]
        if "quantity" in changes:
            request["shipToLocationAvailability"] = {"quantity": changes["quantity"]}

        response = await self.request(
            "POST",
            f"{self.API_URL}/sell/inventory/v1/bulk_update_price_quantity",
            json={"requests": [request]},
            headers=self._headers(token),
        )

        responses = response.json().get("responses") or []
        if responses and (responses[0].get("statusCode") or 200) >= 400:
            errors = responses[0].get("errors") or []
            message = errors[0].get("message") if errors else "Individual update failed"
            logger.error(f"[EBAY] Update failed for SKU {sku}: {message}")
            return ExportResult(success=False, error=message)

        logger.info(f"[EBAY] Updated SKU {sku}")
        return ExportResult(success=True, external_id=external_id)
