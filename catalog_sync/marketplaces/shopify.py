"""
Catalog Sync - Shopify Adapter
Admin REST API. Pages are chained through the Link header; price, stock and
SKU live on the variant, so updates look up the first variant id first.
"""

import logging
import re
from typing import Any, Dict, Optional

from ..exceptions import ConfigurationError
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

NEXT_LINK_PATTERN = re.compile(r'<([^>]+)>;\s*rel="next"')
HTML_TAG_PATTERN = re.compile(r"<[^>]*>?")


def strip_html(html: Optional[str]) -> str:
    if not html:
        return ""
    return HTML_TAG_PATTERN.sub("", html)


class ShopifyAdapter(MarketplaceAdapter):

    MARKETPLACE = Marketplace.SHOPIFY
    PAGE_SIZE = 250

    def __init__(self, settings=None, transport=None, token_manager=None):
        super().__init__(settings, transport, token_manager)
        self.shop_domain = settings.shopify_shop_domain if settings is not None else ""
        self.api_version = settings.shopify_api_version if settings is not None else "2024-01"

    @property
    def base_url(self) -> str:
        if not self.shop_domain:
            raise ConfigurationError("Shopify shop domain not set", "SHOPIFY_SHOP_DOMAIN")
        return f"https://{self.shop_domain}/admin/api/{self.api_version}"

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": token,
            "Content-Type": "application/json",
        }

    async def fetch_page(self, token: str, cursor: Any = None) -> Page:
        url = cursor or f"{self.base_url}/products.json?limit={self.PAGE_SIZE}"
        response = await self.request("GET", url, headers=self._headers(token))
        products = response.json().get("products") or []

        items = [self._map_product(raw) for raw in products]

        next_url = None
        link_header = response.headers.get("link")
        if link_header and 'rel="next"' in link_header:
            match = NEXT_LINK_PATTERN.search(link_header)
            next_url = match.group(1) if match else None
        return Page(items=items, next_cursor=next_url)

    def _map_product(self, raw: Dict) -> ImportedProduct:
        variants = raw.get("variants") or []
        variant = variants[0] if variants else {}
        return ImportedProduct(
            marketplace=self.MARKETPLACE,
            external_id=raw.get("id"),
            title=raw.get("title") or PLACEHOLDER_TITLE,
            description=strip_html(raw.get("body_html")),
            sku=variant.get("sku") or f"SHOPIFY-{raw.get('id')}",
            ean=variant.get("barcode"),
            price=variant.get("price"),
            quantity=variant.get("inventory_quantity"),
            images=[img["src"] for img in raw.get("images") or [] if img.get("src")],
        )

    async def create_listing(self, token: str, product: Product) -> ExportResult:
        variant: Dict[str, Any] = {
            "price": str(product.price),
            "sku": product.sku,
            "inventory_quantity": product.quantity,
            "weight": product.weight,
            "weight_unit": "kg",
        }
        if product.ean:
            variant["barcode"] = product.ean

        body: Dict[str, Any] = {
            "product": {
                "title": product.title,
                "body_html": product.description,
                "variants": [variant],
                "images": [{"src": url} for url in product.images],
            }
        }
        if product.shipping_type:
            body["product"]["tags"] = product.shipping_type

        response = await self.request(
            "POST", f"{self.base_url}/products.json", json=body, headers=self._headers(token),
        )
        created = response.json().get("product") or {}
        product_id = created.get("id")
        if not product_id:
            return ExportResult(success=False, error="Shopify did not return a product id")

        logger.info(f"[SHOPIFY] Created product {product_id}")
        return ExportResult(success=True, external_id=str(product_id))

    async def _first_variant_id(self, token: str, external_id: str) -> Optional[Any]:
        response = await self.request(
            "GET", f"{self.base_url}/products/{external_id}.json", headers=self._headers(token),
        )
        variants = (response.json().get("product") or {}).get("variants") or []
        return variants[0].get("id") if variants else None

    async def update_listing(self, token: str, external_id: str, updates: ProductUpdate) -> ExportResult:
        changes = updates.changes()
        product: Dict[str, Any] = {"id": external_id}

        if "title" in changes:
            product["title"] = changes["title"]
        if "description" in changes:
            product["body_html"] = changes["description"]

        variant_fields = {k: changes[k] for k in ("price", "quantity", "sku", "weight") if k in changes}
        if variant_fields:
            variant_id = await self._first_variant_id(token, external_id)
            if variant_id:
                variant: Dict[str, Any] = {"id": variant_id}
                if "price" in variant_fields:
                    variant["price"] = str(variant_fields["price"])
                if "quantity" in variant_fields:
                    variant["inventory_quantity"] = variant_fields["quantity"]
                if "sku" in variant_fields:
                    variant["sku"] = variant_fields["sku"]
                if "weight" in variant_fields:
                    variant["weight"] = variant_fields["weight"]
                    variant["weight_unit"] = "kg"
                product["variants"] = [variant]
            else:
                logger.warning(f"[SHOPIFY] Product {external_id} has no variants, price/stock not sent")

        if "images" in changes:
            # Replaces every image on the product
            product["images"] = [{"src": url} for url in changes["images"]]

        if "shipping_type" in changes:
            product["tags"] = changes["shipping_type"]

        await self.request(
            "PUT",
            f"{self.base_url}/products/{external_id}.json",
            json={"product": product},
            headers=self._headers(token),
        )
        logger.info(f"[SHOPIFY] Updated product {external_id}")
        return ExportResult(success=True, external_id=external_id)
