"""
Catalog Sync - Kaufland Adapter
Kaufland Seller API v2. There is no token exchange: every request carries the
client key and an HMAC-SHA256 signature made with the secret key.
"""

import hashlib
import hmac
import json
import logging
import time
from decimal import Decimal
from typing import Any, Dict, Optional

from ..exceptions import CredentialError
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


def sign_request(method: str, url: str, body: str, timestamp: str, secret_key: str) -> str:
    """
    Kaufland request signature.

    The signed string is METHOD, full URL, raw body and unix timestamp joined
    by newlines; the body is empty for GET.
    """
    message = f"{method.upper()}\n{url}\n{body}\n{timestamp}"
    return hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def to_cents(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1")))


class KauflandAdapter(MarketplaceAdapter):

    MARKETPLACE = Marketplace.KAUFLAND
    PAGE_SIZE = 50
    API_URL = "https://sellerapi.kaufland.com/v2"
    PLACEHOLDER = "Unknown Kaufland Item"
    USER_AGENT = "CatalogSync/1.0"

    def __init__(self, settings=None, transport=None, token_manager=None, clock=time.time):
        super().__init__(settings, transport, token_manager)
        self.storefront = settings.kaufland_storefront if settings is not None else "de"
        self._clock = clock

    def _secret_key(self) -> str:
        secret: Optional[str] = None
        if self.token_manager is not None:
            credential = self.token_manager.get_credential(self.MARKETPLACE)
            if credential is not None:
                secret = credential.secret_key
        if not secret and self.settings is not None:
            secret = self.settings.kaufland_secret_key
        if not secret:
            raise CredentialError("Kaufland secret key missing", self.name)
        return secret

    def _signed_headers(self, client_key: str, method: str, url: str, body: str = "") -> Dict[str, str]:
        timestamp = str(int(self._clock()))
        return {
            "Shop-Client-Key": client_key,
            "Shop-Timestamp": timestamp,
            "Shop-Signature": sign_request(method, url, body, timestamp, self._secret_key()),
            "User-Agent": self.USER_AGENT,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def _send(self, token: str, method: str, url: str, payload: Optional[Dict] = None):
        # The body must be sent exactly as signed
        body = json.dumps(payload, separators=(",", ":")) if payload is not None else ""
        headers = self._signed_headers(token, method, url, body)
        if body:
            return await self.request(method, url, content=body.encode("utf-8"), headers=headers)
        return await self.request(method, url, headers=headers)

    async def fetch_page(self, token: str, cursor: Any = None) -> Page:
        offset = int(cursor or 0)
        url = (
            f"{self.API_URL}/units?limit={self.PAGE_SIZE}&offset={offset}"
            f"&storefront={self.storefront}&embedded=products"
        )
        response = await self._send(token, "GET", url)
        units = response.json().get("data") or []

        items = [self._map_unit(unit) for unit in units]
        # A short page is the last one
        next_offset = offset + self.PAGE_SIZE if len(units) >= self.PAGE_SIZE else None
        return Page(items=items, next_cursor=next_offset)

    def _map_unit(self, unit: Dict) -> ImportedProduct:
        product = unit.get("product") or {}
        eans = product.get("eans") or []
        picture = product.get("main_picture") or product.get("picture")
        price = unit.get("price")
        return ImportedProduct(
            marketplace=self.MARKETPLACE,
            external_id=unit.get("id_unit"),
            title=product.get("title") or self.PLACEHOLDER,
            description=product.get("description") or "",
            sku=unit.get("v_number") or unit.get("ean"),
            ean=unit.get("ean") or (eans[0] if eans else ""),
            price=Decimal(str(price)) / 100 if price not in (None, "") else 0,
            quantity=unit.get("amount"),
            images=[picture] if picture else [],
        )

    async def create_listing(self, token: str, product: Product) -> ExportResult:
        if not product.ean:
            return ExportResult(success=False, error="Kaufland units need an EAN")

        payload = {
            "ean": product.ean,
            "condition": "NEW",
            "listing_price": to_cents(product.price),
            "amount": product.quantity,
            "handling_time": 1,
            "note": product.title[:250],
        }
        if product.sku:
            payload["id_offer"] = product.sku

        url = f"{self.API_URL}/units?storefront={self.storefront}"
        response = await self._send(token, "POST", url, payload)
        data = response.json().get("data") or {}
        unit_id = data.get("id_unit")
        if not unit_id:
            return ExportResult(success=False, error="Kaufland did not return an id_unit")

        logger.info(f"[KAUFLAND] Created unit {unit_id} for EAN {product.ean}")
        return ExportResult(success=True, external_id=str(unit_id))

    async def update_listing(self, token: str, external_id: str, updates: ProductUpdate) -> ExportResult:
        changes = updates.changes()
        payload: Dict[str, Any] = {}
        if "price" in changes:
            payload["listing_price"] = to_cents(changes["price"])
        if "quantity" in changes:
            payload["amount"] = changes["quantity"]

        if not payload:
            logger.debug(f"[KAUFLAND] Nothing to push for unit {external_id}")
            return ExportResult(success=True, external_id=external_id)

        url = f"{self.API_URL}/units/{external_id}?storefront={self.storefront}"
        await self._send(token, "PATCH", url, payload)
        logger.info(f"[KAUFLAND] Updated unit {external_id}: {payload}")
        return ExportResult(success=True, external_id=external_id)
