"""
Catalog Sync - Marketplace Adapters
Registry of the supported marketplaces.
"""

from typing import Dict, Type

from ..models import Marketplace
from .base import MarketplaceAdapter
from .ebay import EbayAdapter
from .kaufland import KauflandAdapter, sign_request
from .otto import OttoAdapter
from .shopify import ShopifyAdapter

ADAPTERS: Dict[Marketplace, Type[MarketplaceAdapter]] = {
    Marketplace.OTTO: OttoAdapter,
    Marketplace.EBAY: EbayAdapter,
    Marketplace.KAUFLAND: KauflandAdapter,
    Marketplace.SHOPIFY: ShopifyAdapter,
}


def build_adapter(marketplace, settings=None, transport=None, token_manager=None) -> MarketplaceAdapter:
    """Instantiate the adapter registered for a marketplace."""
    adapter_cls = ADAPTERS[Marketplace(marketplace)]
    return adapter_cls(settings=settings, transport=transport, token_manager=token_manager)


__all__ = [
    "ADAPTERS",
    "build_adapter",
    "MarketplaceAdapter",
    "OttoAdapter",
    "EbayAdapter",
    "KauflandAdapter",
    "ShopifyAdapter",
    "sign_request",
]
