"""
Catalog Sync - Token Manager
Resolves marketplace credentials (store first, then settings) and keeps OAuth tokens fresh.
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

import httpx

from .database import CatalogStore
from .exceptions import CredentialError, MarketplaceAPIError
from .models import Credential, Marketplace

logger = logging.getLogger(__name__)

# Placeholder handed to adapters when no token could be resolved
MOCK_TOKEN = "mock_token"


class CredentialProvider:
    """One link of the credential fallback chain."""

    name = "base"

    def lookup(self, marketplace: Marketplace) -> Optional[Credential]:
        raise NotImplementedError


class StoreCredentialProvider(CredentialProvider):
    """Credentials saved in the marketplace_credentials table."""

    name = "store"

    def __init__(self, store: CatalogStore):
        self.store = store

    def lookup(self, marketplace: Marketplace) -> Optional[Credential]:
        credential = self.store.get_credential(marketplace)
        if credential is None or not credential.has_material:
            return None
        return credential


class SettingsCredentialProvider(CredentialProvider):
    """Credentials from process configuration (.env / environment)."""

    name = "env"

    def __init__(self, settings):
        self.settings = settings

    def lookup(self, marketplace: Marketplace) -> Optional[Credential]:
        s = self.settings
        if marketplace == Marketplace.OTTO:
            credential = Credential(
                marketplace=marketplace, source="env",
                client_id=s.otto_client_id or None,
                client_secret=s.otto_client_secret or None,
            )
        elif marketplace == Marketplace.EBAY:
            # A user token is preferred over client credentials (Inventory API)
            if s.ebay_oauth_token:
                credential = Credential(marketplace=marketplace, source="env",
                                        access_token=s.ebay_oauth_token)
            else:
                credential = Credential(
                    marketplace=marketplace, source="env",
                    client_id=s.ebay_client_id or None,
                    client_secret=s.ebay_client_secret or None,
                )
        elif marketplace == Marketplace.KAUFLAND:
            credential = Credential(
                marketplace=marketplace, source="env",
                client_key=s.kaufland_client_key or None,
                secret_key=s.kaufland_secret_key or None,
            )
        elif marketplace == Marketplace.SHOPIFY:
            credential = Credential(marketplace=marketplace, source="env",
                                    access_token=s.shopify_access_token or None)
        else:
            return None

        return credential if credential.has_material else None


class TokenManager:
    """
    Hands out access tokens per marketplace.

    - Otto / eBay: OAuth2 client credentials, cached until 5 minutes before expiry
    - Kaufland: no token exchange, the client key is returned (requests are HMAC signed)
    - Shopify: static access token

    Failures never raise: get_access_token returns None and the caller decides
    whether to continue with a placeholder token.
    """

    REFRESH_MARGIN_MS = 5 * 60 * 1000

    TOKEN_ENDPOINTS: Dict[Marketplace, Tuple[str, str]] = {
        Marketplace.OTTO: (
            "https://api.otto.market/v1/token",
            "products availability",
        ),
        Marketplace.EBAY: (
            "https://api.ebay.com/identity/v1/oauth2/token",
            "https://api.ebay.com/oauth/api_scope",
        ),
    }

    def __init__(
        self,
        store: Optional[CatalogStore] = None,
        providers: Optional[List[CredentialProvider]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.providers = providers if providers is not None else (
            [StoreCredentialProvider(store)] if store else []
        )
        self._transport = transport
        self.timeout = timeout
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def get_credential(self, marketplace: Marketplace) -> Optional[Credential]:
        """First credential found along the provider chain."""
        marketplace = Marketplace(marketplace)
        for provider in self.providers:
            credential = provider.lookup(marketplace)
            if credential is not None:
                logger.debug(f"[{marketplace.value.upper()}] Credentials from {provider.name}")
                return credential
        return None

    async def get_access_token(self, marketplace: Marketplace) -> Optional[str]:
        """Return a usable token for the marketplace, or None."""
        try:
            marketplace = Marketplace(marketplace)
            credential = self.get_credential(marketplace)
            if credential is None:
                raise CredentialError("No credentials found in store or settings", marketplace.value)

            if marketplace == Marketplace.KAUFLAND:
                return credential.client_key or None

            if marketplace == Marketplace.SHOPIFY:
                return credential.access_token or credential.api_key or None

            if self._token_is_fresh(credential):
                return credential.access_token

            if not (credential.client_id and credential.client_secret):
                if credential.access_token and credential.expires_at is None:
                    # Directly configured user token, nothing to refresh with
                    return credential.access_token
                raise CredentialError("Token expired and no client id/secret to refresh", marketplace.value)

            logger.info(f"[{marketplace.value.upper()}] Token missing or expired, requesting a new one")
            return await self._exchange_client_credentials(credential)

        except Exception as e:
            logger.error(f"Failed to get access token for {marketplace}: {e}")
            return None

    def _token_is_fresh(self, credential: Credential) -> bool:
        return bool(
            credential.access_token
            and credential.expires_at
            and self._now_ms() < credential.expires_at - self.REFRESH_MARGIN_MS
        )

    async def _exchange_client_credentials(self, credential: Credential) -> str:
        """OAuth2 client_credentials grant; persists the result unless it came from settings."""
        marketplace = credential.marketplace
        if marketplace not in self.TOKEN_ENDPOINTS:
            raise CredentialError("Token generation not supported", marketplace.value)

        url, scope = self.TOKEN_ENDPOINTS[marketplace]
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            response = await client.post(
                url,
                data={"grant_type": "client_credentials", "scope": scope},
                auth=(credential.client_id, credential.client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )

        if response.status_code != 200:
            raise MarketplaceAPIError(
                f"Token request failed: {response.text[:200]}",
                status_code=response.status_code,
                marketplace=marketplace.value,
            )

        payload = response.json()
        access_token = payload["access_token"]
        expires_in = int(payload.get("expires_in", 3600))
        expires_at = self._now_ms() + expires_in * 1000
        logger.info(f"[{marketplace.value.upper()}] Token generated, expires in {expires_in}s")

        if credential.from_env or self.store is None:
            logger.debug(f"[{marketplace.value.upper()}] Token from settings credentials, not persisted")
            return access_token

        refreshed = credential.model_copy(update={
            "access_token": access_token,
            "expires_at": expires_at,
        })
        self.store.save_credential(refreshed)
        return access_token
