"""
Catalog Sync - Token Manager Tests
Tests for credential resolution and OAuth refresh.
"""

import asyncio
from pathlib import Path
from urllib.parse import parse_qs

import httpx

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_sync.models import Credential, Marketplace
from catalog_sync.tokens import SettingsCredentialProvider, StoreCredentialProvider, TokenManager

NOW = 1_700_000_000.0
NOW_MS = int(NOW * 1000)


def recording_transport(calls, status_code=200, payload=None):
    """MockTransport that records every request."""
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status_code, json=payload or {})
    return httpx.MockTransport(handler)


class TestStaticKeyMarketplaces:
    """Marketplaces without a token exchange."""

    def test_kaufland_returns_client_key_without_network(self, temp_store):
        """Stored client_key + secret_key -> client_key, no HTTP call."""
        calls = []
        temp_store.save_credential(Credential(
            marketplace=Marketplace.KAUFLAND, client_key="kl-client", secret_key="kl-secret",
        ))
        manager = TokenManager(store=temp_store, transport=recording_transport(calls), clock=lambda: NOW)

        token = asyncio.run(manager.get_access_token(Marketplace.KAUFLAND))

        assert token == "kl-client"
        assert calls == []

    def test_shopify_returns_access_token(self, temp_store):
        temp_store.save_credential(Credential(marketplace=Marketplace.SHOPIFY, access_token="shpat_1"))
        manager = TokenManager(store=temp_store)

        assert asyncio.run(manager.get_access_token("shopify")) == "shpat_1"

    def test_shopify_api_key_fallback(self, temp_store):
        temp_store.save_credential(Credential(marketplace=Marketplace.SHOPIFY, api_key="key-1"))
        manager = TokenManager(store=temp_store)

        assert asyncio.run(manager.get_access_token(Marketplace.SHOPIFY)) == "key-1"


class TestOAuthRefresh:
    """Client-credentials marketplaces."""

    def test_fresh_token_reused(self, temp_store):
        calls = []
        temp_store.save_credential(Credential(
            marketplace=Marketplace.OTTO, access_token="cached",
            expires_at=NOW_MS + 60 * 60 * 1000, client_id="id", client_secret="secret",
        ))
        manager = TokenManager(store=temp_store, transport=recording_transport(calls), clock=lambda: NOW)

        assert asyncio.run(manager.get_access_token(Marketplace.OTTO)) == "cached"
        assert calls == []

    def test_token_inside_refresh_margin_is_renewed(self, temp_store):
        """A token valid for less than 5 more minutes is exchanged and persisted."""
        calls = []
        temp_store.save_credential(Credential(
            marketplace=Marketplace.OTTO, access_token="old",
            expires_at=NOW_MS + 4 * 60 * 1000, client_id="id", client_secret="secret",
        ))
        transport = recording_transport(calls, payload={"access_token": "new", "expires_in": 3600})
        manager = TokenManager(store=temp_store, transport=transport, clock=lambda: NOW)

        token = asyncio.run(manager.get_access_token(Marketplace.OTTO))

        assert token == "new"
        assert len(calls) == 1
        request = calls[0]
        assert str(request.url) == "https://api.otto.market/v1/token"
        assert request.headers["authorization"].startswith("Basic ")
        form = parse_qs(request.content.decode())
        assert form["grant_type"] == ["client_credentials"]
        assert form["scope"] == ["products availability"]

        stored = temp_store.get_credential(Marketplace.OTTO)
        assert stored.access_token == "new"
        assert stored.expires_at == NOW_MS + 3600 * 1000
        assert stored.client_secret == "secret"

    def test_ebay_uses_its_scope(self, temp_store):
        calls = []
        temp_store.save_credential(Credential(
            marketplace=Marketplace.EBAY, client_id="id", client_secret="secret",
        ))
        transport = recording_transport(calls, payload={"access_token": "ebay-token", "expires_in": 7200})
        manager = TokenManager(store=temp_store, transport=transport, clock=lambda: NOW)

        assert asyncio.run(manager.get_access_token(Marketplace.EBAY)) == "ebay-token"
        assert calls[0].url.host == "api.ebay.com"
        assert parse_qs(calls[0].content.decode())["scope"] == ["https://api.ebay.com/oauth/api_scope"]

    def test_settings_credentials_not_persisted(self, temp_store, test_settings):
        """Tokens obtained from .env credentials stay in memory only."""
        calls = []
        transport = recording_transport(calls, payload={"access_token": "env-token", "expires_in": 3600})
        manager = TokenManager(
            store=temp_store,
            providers=[StoreCredentialProvider(temp_store), SettingsCredentialProvider(test_settings)],
            transport=transport,
            clock=lambda: NOW,
        )

        assert asyncio.run(manager.get_access_token(Marketplace.OTTO)) == "env-token"
        assert temp_store.get_credential(Marketplace.OTTO) is None

    def test_token_endpoint_failure_returns_none(self, temp_store):
        calls = []
        temp_store.save_credential(Credential(
            marketplace=Marketplace.OTTO, client_id="id", client_secret="wrong",
        ))
        transport = recording_transport(calls, status_code=401, payload={"error": "invalid_client"})
        manager = TokenManager(store=temp_store, transport=transport, clock=lambda: NOW)

        assert asyncio.run(manager.get_access_token(Marketplace.OTTO)) is None

    def test_expired_token_without_client_credentials(self, temp_store):
        temp_store.save_credential(Credential(
            marketplace=Marketplace.OTTO, access_token="old", expires_at=NOW_MS - 1000,
        ))
        manager = TokenManager(store=temp_store, clock=lambda: NOW)

        assert asyncio.run(manager.get_access_token(Marketplace.OTTO)) is None

    def test_configured_ebay_user_token_returned_as_is(self, temp_store, test_settings):
        settings = test_settings.model_copy(update={"ebay_oauth_token": "v^1.1#user"})
        manager = TokenManager(store=temp_store, providers=[SettingsCredentialProvider(settings)])

        assert asyncio.run(manager.get_access_token(Marketplace.EBAY)) == "v^1.1#user"


class TestProviderChain:
    """Credential fallback order."""

    def test_no_credentials_returns_none(self, temp_store):
        manager = TokenManager(store=temp_store)

        assert asyncio.run(manager.get_access_token(Marketplace.KAUFLAND)) is None

    def test_store_wins_over_settings(self, temp_store, test_settings):
        temp_store.save_credential(Credential(
            marketplace=Marketplace.KAUFLAND, client_key="stored", secret_key="s",
        ))
        manager = TokenManager(
            store=temp_store,
            providers=[StoreCredentialProvider(temp_store), SettingsCredentialProvider(test_settings)],
        )

        assert asyncio.run(manager.get_access_token(Marketplace.KAUFLAND)) == "stored"

    def test_settings_fallback(self, temp_store, test_settings):
        manager = TokenManager(
            store=temp_store,
            providers=[StoreCredentialProvider(temp_store), SettingsCredentialProvider(test_settings)],
        )

        credential = manager.get_credential(Marketplace.KAUFLAND)
        assert credential.client_key == "kl-client"
        assert credential.from_env

    def test_empty_stored_credential_is_skipped(self, temp_store, test_settings):
        temp_store.save_credential(Credential(marketplace=Marketplace.SHOPIFY))
        manager = TokenManager(
            store=temp_store,
            providers=[StoreCredentialProvider(temp_store), SettingsCredentialProvider(test_settings)],
        )

        assert asyncio.run(manager.get_access_token(Marketplace.SHOPIFY)) == "shpat_test"
