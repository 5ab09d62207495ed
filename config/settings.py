"""
Catalog Sync - Configuration Settings
Pydantic Settings for type-safe configuration from .env
"""

from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Catalog store
    db_path: Path = Field(default=Path("./catalog.db"))

    # Otto (OAuth client credentials)
    otto_client_id: str = Field(default="")
    otto_client_secret: str = Field(default="")
    otto_base_url: str = Field(default="https://api.otto.market")

    # eBay (user token, or OAuth client credentials)
    ebay_oauth_token: str = Field(default="")
    ebay_client_id: str = Field(default="")
    ebay_client_secret: str = Field(default="")
    ebay_seller_id: str = Field(default="")
    ebay_marketplace_id: str = Field(default="EBAY_DE")

    # Kaufland (HMAC signed requests)
    kaufland_client_key: str = Field(default="")
    kaufland_secret_key: str = Field(default="")
    kaufland_storefront: str = Field(default="de")

    # Shopify (static access token)
    shopify_access_token: str = Field(default="")
    shopify_shop_domain: str = Field(default="")
    shopify_api_version: str = Field(default="2024-01")

    # HTTP / import behaviour
    http_timeout: float = Field(default=60.0)
    import_page_delay: float = Field(default=0.0)
    publish_requires_optimized: bool = Field(default=False)

    # Scheduled "import all marketplaces"
    schedule_hour: int = Field(default=3)
    schedule_minute: int = Field(default=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_json_format: bool = Field(default=False)
    log_file: Optional[str] = Field(default=None)
    log_rotation_mb: int = Field(default=10)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def otto_configured(self) -> bool:
        return bool(self.otto_client_id and self.otto_client_secret)

    @property
    def ebay_configured(self) -> bool:
        return bool(self.ebay_oauth_token or (self.ebay_client_id and self.ebay_client_secret))

    @property
    def kaufland_configured(self) -> bool:
        return bool(self.kaufland_client_key and self.kaufland_secret_key)

    @property
    def shopify_configured(self) -> bool:
        """Shopify needs both the token and the shop domain."""
        return bool(self.shopify_access_token and self.shopify_shop_domain)


# Singleton instance
settings = Settings()
