"""
Catalog Sync - Custom Exceptions
Specific exception classes for better error handling and debugging.
"""


class CatalogSyncError(Exception):
    """Base exception for all Catalog Sync errors."""

    def __init__(self, message: str, context: dict = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self):
        base = super().__str__()
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base} [{context_str}]"
        return base


class MarketplaceAPIError(CatalogSyncError):
    """Errors from marketplace HTTP APIs."""

    def __init__(self, message: str, status_code: int = None, marketplace: str = None):
        context = {}
        if status_code:
            context["status"] = status_code
        if marketplace:
            context["marketplace"] = marketplace
        super().__init__(message, context)
        self.status_code = status_code
        self.marketplace = marketplace

    @property
    def is_client_error(self) -> bool:
        """4xx errors - client should not retry."""
        return bool(self.status_code and 400 <= self.status_code < 500)

    @property
    def is_server_error(self) -> bool:
        """5xx errors - server issue, may retry."""
        return bool(self.status_code and self.status_code >= 500)

    @property
    def is_retryable(self) -> bool:
        """Transport failures (no status), 5xx, timeouts and rate limits."""
        if self.status_code is None:
            return True
        return self.is_server_error or self.status_code in (408, 429)


class CredentialError(CatalogSyncError):
    """Missing or unusable marketplace credentials."""

    def __init__(self, message: str, marketplace: str = None):
        context = {"marketplace": marketplace} if marketplace else {}
        super().__init__(message, context)
        self.marketplace = marketplace


class ImportCancelledError(CatalogSyncError):
    """Operator requested the import to stop."""

    def __init__(self, message: str = "Import stopped by user", marketplace: str = None):
        context = {"marketplace": marketplace} if marketplace else {}
        super().__init__(message, context)
        self.marketplace = marketplace


class ProductNotFoundError(CatalogSyncError):

    def __init__(self, product_id: str):
        super().__init__("Product not found", {"product_id": product_id})
        self.product_id = product_id


class DatabaseError(CatalogSyncError):
    """Errors with SQLite catalog store operations."""

    def __init__(self, message: str, table: str = None):
        context = {"table": table} if table else {}
        super().__init__(message, context)
        self.table = table


class ConfigurationError(CatalogSyncError):
    """Errors in configuration (missing .env values, etc)."""

    def __init__(self, message: str, setting: str = None):
        context = {"setting": setting} if setting else {}
        super().__init__(message, context)
        self.setting = setting
