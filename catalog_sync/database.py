"""
Catalog Sync - Catalog Store
SQLite handler for canonical products, marketplace links, credentials and sync logs.
"""

import json
import logging
import sqlite3
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import DatabaseError
from .models import (
    Credential,
    LogStatus,
    Marketplace,
    MarketplaceLink,
    Product,
    ProductStatus,
    SyncAction,
    SyncLogEntry,
    SyncStatus,
)

logger = logging.getLogger(__name__)


class CatalogStore:
    """
    SQLite catalog store.

    Tables:
    - products: canonical products (one per physical item)
    - marketplace_products: link table, unique per (product_id, marketplace)
    - marketplace_credentials: one JSON credential blob per marketplace
    - sync_logs: append-only audit trail
    """

    PRODUCTS_SCHEMA = """
    CREATE TABLE IF NOT EXISTS products (
        id TEXT PRIMARY KEY,
        title TEXT,
        description TEXT,
        sku TEXT,
        ean TEXT,
        price TEXT,
        quantity INTEGER DEFAULT 0,
        weight REAL DEFAULT 0,
        images TEXT,
        status TEXT DEFAULT 'imported',
        shipping_type TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """

    LINKS_SCHEMA = """
    CREATE TABLE IF NOT EXISTS marketplace_products (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        product_id TEXT NOT NULL,
        marketplace TEXT NOT NULL,
        external_id TEXT,
        price TEXT,
        quantity INTEGER,
        sync_status TEXT DEFAULT 'pending',
        last_synced_at TEXT,
        UNIQUE (product_id, marketplace),
        FOREIGN KEY (product_id) REFERENCES products(id)
    )
    """

    CREDENTIALS_SCHEMA = """
    CREATE TABLE IF NOT EXISTS marketplace_credentials (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        marketplace TEXT NOT NULL UNIQUE,
        credentials TEXT NOT NULL,
        updated_at TEXT
    )
    """

    SYNC_LOGS_SCHEMA = """
    CREATE TABLE IF NOT EXISTS sync_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        marketplace TEXT NOT NULL,
        action TEXT NOT NULL,
        status TEXT NOT NULL,
        error_message TEXT,
        created_at TEXT
    )
    """

    INDEX_SCHEMA = """
    CREATE INDEX IF NOT EXISTS idx_products_ean ON products(ean);
    CREATE INDEX IF NOT EXISTS idx_products_sku ON products(sku);
    CREATE INDEX IF NOT EXISTS idx_products_status ON products(status);
    CREATE INDEX IF NOT EXISTS idx_links_external ON marketplace_products(marketplace, external_id);
    CREATE INDEX IF NOT EXISTS idx_sync_logs_marketplace ON sync_logs(marketplace);
    CREATE INDEX IF NOT EXISTS idx_sync_logs_date ON sync_logs(created_at);
    """

    PRODUCT_COLUMNS = (
        "title", "description", "sku", "ean", "price", "quantity",
        "weight", "images", "status", "shipping_type",
    )

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = Path(db_path)
        self._ensure_dir()
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()
        logger.info(f"Catalog store initialized: {self.db_path}")

    def _ensure_dir(self):
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()
        cursor.execute(self.PRODUCTS_SCHEMA)
        cursor.execute(self.LINKS_SCHEMA)
        cursor.execute(self.CREDENTIALS_SCHEMA)
        cursor.execute(self.SYNC_LOGS_SCHEMA)
        cursor.executescript(self.INDEX_SCHEMA)
        self.conn.commit()

    def _execute(self, sql: str, params: Iterable[Any] = (), table: str = None) -> sqlite3.Cursor:
        try:
            cursor = self.conn.cursor()
            cursor.execute(sql, tuple(params))
            self.conn.commit()
            return cursor
        except sqlite3.Error as e:
            self.conn.rollback()
            raise DatabaseError(str(e), table=table) from e

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    @staticmethod
    def _to_db_value(column: str, value: Any) -> Any:
        if value is None:
            return None
        if column == "images":
            return json.dumps(list(value))
        if column == "price":
            return str(value)
        if column in ("status", "sync_status", "marketplace"):
            return value.value if hasattr(value, "value") else str(value)
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    @staticmethod
    def _row_to_product(row: sqlite3.Row) -> Product:
        return Product(
            id=row['id'],
            title=row['title'] or "",
            description=row['description'] or "",
            sku=row['sku'] or "",
            ean=row['ean'] or "",
            price=Decimal(row['price']) if row['price'] else Decimal("0"),
            quantity=row['quantity'] or 0,
            weight=row['weight'] or 0.0,
            images=json.loads(row['images']) if row['images'] else [],
            status=ProductStatus(row['status'] or ProductStatus.IMPORTED.value),
            shipping_type=row['shipping_type'],
            created_at=datetime.fromisoformat(row['created_at']) if row['created_at'] else datetime.now(),
            updated_at=datetime.fromisoformat(row['updated_at']) if row['updated_at'] else None,
        )

    @staticmethod
    def _row_to_link(row: sqlite3.Row) -> MarketplaceLink:
        return MarketplaceLink(
            product_id=row['product_id'],
            marketplace=Marketplace(row['marketplace']),
            external_id=row['external_id'] or "",
            price=Decimal(row['price']) if row['price'] is not None else None,
            quantity=row['quantity'],
            sync_status=SyncStatus(row['sync_status'] or SyncStatus.PENDING.value),
            last_synced_at=datetime.fromisoformat(row['last_synced_at']) if row['last_synced_at'] else None,
        )

    # =========================================================================
    # PRODUCTS
    # =========================================================================

    def get_product(self, product_id: str) -> Optional[Product]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM products WHERE id = ?", (product_id,))
        row = cursor.fetchone()
        return self._row_to_product(row) if row else None

    def get_products(self, product_ids: List[str]) -> List[Product]:
        """Get several products by id (unknown ids are ignored)."""
        if not product_ids:
            return []
        placeholders = ",".join("?" for _ in product_ids)
        cursor = self.conn.cursor()
        cursor.execute(f"SELECT * FROM products WHERE id IN ({placeholders})", tuple(product_ids))
        return [self._row_to_product(row) for row in cursor.fetchall()]

    def find_product_by_ean(self, ean: str) -> Optional[Product]:
        """Oldest product with this EAN. Blank EANs never match."""
        ean = (ean or "").strip()
        if not ean:
            return None
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM products WHERE ean = ? ORDER BY created_at LIMIT 1",
            (ean,)
        )
        row = cursor.fetchone()
        return self._row_to_product(row) if row else None

    def find_product_by_sku(self, sku: str) -> Optional[Product]:
        """Oldest product with this SKU. Blank SKUs never match."""
        sku = (sku or "").strip()
        if not sku:
            return None
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM products WHERE sku = ? ORDER BY created_at LIMIT 1",
            (sku,)
        )
        row = cursor.fetchone()
        return self._row_to_product(row) if row else None

    def insert_product(self, product: Product) -> Product:
        """Insert a new product and return it."""
        columns = ("id",) + self.PRODUCT_COLUMNS + ("created_at", "updated_at")
        values = [product.id]
        values += [self._to_db_value(c, getattr(product, c)) for c in self.PRODUCT_COLUMNS]
        values += [product.created_at.isoformat(), None]
        self._execute(
            f"INSERT INTO products ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            values,
            table="products",
        )
        logger.debug(f"Inserted product {product.id} (ean={product.ean or '-'}, sku={product.sku or '-'})")
        return product

    def update_product(self, product_id: str, fields: Dict[str, Any]) -> bool:
        """
        Update product columns by id.

        Returns:
            True if a row was updated
        """
        fields = {k: v for k, v in fields.items() if k in self.PRODUCT_COLUMNS}
        if not fields:
            return False

        assignments = ", ".join(f"{k} = ?" for k in fields)
        values = [self._to_db_value(k, v) for k, v in fields.items()]
        values += [datetime.now().isoformat(), product_id]
        cursor = self._execute(
            f"UPDATE products SET {assignments}, updated_at = ? WHERE id = ?",
            values,
            table="products",
        )
        return cursor.rowcount > 0

    def delete_product(self, product_id: str) -> bool:
        """Delete a product and its marketplace links."""
        self._execute("DELETE FROM marketplace_products WHERE product_id = ?", (product_id,),
                      table="marketplace_products")
        cursor = self._execute("DELETE FROM products WHERE id = ?", (product_id,), table="products")
        return cursor.rowcount > 0

    def delete_products(self, product_ids: List[str]) -> int:
        """Delete several products (and their links). Returns deleted count."""
        if not product_ids:
            return 0
        placeholders = ",".join("?" for _ in product_ids)
        self._execute(
            f"DELETE FROM marketplace_products WHERE product_id IN ({placeholders})",
            product_ids,
            table="marketplace_products",
        )
        cursor = self._execute(
            f"DELETE FROM products WHERE id IN ({placeholders})",
            product_ids,
            table="products",
        )
        logger.info(f"Deleted {cursor.rowcount} products")
        return cursor.rowcount

    def count_products(self, status: Optional[ProductStatus] = None, ean: Optional[str] = None) -> int:
        sql = "SELECT COUNT(*) as count FROM products WHERE 1 = 1"
        params: List[Any] = []
        if status is not None:
            sql += " AND status = ?"
            params.append(self._to_db_value("status", status))
        if ean is not None:
            sql += " AND ean = ?"
            params.append(ean)
        cursor = self.conn.cursor()
        cursor.execute(sql, params)
        return cursor.fetchone()['count']

    # =========================================================================
    # MARKETPLACE LINKS
    # =========================================================================

    def get_link(self, product_id: str, marketplace: Marketplace) -> Optional[MarketplaceLink]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM marketplace_products WHERE product_id = ? AND marketplace = ?",
            (product_id, self._to_db_value("marketplace", marketplace))
        )
        row = cursor.fetchone()
        return self._row_to_link(row) if row else None

    def find_link_by_external_id(self, marketplace: Marketplace, external_id: str) -> Optional[MarketplaceLink]:
        """Find the link for a marketplace listing id."""
        if not external_id:
            return None
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM marketplace_products WHERE marketplace = ? AND external_id = ? LIMIT 1",
            (self._to_db_value("marketplace", marketplace), str(external_id))
        )
        row = cursor.fetchone()
        return self._row_to_link(row) if row else None

    def get_links(self, product_id: str, exclude: Optional[Marketplace] = None) -> List[MarketplaceLink]:
        """All links of a product, optionally without one marketplace."""
        sql = "SELECT * FROM marketplace_products WHERE product_id = ?"
        params: List[Any] = [product_id]
        if exclude is not None:
            sql += " AND marketplace != ?"
            params.append(self._to_db_value("marketplace", exclude))
        sql += " ORDER BY marketplace"
        cursor = self.conn.cursor()
        cursor.execute(sql, params)
        return [self._row_to_link(row) for row in cursor.fetchall()]

    def upsert_link(self, link: MarketplaceLink) -> MarketplaceLink:
        """Insert or update the link keyed by (product_id, marketplace)."""
        synced_at = link.last_synced_at.isoformat() if link.last_synced_at else None
        values = (
            link.product_id,
            self._to_db_value("marketplace", link.marketplace),
            link.external_id,
            self._to_db_value("price", link.price),
            link.quantity,
            self._to_db_value("sync_status", link.sync_status),
            synced_at,
        )
        self._execute(
            """
            INSERT INTO marketplace_products
                (product_id, marketplace, external_id, price, quantity, sync_status, last_synced_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(product_id, marketplace) DO UPDATE SET
                external_id = excluded.external_id,
                price = excluded.price,
                quantity = excluded.quantity,
                sync_status = excluded.sync_status,
                last_synced_at = excluded.last_synced_at
            """,
            values,
            table="marketplace_products",
        )
        return link

    def update_link(self, product_id: str, marketplace: Marketplace, fields: Dict[str, Any]) -> bool:
        """Update selected link columns (price, quantity, sync_status, last_synced_at, external_id)."""
        allowed = ("external_id", "price", "quantity", "sync_status", "last_synced_at")
        fields = {k: v for k, v in fields.items() if k in allowed}
        if not fields:
            return False
        assignments = ", ".join(f"{k} = ?" for k in fields)
        values = [self._to_db_value(k, v) for k, v in fields.items()]
        values += [product_id, self._to_db_value("marketplace", marketplace)]
        cursor = self._execute(
            f"UPDATE marketplace_products SET {assignments} WHERE product_id = ? AND marketplace = ?",
            values,
            table="marketplace_products",
        )
        return cursor.rowcount > 0

    def delete_links(self, product_id: Optional[str] = None, marketplace: Optional[Marketplace] = None) -> int:
        """Delete links by product and/or marketplace. Both None deletes nothing."""
        if product_id is None and marketplace is None:
            return 0
        sql = "DELETE FROM marketplace_products WHERE 1 = 1"
        params: List[Any] = []
        if product_id is not None:
            sql += " AND product_id = ?"
            params.append(product_id)
        if marketplace is not None:
            sql += " AND marketplace = ?"
            params.append(self._to_db_value("marketplace", marketplace))
        cursor = self._execute(sql, params, table="marketplace_products")
        return cursor.rowcount

    def count_links(self, marketplace: Optional[Marketplace] = None, product_id: Optional[str] = None) -> int:
        sql = "SELECT COUNT(*) as count FROM marketplace_products WHERE 1 = 1"
        params: List[Any] = []
        if marketplace is not None:
            sql += " AND marketplace = ?"
            params.append(self._to_db_value("marketplace", marketplace))
        if product_id is not None:
            sql += " AND product_id = ?"
            params.append(product_id)
        cursor = self.conn.cursor()
        cursor.execute(sql, params)
        return cursor.fetchone()['count']

    def cleanup_marketplace(self, marketplace: str) -> Dict[str, int]:
        """
        Remove marketplace links.

        'all' wipes every link and every product; any other value removes only
        that marketplace's links and leaves the products in place.
        """
        if marketplace == "all":
            links = self._execute("DELETE FROM marketplace_products", table="marketplace_products").rowcount
            products = self._execute("DELETE FROM products", table="products").rowcount
            logger.warning(f"Cleanup: deleted {products} products and {links} links")
            return {"links": links, "products": products}

        links = self.delete_links(marketplace=Marketplace(marketplace))
        logger.info(f"Cleanup: deleted {links} {marketplace} links")
        return {"links": links, "products": 0}

    # =========================================================================
    # CREDENTIALS
    # =========================================================================

    def get_credential(self, marketplace: Marketplace) -> Optional[Credential]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT credentials FROM marketplace_credentials WHERE marketplace = ?",
            (self._to_db_value("marketplace", marketplace),)
        )
        row = cursor.fetchone()
        if not row:
            return None
        data = json.loads(row['credentials'])
        return Credential(marketplace=marketplace, source="store", **data)

    def save_credential(self, credential: Credential):
        """Insert or replace the stored credential blob for its marketplace."""
        now = datetime.now().isoformat()
        self._execute(
            """
            INSERT INTO marketplace_credentials (marketplace, credentials, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(marketplace) DO UPDATE SET
                credentials = excluded.credentials,
                updated_at = excluded.updated_at
            """,
            (self._to_db_value("marketplace", credential.marketplace),
             json.dumps(credential.secrets()), now),
            table="marketplace_credentials",
        )

    # =========================================================================
    # SYNC LOGS
    # =========================================================================

    def log_sync(
        self,
        marketplace: str,
        action: SyncAction,
        status: LogStatus,
        error_message: Optional[str] = None,
    ):
        """Append an audit entry. Logging failures never break a sync."""
        try:
            self._execute(
                """
                INSERT INTO sync_logs (marketplace, action, status, error_message, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    self._to_db_value("marketplace", marketplace),
                    action.value,
                    status.value,
                    error_message,
                    datetime.now().isoformat(),
                ),
                table="sync_logs",
            )
        except DatabaseError as e:
            logger.error(f"Failed to write sync log ({marketplace}/{action.value}): {e}")

    def _log_filter(self, marketplace: Optional[str], since: Optional[datetime]):
        sql = " WHERE 1 = 1"
        params: List[Any] = []
        if marketplace:
            sql += " AND marketplace = ?"
            params.append(self._to_db_value("marketplace", marketplace))
        if since:
            sql += " AND created_at >= ?"
            params.append(since.isoformat())
        return sql, params

    def get_sync_logs(
        self,
        marketplace: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[SyncLogEntry]:
        """Newest sync log entries first."""
        where, params = self._log_filter(marketplace, since)
        cursor = self.conn.cursor()
        cursor.execute(
            f"SELECT * FROM sync_logs{where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            params + [limit, offset]
        )
        return [
            SyncLogEntry(
                id=row['id'],
                marketplace=row['marketplace'],
                action=SyncAction(row['action']),
                status=LogStatus(row['status']),
                error_message=row['error_message'],
                created_at=datetime.fromisoformat(row['created_at']),
            )
            for row in cursor.fetchall()
        ]

    def count_sync_logs(self, marketplace: Optional[str] = None, since: Optional[datetime] = None) -> int:
        where, params = self._log_filter(marketplace, since)
        cursor = self.conn.cursor()
        cursor.execute(f"SELECT COUNT(*) as count FROM sync_logs{where}", params)
        return cursor.fetchone()['count']

    # =========================================================================
    # STATS
    # =========================================================================

    def get_stats(self) -> Dict:
        """Get catalog statistics."""
        per_marketplace = {mp.value: self.count_links(marketplace=mp) for mp in Marketplace}
        return {
            'total_products': self.count_products(),
            'optimized': self.count_products(status=ProductStatus.OPTIMIZED),
            'published': self.count_products(status=ProductStatus.PUBLISHED),
            'synced': sum(per_marketplace.values()),
            'marketplaces': per_marketplace,
        }

    def close(self):
        """Close database connection."""
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
