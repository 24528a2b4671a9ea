"""SQLite store for estimates, their groups and items."""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Iterator
from uuid import uuid4

from estimator.config import settings
from estimator.core.exceptions import PersistenceError
from estimator.models.estimate import (
    COST_FIELDS,
    Customer,
    EstimateRecord,
    EstimateTotals,
    GroupRecord,
    ItemRecord,
    TreeChanges,
    is_placeholder_id,
)
from estimator.utils.logging import get_logger

logger = get_logger("estimate_store")

PROJECT_ROOT = Path(__file__).resolve().parents[2]

_ITEM_COLUMNS = (
    "quote_id",
    "quote_group_id",
    "title",
    "description",
    "quantity",
    "unit",
    *COST_FIELDS,
    "item_id",
    "costbook_item_id",
    "order_index",
)


def _resolve_db_path(db_path: str | Path) -> Path:
    """Resolve database path relative to project root when not absolute."""
    path = Path(db_path)
    return path if path.is_absolute() else PROJECT_ROOT / path


class EstimateStore:
    """Row-level persistence for quotes, quote groups, quote items and customers.

    The estimate tree never depends on this store for correctness; callers
    write the rows a mutation touched after the mutation has completed.
    """

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = _resolve_db_path(db_path or settings.store_db_path)
        self._ensure_db_exists()

    def _ensure_db_exists(self) -> None:
        """Create database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._get_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS customers (
                    customer_id TEXT PRIMARY KEY,
                    first_name TEXT,
                    last_name TEXT,
                    address TEXT,
                    city TEXT,
                    postal_code TEXT
                );
                CREATE TABLE IF NOT EXISTS quotes (
                    id TEXT PRIMARY KEY,
                    customer_id TEXT,
                    status TEXT NOT NULL,
                    subtotal REAL DEFAULT 0,
                    discount REAL DEFAULT 0,
                    tax_amount REAL DEFAULT 0,
                    total REAL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS quote_groups (
                    quote_group_id TEXT PRIMARY KEY,
                    quote_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    order_index INTEGER,
                    parent_group_id TEXT
                );
                CREATE TABLE IF NOT EXISTS quote_items (
                    quote_item_id TEXT PRIMARY KEY,
                    quote_id TEXT NOT NULL,
                    quote_group_id TEXT,
                    title TEXT,
                    description TEXT NOT NULL DEFAULT '',
                    quantity REAL NOT NULL DEFAULT 1,
                    unit TEXT NOT NULL DEFAULT '',
                    material_cost REAL,
                    labor_cost REAL,
                    equipment_cost REAL,
                    other_cost REAL,
                    subcontract_cost REAL,
                    item_id TEXT,
                    costbook_item_id TEXT,
                    order_index INTEGER
                );
                CREATE INDEX IF NOT EXISTS idx_groups_quote ON quote_groups(quote_id);
                CREATE INDEX IF NOT EXISTS idx_items_quote ON quote_items(quote_id);
            """)
            conn.commit()

        logger.debug("estimate_store.initialized", db_path=str(self.db_path))

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _row_to_estimate(self, row: sqlite3.Row) -> EstimateRecord:
        return EstimateRecord(
            id=row["id"],
            customer_id=row["customer_id"],
            status=row["status"],
            subtotal=row["subtotal"],
            discount=row["discount"],
            tax_amount=row["tax_amount"],
            total=row["total"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_group(self, row: sqlite3.Row) -> GroupRecord:
        return GroupRecord(
            id=row["quote_group_id"],
            estimate_id=row["quote_id"],
            name=row["name"],
            order_index=row["order_index"],
            parent_group_id=row["parent_group_id"],
        )

    def _row_to_item(self, row: sqlite3.Row) -> ItemRecord:
        return ItemRecord(
            id=row["quote_item_id"],
            estimate_id=row["quote_id"],
            group_id=row["quote_group_id"],
            title=row["title"],
            description=row["description"],
            quantity=row["quantity"],
            unit=row["unit"],
            material_cost=row["material_cost"],
            labor_cost=row["labor_cost"],
            equipment_cost=row["equipment_cost"],
            other_cost=row["other_cost"],
            subcontract_cost=row["subcontract_cost"],
            item_id=row["item_id"],
            costbook_item_id=row["costbook_item_id"],
            order_index=row["order_index"],
        )

    # Quotes

    async def create_estimate(self, customer_id: str | None = None) -> EstimateRecord:
        """Insert a new, empty estimate header."""
        estimate = EstimateRecord(customer_id=customer_id)
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO quotes
                (id, customer_id, status, subtotal, discount, tax_amount, total,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    estimate.id,
                    estimate.customer_id,
                    estimate.status,
                    estimate.subtotal,
                    estimate.discount,
                    estimate.tax_amount,
                    estimate.total,
                    estimate.created_at.isoformat(),
                    estimate.updated_at.isoformat(),
                ),
            )
            conn.commit()

        logger.info(
            "estimate_store.estimate_created",
            estimate_id=estimate.id,
            customer_id=customer_id,
        )
        return estimate

    async def get_estimate(self, estimate_id: str) -> EstimateRecord | None:
        """Get an estimate header by ID."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM quotes WHERE id = ?",
                (estimate_id,),
            ).fetchone()

        return self._row_to_estimate(row) if row else None

    async def list_estimates(self, customer_id: str | None = None) -> list[EstimateRecord]:
        """List estimates, newest first."""
        query = "SELECT * FROM quotes"
        params: tuple[str, ...] = ()
        if customer_id:
            query += " WHERE customer_id = ?"
            params = (customer_id,)
        query += " ORDER BY created_at DESC"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [self._row_to_estimate(row) for row in rows]

    async def save_totals(self, estimate_id: str, totals: EstimateTotals) -> None:
        """Store the latest derived totals on the estimate header."""
        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE quotes
                SET subtotal = ?, discount = ?, tax_amount = ?, total = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    totals.subtotal,
                    totals.discount_amount,
                    totals.tax_amount,
                    totals.final_total,
                    datetime.utcnow().isoformat(),
                    estimate_id,
                ),
            )
            conn.commit()

    # Groups and items

    async def fetch_tree_records(
        self, estimate_id: str
    ) -> tuple[list[GroupRecord], list[ItemRecord]]:
        """Fetch the flat group and item rows of one estimate."""
        with self._get_connection() as conn:
            group_rows = conn.execute(
                "SELECT * FROM quote_groups WHERE quote_id = ?",
                (estimate_id,),
            ).fetchall()
            item_rows = conn.execute(
                "SELECT * FROM quote_items WHERE quote_id = ?",
                (estimate_id,),
            ).fetchall()

        return (
            [self._row_to_group(row) for row in group_rows],
            [self._row_to_item(row) for row in item_rows],
        )

    async def apply_changes(self, estimate_id: str, changes: TreeChanges) -> dict[str, str]:
        """Write the rows a set of mutations touched.

        Rows carrying a placeholder id are inserted under a fresh id.
        Returns the placeholder-to-stored id mapping.

        Raises:
            PersistenceError: If the write fails; nothing is committed.
        """
        mapping: dict[str, str] = {}

        def resolve(node_id: str | None) -> str | None:
            if node_id is None:
                return None
            if is_placeholder_id(node_id) and node_id not in mapping:
                mapping[node_id] = uuid4().hex
            return mapping.get(node_id, node_id)

        try:
            with self._get_connection() as conn:
                for item_id in changes.deleted_item_ids:
                    conn.execute(
                        "DELETE FROM quote_items WHERE quote_item_id = ?", (item_id,)
                    )
                for group_id in changes.deleted_group_ids:
                    conn.execute(
                        "DELETE FROM quote_groups WHERE quote_group_id = ?", (group_id,)
                    )

                # Groups arrive parents-first, so parent ids resolve before use.
                for group in changes.upserted_groups:
                    conn.execute(
                        """
                        INSERT INTO quote_groups
                        (quote_group_id, quote_id, name, order_index, parent_group_id)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT(quote_group_id) DO UPDATE SET
                            name = excluded.name,
                            order_index = excluded.order_index,
                            parent_group_id = excluded.parent_group_id
                        """,
                        (
                            resolve(group.id),
                            estimate_id,
                            group.name,
                            group.order_index,
                            resolve(group.parent_group_id),
                        ),
                    )

                for item in changes.upserted_items:
                    values = (
                        estimate_id,
                        resolve(item.group_id),
                        item.title,
                        item.description or "",
                        item.quantity,
                        item.unit or "",
                        *(getattr(item, name) for name in COST_FIELDS),
                        item.item_id,
                        item.costbook_item_id,
                        item.order_index,
                    )
                    placeholders = ", ".join("?" for _ in range(len(_ITEM_COLUMNS) + 1))
                    updates = ", ".join(
                        f"{column} = excluded.{column}" for column in _ITEM_COLUMNS[1:]
                    )
                    conn.execute(
                        f"""
                        INSERT INTO quote_items
                        (quote_item_id, {", ".join(_ITEM_COLUMNS)})
                        VALUES ({placeholders})
                        ON CONFLICT(quote_item_id) DO UPDATE SET {updates}
                        """,
                        (resolve(item.id), *values),
                    )
                conn.commit()
        except sqlite3.Error as e:
            logger.error(
                "estimate_store.apply_failed",
                estimate_id=estimate_id,
                error=str(e),
            )
            raise PersistenceError(str(e), estimate_id) from e

        logger.info(
            "estimate_store.changes_applied",
            estimate_id=estimate_id,
            groups=len(changes.upserted_groups),
            items=len(changes.upserted_items),
            deleted=len(changes.deleted_group_ids) + len(changes.deleted_item_ids),
            rekeyed=len(mapping),
        )
        return mapping

    # Customers

    async def upsert_customer(self, customer: Customer) -> Customer:
        """Insert or update a customer."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO customers
                (customer_id, first_name, last_name, address, city, postal_code)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(customer_id) DO UPDATE SET
                    first_name = excluded.first_name,
                    last_name = excluded.last_name,
                    address = excluded.address,
                    city = excluded.city,
                    postal_code = excluded.postal_code
                """,
                (
                    customer.customer_id,
                    customer.first_name,
                    customer.last_name,
                    customer.address,
                    customer.city,
                    customer.postal_code,
                ),
            )
            conn.commit()
        return customer

    async def get_customer(self, customer_id: str) -> Customer | None:
        """Get a customer by ID."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM customers WHERE customer_id = ?",
                (customer_id,),
            ).fetchone()

        return Customer(**dict(row)) if row else None


@lru_cache(maxsize=1)
def get_estimate_store() -> EstimateStore:
    """Get the singleton estimate store."""
    return EstimateStore()
