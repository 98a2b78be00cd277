"""Synchronization of mapped tables into a relational sales database.

Writes customers, products, sales and sale details into the
clientes / productos / ventas / detalle_ventas schema in one transaction:
- clientes: insert, or refresh razon_social of an existing rut
- productos: insert descriptions not yet present
- ventas: insert invoice numbers not yet present, existing ones untouched
- detalle_ventas: upsert on (numero_factura, id_producto), last write wins

Statements are portable SQLAlchemy Core, so the target can be SQLite or
PostgreSQL.
"""

import logging
from datetime import date

from pydantic import BaseModel
from sqlalchemy import (
    Column,
    Connection,
    Date,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from invoicing.mapping.tables import MappedTables
from invoicing.shared.config import Settings
from invoicing.shared.database import create_database_engine

logger = logging.getLogger(__name__)

metadata = MetaData()

clientes = Table(
    "clientes",
    metadata,
    Column("rut", String(20), primary_key=True),
    Column("razon_social", String(255), nullable=False),
)

productos = Table(
    "productos",
    metadata,
    Column("id_producto", Integer, primary_key=True, autoincrement=True),
    Column("descripcion_producto", String(255), nullable=False, unique=True),
)

ventas = Table(
    "ventas",
    metadata,
    Column("numero_factura", Integer, primary_key=True, autoincrement=False),
    Column("fecha_factura", Date, nullable=False),
    Column("monto_total_factura", Numeric(12, 2), nullable=False),
    Column("rut_cliente", String(20), ForeignKey("clientes.rut"), nullable=False),
)

detalle_ventas = Table(
    "detalle_ventas",
    metadata,
    Column("id_detalle_venta", Integer, primary_key=True, autoincrement=True),
    Column("numero_factura", Integer, ForeignKey("ventas.numero_factura"), nullable=False),
    Column("id_producto", Integer, ForeignKey("productos.id_producto"), nullable=False),
    Column("unidades_vendidas", Integer, nullable=False),
    UniqueConstraint("numero_factura", "id_producto", name="uq_detalle_factura_producto"),
)


class SyncResult(BaseModel):
    """Result of a table synchronization.

    Attributes:
        success: Whether the transaction committed
        customers_written: Customers inserted or updated
        products_inserted: New products
        sales_inserted: New sales
        details_written: Sale details inserted or updated
        error: Error message if operation failed
    """

    success: bool
    customers_written: int = 0
    products_inserted: int = 0
    sales_inserted: int = 0
    details_written: int = 0
    error: str | None = None


class TableSyncService:
    """Writes mapped tables to the configured sync database."""

    def __init__(self, settings: Settings) -> None:
        """Initialize sync service.

        Args:
            settings: Application settings with sync configuration
        """
        self.settings = settings
        self._engine: Engine | None = None

    def is_available(self) -> bool:
        """Check if sync is enabled and a target database is configured."""
        return self.settings.sync_enabled and bool(self.settings.sync_database_url)

    def _get_engine(self) -> Engine:
        """Get or create the target engine (lazy initialization)."""
        if self._engine is None:
            if not self.settings.sync_database_url:
                raise ValueError(
                    "Sync database not configured. Set APP_SYNC_DATABASE_URL environment variable."
                )
            self._engine = create_database_engine(self.settings.sync_database_url)
            metadata.create_all(self._engine)
            logger.info("Sync database engine initialized")
        return self._engine

    def sync(self, tables: MappedTables) -> SyncResult:
        """Write mapped tables to the sync database in one transaction.

        Args:
            tables: Validated mapped tables

        Returns:
            SyncResult with per-table counts or error
        """
        if not self.is_available():
            return SyncResult(success=False, error="Table sync is not enabled")

        try:
            with self._get_engine().begin() as conn:
                result = SyncResult(
                    success=True,
                    customers_written=self._write_customers(conn, tables),
                    products_inserted=self._write_products(conn, tables),
                    sales_inserted=self._write_sales(conn, tables),
                    details_written=self._write_details(conn, tables),
                )
        except SQLAlchemyError as e:
            logger.error(f"Table sync failed: {e}")
            return SyncResult(success=False, error=f"Database error: {e}")
        except (KeyError, ValueError) as e:
            logger.error(f"Table sync rejected data: {e}")
            return SyncResult(success=False, error=str(e))

        logger.info(
            f"Synced {result.customers_written} customer(s), {result.products_inserted} "
            f"new product(s), {result.sales_inserted} new sale(s), "
            f"{result.details_written} detail(s)"
        )
        return result

    @staticmethod
    def _write_customers(conn: Connection, tables: MappedTables) -> int:
        existing = set(conn.scalars(select(clientes.c.rut)))
        for customer in tables.customers:
            if customer.tax_id in existing:
                conn.execute(
                    update(clientes)
                    .where(clientes.c.rut == customer.tax_id)
                    .values(razon_social=customer.name)
                )
            else:
                conn.execute(
                    insert(clientes).values(rut=customer.tax_id, razon_social=customer.name)
                )
                existing.add(customer.tax_id)
        return len(tables.customers)

    @staticmethod
    def _write_products(conn: Connection, tables: MappedTables) -> int:
        existing = set(conn.scalars(select(productos.c.descripcion_producto)))
        inserted = 0
        for product in tables.products:
            if product.description not in existing:
                conn.execute(insert(productos).values(descripcion_producto=product.description))
                existing.add(product.description)
                inserted += 1
        return inserted

    @staticmethod
    def _write_sales(conn: Connection, tables: MappedTables) -> int:
        existing = set(conn.scalars(select(ventas.c.numero_factura)))
        inserted = 0
        for sale in tables.sales:
            if sale.invoice_number in existing:
                continue
            conn.execute(
                insert(ventas).values(
                    numero_factura=sale.invoice_number,
                    fecha_factura=date.fromisoformat(sale.invoice_date),
                    monto_total_factura=sale.total_amount,
                    rut_cliente=sale.customer_tax_id,
                )
            )
            existing.add(sale.invoice_number)
            inserted += 1
        return inserted

    @staticmethod
    def _write_details(conn: Connection, tables: MappedTables) -> int:
        product_ids = {
            row.descripcion_producto: row.id_producto
            for row in conn.execute(
                select(productos.c.descripcion_producto, productos.c.id_producto)
            )
        }
        existing = {
            (row.numero_factura, row.id_producto)
            for row in conn.execute(
                select(detalle_ventas.c.numero_factura, detalle_ventas.c.id_producto)
            )
        }

        for detail in tables.details:
            product_id = product_ids[detail.product_description]
            key = (detail.invoice_number, product_id)
            if key in existing:
                conn.execute(
                    update(detalle_ventas)
                    .where(
                        detalle_ventas.c.numero_factura == detail.invoice_number,
                        detalle_ventas.c.id_producto == product_id,
                    )
                    .values(unidades_vendidas=detail.units_sold)
                )
            else:
                conn.execute(
                    insert(detalle_ventas).values(
                        numero_factura=detail.invoice_number,
                        id_producto=product_id,
                        unidades_vendidas=detail.units_sold,
                    )
                )
                existing.add(key)
        return len(tables.details)

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
