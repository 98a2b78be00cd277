"""Unit tests for syncing mapped tables into the sales database.

The target database is in-memory SQLite.
"""

from collections.abc import Callable, Generator
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from invoicing.extraction.schema import InvoiceRecord
from invoicing.mapping.mapper import map_invoices
from invoicing.mapping.tables import SaleDetail
from invoicing.shared.config import Settings
from invoicing.sync.service import (
    TableSyncService,
    clientes,
    detalle_ventas,
    productos,
    ventas,
)

InvoiceFactory = Callable[..., InvoiceRecord]


@pytest.fixture
def sync_service() -> Generator[TableSyncService, None, None]:
    settings = Settings(_env_file=None, sync_enabled=True, sync_database_url="sqlite://")
    service = TableSyncService(settings)
    yield service
    service.dispose()


def count_rows(service: TableSyncService, table) -> int:  # type: ignore[no-untyped-def]
    with service._get_engine().connect() as conn:
        return conn.scalar(select(func.count()).select_from(table)) or 0


def test_is_available_requires_flag_and_url() -> None:
    assert not TableSyncService(Settings(_env_file=None)).is_available()
    assert not TableSyncService(
        Settings(_env_file=None, sync_enabled=True, sync_database_url="")
    ).is_available()
    assert not TableSyncService(
        Settings(_env_file=None, sync_enabled=False, sync_database_url="sqlite://")
    ).is_available()


def test_sync_disabled_returns_error(make_invoice: InvoiceFactory) -> None:
    service = TableSyncService(Settings(_env_file=None))

    result = service.sync(map_invoices([make_invoice()]))

    assert result.success is False
    assert result.error == "Table sync is not enabled"


def test_sync_writes_all_tables(
    sync_service: TableSyncService, make_invoice: InvoiceFactory
) -> None:
    tables = map_invoices([make_invoice(number="1"), make_invoice(number="2")])

    result = sync_service.sync(tables)

    assert result.success is True
    assert result.customers_written == 1
    assert result.products_inserted == 2
    assert result.sales_inserted == 2
    assert result.details_written == 4

    with sync_service._get_engine().connect() as conn:
        sale = conn.execute(select(ventas).where(ventas.c.numero_factura == 1)).one()
    assert sale.rut_cliente == "12345678-9"
    assert str(sale.fecha_factura) == "2024-03-15"
    assert Decimal(sale.monto_total_factura) == Decimal("14875.00")


def test_sync_twice_is_idempotent(
    sync_service: TableSyncService, make_invoice: InvoiceFactory
) -> None:
    """Re-syncing the same tables adds no new products, sales or details."""
    tables = map_invoices([make_invoice()])
    sync_service.sync(tables)

    result = sync_service.sync(tables)

    assert result.success is True
    assert result.products_inserted == 0
    assert result.sales_inserted == 0
    assert count_rows(sync_service, clientes) == 1
    assert count_rows(sync_service, productos) == 2
    assert count_rows(sync_service, ventas) == 1
    assert count_rows(sync_service, detalle_ventas) == 2


def test_sync_refreshes_customer_name_and_units(
    sync_service: TableSyncService, make_invoice: InvoiceFactory
) -> None:
    sync_service.sync(map_invoices([make_invoice(items=[("Beer A", 1, 10.0)])]))

    sync_service.sync(
        map_invoices([make_invoice(receiver_name="Bar El Ancla Ltda", items=[("Beer A", 6, 10.0)])])
    )

    with sync_service._get_engine().connect() as conn:
        assert conn.scalar(select(clientes.c.razon_social)) == "Bar El Ancla Ltda"
        assert conn.scalar(select(detalle_ventas.c.unidades_vendidas)) == 6


def test_sync_rolls_back_on_bad_data(
    sync_service: TableSyncService, make_invoice: InvoiceFactory
) -> None:
    """A detail pointing at an unknown product aborts the whole transaction."""
    tables = map_invoices([make_invoice()])
    tables.details.append(
        SaleDetail(invoice_number=1001, product_description="Ghost", units_sold=1)
    )

    result = sync_service.sync(tables)

    assert result.success is False
    assert "Ghost" in (result.error or "")
    assert count_rows(sync_service, clientes) == 0
    assert count_rows(sync_service, ventas) == 0
