"""Sectioned CSV export of mapped tables.

One artifact holding the four tables, each under a labeled section with
its header row; strings are quoted, numbers are written bare.
"""

import csv
import io
from datetime import date

from invoicing.mapping.tables import MappedTables

SECTION_HEADERS: dict[str, list[str]] = {
    "clientes": ["rut", "razon_social"],
    "productos": ["descripcion_producto"],
    "ventas": ["numero_factura", "fecha_factura", "monto_total_factura", "rut_cliente"],
    "detalle_ventas": ["numero_factura", "descripcion_producto", "unidades_vendidas"],
}


def _section_rows(tables: MappedTables) -> dict[str, list[list[object]]]:
    return {
        "clientes": [[c.tax_id, c.name] for c in tables.customers],
        "productos": [[p.description] for p in tables.products],
        "ventas": [
            [s.invoice_number, s.invoice_date, s.total_amount, s.customer_tax_id]
            for s in tables.sales
        ],
        "detalle_ventas": [
            [d.invoice_number, d.product_description, d.units_sold] for d in tables.details
        ],
    }


def render_tables_csv(tables: MappedTables) -> str:
    """Render mapped tables as a single sectioned CSV document.

    Args:
        tables: Validated mapped tables

    Returns:
        CSV text with sections clientes, productos, ventas, detalle_ventas
    """
    buffer = io.StringIO()
    rows_by_section = _section_rows(tables)

    for position, (section, header) in enumerate(SECTION_HEADERS.items()):
        if position:
            buffer.write("\n")
        buffer.write(f"=== {section} ===\n")
        buffer.write(",".join(header) + "\n")
        writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
        writer.writerows(rows_by_section[section])

    return buffer.getvalue()


def export_filename(today: date | None = None) -> str:
    """Default download name, e.g. ``facturas_2024-05-01.csv``."""
    return f"facturas_{(today or date.today()).isoformat()}.csv"
