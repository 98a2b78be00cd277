"""Shared fixtures: invoice payloads in the provider wire format."""

from collections.abc import Callable
from typing import Any

import pytest

from invoicing.extraction.schema import InvoiceRecord

Line = tuple[str, float, float]


def build_invoice_payload(
    number: str = "1001",
    issuer_tax_id: str = "76000000",
    receiver_tax_id: str = "12345678-9",
    receiver_name: str = "Bar El Ancla",
    items: list[Line] | None = None,
    total: float = 14875.0,
    issue_date: str = "2024-03-15",
) -> dict[str, Any]:
    """Invoice as the LLM returns it (Spanish wire keys)."""
    lines = items if items is not None else [("Beer A", 2.5, 1000.0), ("Beer B", 1, 10000.0)]
    return {
        "numero_factura": number,
        "fecha_emision": issue_date,
        "fecha_vencimiento": "2024-04-15",
        "moneda": "CLP",
        "emisor": {
            "nombre": "Cerveceria del Sur SpA",
            "identificacion_fiscal": issuer_tax_id,
            "direccion": "Av. Costanera 123, Valdivia",
            "contacto": "ventas@cervezasur.cl",
        },
        "receptor": {
            "nombre": receiver_name,
            "identificacion_fiscal": receiver_tax_id,
            "direccion": "Calle Larga 45, Osorno",
        },
        "items": [
            {
                "descripcion": description,
                "cantidad": quantity,
                "precio_unitario": price,
                "total_linea": quantity * price,
            }
            for description, quantity, price in lines
        ],
        "subtotal": 12500.0,
        "impuestos": [{"tipo": "IVA", "tasa": 19, "monto": 2375.0}],
        "total": total,
    }


@pytest.fixture
def invoice_payload() -> Callable[..., dict[str, Any]]:
    """Factory for wire-format invoice dicts."""
    return build_invoice_payload


@pytest.fixture
def make_invoice() -> Callable[..., InvoiceRecord]:
    """Factory for validated InvoiceRecord instances."""

    def _make(**overrides: Any) -> InvoiceRecord:
        return InvoiceRecord.model_validate(build_invoice_payload(**overrides))

    return _make
