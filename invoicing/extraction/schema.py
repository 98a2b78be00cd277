"""Invoice data models for structured extraction.

Attribute names are English; the wire names used by the LLM schema and the
persisted payload are the Spanish keys of the electronic invoices we ingest
(``numero_factura``, ``emisor``, ...), mapped through field aliases.
"""

import json
import re
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class InvoicePayloadError(ValueError):
    """Raised when a provider payload cannot be decoded into invoice records."""


class Party(BaseModel):
    """Issuer or receiver of an invoice."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    name: str = Field(..., alias="nombre", description="Legal name")
    tax_id: str = Field(..., alias="identificacion_fiscal", description="Tax identifier")
    address: str = Field(..., alias="direccion", description="Postal address")
    contact: str | None = Field(None, alias="contacto", description="Email or phone")


class LineItem(BaseModel):
    """Single invoice line."""

    model_config = ConfigDict(populate_by_name=True)

    description: str = Field(..., alias="descripcion")
    quantity: float = Field(..., alias="cantidad")
    unit_price: Decimal = Field(..., alias="precio_unitario")
    line_total: Decimal = Field(..., alias="total_linea")


class Tax(BaseModel):
    """Tax entry of an invoice (e.g. IVA 19%)."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., alias="tipo", description="Tax label, e.g. IVA")
    rate: float = Field(..., alias="tasa", description="Rate in percent (19 for 19%)")
    amount: Decimal = Field(..., alias="monto")


class InvoiceRecord(BaseModel):
    """One invoice as extracted by the provider.

    ``id`` is only set once the record has been persisted by the invoice store.
    """

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: int | None = Field(None, description="Identifier assigned by the invoice store")
    invoice_number: str = Field(..., alias="numero_factura")
    issue_date: str = Field(..., alias="fecha_emision", description="Issue date (YYYY-MM-DD)")
    due_date: str = Field(..., alias="fecha_vencimiento", description="Payment due date")
    currency: str = Field(..., alias="moneda", description="Currency code, e.g. CLP")
    issuer: Party = Field(..., alias="emisor")
    receiver: Party = Field(..., alias="receptor")
    items: list[LineItem]
    subtotal: Decimal = Field(..., description="Amount before taxes")
    taxes: list[Tax] = Field(..., alias="impuestos")
    total: Decimal = Field(..., description="Final invoice amount")
    notes: str | None = Field(None, alias="notas")

    @property
    def storage_key(self) -> tuple[str, str]:
        """Uniqueness key of the invoice history: (invoice number, issuer tax id)."""
        return self.invoice_number, self.issuer.tax_id

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible wire format, without the store id."""
        return self.model_dump(mode="json", by_alias=True, exclude={"id"}, exclude_none=True)


_invoice_list_adapter = TypeAdapter(list[InvoiceRecord])

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def parse_invoice_array(data: Any) -> list[InvoiceRecord]:
    """Validate an already-decoded provider payload.

    Args:
        data: Decoded JSON value returned by the provider

    Returns:
        Validated invoice records in payload order

    Raises:
        InvoicePayloadError: If the payload is not an array or an element
            does not match the invoice schema
    """
    if not isinstance(data, list):
        raise InvoicePayloadError(
            f"Provider response is not an array of invoices (got {type(data).__name__})"
        )

    try:
        return _invoice_list_adapter.validate_python(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise InvoicePayloadError(
            f"Provider response does not match the invoice schema "
            f"({e.error_count()} error(s), first at '{location}': {first['msg']})"
        ) from e


def parse_invoice_json(text: str) -> list[InvoiceRecord]:
    """Decode a raw LLM response into invoice records.

    Handles markdown code fences around the JSON body.

    Raises:
        InvoicePayloadError: If no valid JSON array of invoices is found
    """
    fenced = _FENCED_JSON.search(text)
    body = fenced.group(1) if fenced else text

    try:
        data = json.loads(body.strip())
    except json.JSONDecodeError as e:
        raise InvoicePayloadError(f"Provider response is not valid JSON: {e}") from e

    return parse_invoice_array(data)


def _party_schema(role: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "nombre": {"type": "string"},
            "identificacion_fiscal": {"type": "string"},
            "direccion": {"type": "string"},
            "contacto": {"type": "string", "description": f"Email or phone of the {role}"},
        },
        "required": ["nombre", "identificacion_fiscal", "direccion"],
    }


# JSON schema handed to the LLM for a single invoice
INVOICE_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "numero_factura": {"type": "string", "description": "Unique invoice number."},
        "fecha_emision": {"type": "string", "description": "Issue date (YYYY-MM-DD)."},
        "fecha_vencimiento": {"type": "string", "description": "Payment due date (YYYY-MM-DD)."},
        "moneda": {"type": "string", "description": "Currency code (e.g. USD, EUR, CLP)."},
        "emisor": _party_schema("issuer"),
        "receptor": _party_schema("receiver"),
        "items": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "descripcion": {"type": "string"},
                    "cantidad": {"type": "number"},
                    "precio_unitario": {"type": "number"},
                    "total_linea": {"type": "number"},
                },
                "required": ["descripcion", "cantidad", "precio_unitario", "total_linea"],
            },
        },
        "subtotal": {"type": "number", "description": "Total amount before taxes."},
        "impuestos": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "tipo": {"type": "string", "description": "Tax type (e.g. IVA)."},
                    "tasa": {"type": "number", "description": "Rate in percent (19 for 19%)."},
                    "monto": {"type": "number", "description": "Total tax amount."},
                },
                "required": ["tipo", "tasa", "monto"],
            },
        },
        "total": {"type": "number", "description": "Final invoice amount."},
        "notas": {"type": "string", "description": "Any additional note on the invoice."},
    },
    "required": [
        "numero_factura",
        "fecha_emision",
        "fecha_vencimiento",
        "moneda",
        "emisor",
        "receptor",
        "items",
        "subtotal",
        "impuestos",
        "total",
    ],
}
