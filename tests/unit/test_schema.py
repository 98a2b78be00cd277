"""Unit tests for the invoice schema and payload decoding.

Tests cover:
- Alias mapping between wire keys and attributes
- Rejection of malformed provider payloads
- Markdown-fenced JSON responses
"""

import json
from collections.abc import Callable
from decimal import Decimal
from typing import Any

import pytest

from invoicing.extraction.schema import (
    INVOICE_JSON_SCHEMA,
    InvoicePayloadError,
    InvoiceRecord,
    parse_invoice_array,
    parse_invoice_json,
)

PayloadFactory = Callable[..., dict[str, Any]]


def test_invoice_record_reads_wire_keys(invoice_payload: PayloadFactory) -> None:
    """Spanish wire keys populate English attributes."""
    invoice = InvoiceRecord.model_validate(invoice_payload())

    assert invoice.invoice_number == "1001"
    assert invoice.issuer.tax_id == "76000000"
    assert invoice.receiver.name == "Bar El Ancla"
    assert invoice.items[0].description == "Beer A"
    assert invoice.items[0].quantity == 2.5
    assert invoice.taxes[0].rate == 19
    assert invoice.total == Decimal("14875.0")
    assert invoice.notes is None
    assert invoice.id is None


def test_invoice_number_given_as_json_number(invoice_payload: PayloadFactory) -> None:
    """A numeric invoice number from the provider is kept as text."""
    payload = invoice_payload()
    payload["numero_factura"] = 1001

    invoice = InvoiceRecord.model_validate(payload)

    assert invoice.invoice_number == "1001"


def test_storage_key(invoice_payload: PayloadFactory) -> None:
    invoice = InvoiceRecord.model_validate(invoice_payload(number="77", issuer_tax_id="99"))

    assert invoice.storage_key == ("77", "99")


def test_to_payload_uses_wire_keys_and_drops_id(invoice_payload: PayloadFactory) -> None:
    """Serialized payload is wire-compatible and never carries the store id."""
    invoice = InvoiceRecord.model_validate({**invoice_payload(), "id": 5})

    payload = invoice.to_payload()

    assert "id" not in payload
    assert payload["numero_factura"] == "1001"
    assert payload["emisor"]["identificacion_fiscal"] == "76000000"
    assert "contacto" not in payload["receptor"]
    assert InvoiceRecord.model_validate(payload).storage_key == invoice.storage_key


def test_parse_invoice_array_valid(invoice_payload: PayloadFactory) -> None:
    invoices = parse_invoice_array([invoice_payload(number="1"), invoice_payload(number="2")])

    assert [invoice.invoice_number for invoice in invoices] == ["1", "2"]


def test_parse_invoice_array_empty_list() -> None:
    """An XML without invoices yields an empty result, not an error."""
    assert parse_invoice_array([]) == []


def test_parse_invoice_array_rejects_object(invoice_payload: PayloadFactory) -> None:
    """A single object instead of an array is rejected."""
    with pytest.raises(InvoicePayloadError, match="not an array"):
        parse_invoice_array(invoice_payload())


def test_parse_invoice_array_rejects_missing_field(invoice_payload: PayloadFactory) -> None:
    """Missing required fields are reported with their location."""
    payload = invoice_payload()
    del payload["receptor"]

    with pytest.raises(InvoicePayloadError, match="receptor"):
        parse_invoice_array([payload])


def test_parse_invoice_array_checks_every_element(invoice_payload: PayloadFactory) -> None:
    """Elements after the first are validated too."""
    broken = invoice_payload(number="2")
    del broken["total"]

    with pytest.raises(InvoicePayloadError):
        parse_invoice_array([invoice_payload(), broken])


def test_parse_invoice_json_plain(invoice_payload: PayloadFactory) -> None:
    invoices = parse_invoice_json(json.dumps([invoice_payload()]))

    assert len(invoices) == 1


def test_parse_invoice_json_markdown_fence(invoice_payload: PayloadFactory) -> None:
    """JSON wrapped in a markdown code block is accepted."""
    text = "Here you go:\n```json\n" + json.dumps([invoice_payload()]) + "\n```"

    invoices = parse_invoice_json(text)

    assert invoices[0].invoice_number == "1001"


def test_parse_invoice_json_invalid_json() -> None:
    with pytest.raises(InvoicePayloadError, match="not valid JSON"):
        parse_invoice_json("I could not find any invoice")


def test_json_schema_required_fields() -> None:
    """The schema handed to the LLM requires every mandatory invoice field."""
    assert set(INVOICE_JSON_SCHEMA["required"]) == {
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
    }
