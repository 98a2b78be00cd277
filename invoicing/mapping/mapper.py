"""Normalization of invoice records into relational tables.

Turns the invoice history into customers, products, sales and sale
details. Customers and products are deduplicated by natural key (receiver
tax id, trimmed description) in first-seen order; sales and details keep
input order.

An invoice that fails to map is logged and skipped. Customers and products
it contributed before failing stay in place, but none of its sale or
detail rows are emitted.
"""

import logging
import re
from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from invoicing.extraction.schema import InvoiceRecord
from invoicing.mapping.tables import Customer, MappedTables, Product, Sale, SaleDetail

logger = logging.getLogger(__name__)

_INTEGER = re.compile(r"-?\d+")
_CENTS = Decimal("0.01")
_UNIT = Decimal("1")


class InvoiceMappingError(ValueError):
    """Raised when a single invoice cannot be mapped."""


def parse_invoice_number(value: str) -> int:
    """Parse an invoice number into the integer sale key.

    Raises:
        InvoiceMappingError: If the number is not an integer
    """
    text = value.strip()
    if not _INTEGER.fullmatch(text):
        raise InvoiceMappingError(f"Invoice number is not numeric: '{value}'")
    return int(text)


def round_amount(amount: Decimal) -> Decimal:
    """Round a money amount to cents, half-up."""
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)


def round_units(quantity: float) -> int:
    """Round a quantity to the nearest integer, halves rounding up (2.5 -> 3)."""
    return int(Decimal(str(quantity)).quantize(_UNIT, rounding=ROUND_HALF_UP))


def sale_date(issue_date: str) -> str:
    """Date portion of an issue timestamp; the time of day is discarded."""
    return issue_date.strip()[:10]


def map_invoices(invoices: Sequence[InvoiceRecord]) -> MappedTables:
    """Map invoice records into the four normalized tables.

    Args:
        invoices: Invoices in history order

    Returns:
        MappedTables with customers, products, sales and details
    """
    logger.info(f"Mapping {len(invoices)} invoice(s)")

    tables = MappedTables()
    seen_customers: set[str] = set()
    seen_products: set[str] = set()

    for invoice in invoices:
        try:
            customer_tax_id = invoice.receiver.tax_id
            if customer_tax_id not in seen_customers:
                tables.customers.append(
                    Customer(tax_id=customer_tax_id, name=invoice.receiver.name.strip())
                )
                seen_customers.add(customer_tax_id)
                logger.debug(f"New customer: {invoice.receiver.name} ({customer_tax_id})")

            for item in invoice.items:
                description = item.description.strip()
                if description not in seen_products:
                    tables.products.append(Product(description=description))
                    seen_products.add(description)
                    logger.debug(f"New product: {description}")

            invoice_number = parse_invoice_number(invoice.invoice_number)
            sale = Sale(
                invoice_number=invoice_number,
                invoice_date=sale_date(invoice.issue_date),
                total_amount=round_amount(invoice.total),
                customer_tax_id=customer_tax_id,
            )
            details = [
                SaleDetail(
                    invoice_number=invoice_number,
                    product_description=item.description.strip(),
                    units_sold=round_units(item.quantity),
                )
                for item in invoice.items
            ]

        except Exception as e:
            logger.error(f"Error mapping invoice {invoice.invoice_number}: {e}")
            tables.skipped_invoices.append(invoice.invoice_number)
            continue

        tables.sales.append(sale)
        tables.details.extend(details)
        logger.debug(f"Invoice {invoice_number} mapped with {len(details)} line(s)")

    logger.info(
        f"Mapping summary: {len(invoices)} invoice(s), "
        f"{len(tables.customers)} customer(s), {len(tables.products)} product(s), "
        f"{len(tables.sales)} sale(s), {len(tables.details)} detail(s), "
        f"{len(tables.skipped_invoices)} skipped"
    )
    return tables
