"""Structural validation of mapped tables before export or sync.

Every rule is checked; errors accumulate instead of stopping at the first one.
"""

import re

from pydantic import BaseModel, Field

from invoicing.mapping.tables import MappedTables

_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")
MIN_TAX_ID_LENGTH = 8


class ValidationReport(BaseModel):
    """Result of validating mapped tables.

    Attributes:
        is_valid: True iff no rule was violated
        errors: Human-readable description of each violation
    """

    is_valid: bool
    errors: list[str] = Field(default_factory=list)


def validate_mapped_tables(tables: MappedTables) -> ValidationReport:
    """Check mapped tables for structural completeness.

    Args:
        tables: Output of map_invoices

    Returns:
        ValidationReport listing every violated rule
    """
    errors: list[str] = []

    if not tables.customers:
        errors.append("No customers found")
    if not tables.products:
        errors.append("No products found")
    if not tables.sales:
        errors.append("No sales found")
    if not tables.details:
        errors.append("No sale details found")

    for index, customer in enumerate(tables.customers, start=1):
        if not customer.tax_id or len(customer.tax_id) < MIN_TAX_ID_LENGTH:
            errors.append(f"Customer {index}: invalid tax id ({customer.tax_id})")
        if not customer.name.strip():
            errors.append(f"Customer {index}: empty name")

    for index, product in enumerate(tables.products, start=1):
        if not product.description.strip():
            errors.append(f"Product {index}: empty description")

    for index, sale in enumerate(tables.sales, start=1):
        if sale.invoice_number <= 0:
            errors.append(f"Sale {index}: invalid invoice number ({sale.invoice_number})")
        if not _ISO_DATE.fullmatch(sale.invoice_date):
            errors.append(f"Sale {index}: invalid date ({sale.invoice_date})")
        if sale.total_amount <= 0:
            errors.append(f"Sale {index}: invalid amount ({sale.total_amount})")

    return ValidationReport(is_valid=not errors, errors=errors)
