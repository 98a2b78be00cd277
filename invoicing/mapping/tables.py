"""Normalized tables derived from the invoice history.

Column names in the exported/synced form follow the relational schema
(clientes, productos, ventas, detalle_ventas); see ``invoicing.export``.
"""

from decimal import Decimal

from pydantic import BaseModel, Field


class Customer(BaseModel):
    """Invoice receiver, keyed by tax id."""

    tax_id: str
    name: str


class Product(BaseModel):
    """Distinct line-item description."""

    description: str


class Sale(BaseModel):
    """One row per invoice."""

    invoice_number: int
    invoice_date: str = Field(..., description="YYYY-MM-DD")
    total_amount: Decimal
    customer_tax_id: str


class SaleDetail(BaseModel):
    """One row per invoice line, never deduplicated."""

    invoice_number: int
    product_description: str
    units_sold: int


class MappedTables(BaseModel):
    """The four normalized collections, in first-seen/input order."""

    customers: list[Customer] = Field(default_factory=list)
    products: list[Product] = Field(default_factory=list)
    sales: list[Sale] = Field(default_factory=list)
    details: list[SaleDetail] = Field(default_factory=list)
    skipped_invoices: list[str] = Field(
        default_factory=list,
        description="Invoice numbers that failed to map and were left out",
    )
