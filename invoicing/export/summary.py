"""Human-readable process summary of mapped tables."""

from collections import defaultdict
from decimal import Decimal

from pydantic import BaseModel, Field

from invoicing.mapping.tables import MappedTables

TOP_N = 3


class RankedEntry(BaseModel):
    """One line of a top-N ranking."""

    label: str
    value: Decimal


class ProcessSummary(BaseModel):
    """Totals, date range and top rankings of a mapped batch."""

    invoice_count: int
    customer_count: int
    product_count: int
    units_sold: int
    total_amount: Decimal
    date_range: str
    top_products: list[RankedEntry] = Field(default_factory=list)
    top_customers: list[RankedEntry] = Field(default_factory=list)

    def render(self) -> str:
        """Render the summary as plain text."""
        lines = [
            "PROCESS SUMMARY",
            "=" * 40,
            f"Invoices: {self.invoice_count}",
            f"Unique customers: {self.customer_count}",
            f"Unique products: {self.product_count}",
            f"Total units sold: {self.units_sold}",
            f"Total amount: {self.total_amount:,.2f}",
            f"Date range: {self.date_range}",
            "",
            "Top products:",
        ]
        lines += [
            f"  {rank}. {entry.label}: {entry.value} units"
            for rank, entry in enumerate(self.top_products, start=1)
        ]
        lines += ["", "Top customers:"]
        lines += [
            f"  {rank}. {entry.label}: {entry.value:,.2f}"
            for rank, entry in enumerate(self.top_customers, start=1)
        ]
        return "\n".join(lines) + "\n"


def _top(totals: dict[str, Decimal]) -> list[tuple[str, Decimal]]:
    # sorted() is stable, so ties keep first-seen order
    return sorted(totals.items(), key=lambda pair: pair[1], reverse=True)[:TOP_N]


def date_range(tables: MappedTables) -> str:
    """First and last sale date, a single date if equal, or 'no dates'."""
    if not tables.sales:
        return "no dates"
    dates = sorted(sale.invoice_date for sale in tables.sales)
    first, last = dates[0], dates[-1]
    return first if first == last else f"{first} - {last}"


def build_process_summary(tables: MappedTables) -> ProcessSummary:
    """Summarize mapped tables.

    Args:
        tables: Mapped tables (normally already validated)

    Returns:
        ProcessSummary with totals and top-3 rankings
    """
    units_by_product: dict[str, Decimal] = defaultdict(Decimal)
    for detail in tables.details:
        units_by_product[detail.product_description] += detail.units_sold

    spend_by_customer: dict[str, Decimal] = defaultdict(Decimal)
    for sale in tables.sales:
        spend_by_customer[sale.customer_tax_id] += sale.total_amount

    names = {customer.tax_id: customer.name for customer in tables.customers}

    return ProcessSummary(
        invoice_count=len(tables.sales),
        customer_count=len(tables.customers),
        product_count=len(tables.products),
        units_sold=sum(detail.units_sold for detail in tables.details),
        total_amount=sum((sale.total_amount for sale in tables.sales), Decimal("0")),
        date_range=date_range(tables),
        top_products=[
            RankedEntry(label=description, value=units)
            for description, units in _top(units_by_product)
        ],
        top_customers=[
            RankedEntry(label=names.get(tax_id) or tax_id, value=spend)
            for tax_id, spend in _top(spend_by_customer)
        ],
    )
