"""ORM model of the invoice history table."""

from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class StoredInvoice(Base):
    """One persisted invoice.

    The full record lives in ``payload``; the two key columns back the
    uniqueness constraint used for duplicate detection.
    """

    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint(
            "numero_factura",
            "emisor_identificacion_fiscal",
            name="uq_invoice_number_issuer",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    numero_factura = Column(String(64), nullable=False)
    emisor_identificacion_fiscal = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(UTC))
