"""Invoice history store backed by SQLAlchemy.

Append-only persistence of extracted invoices:
- Duplicate rejection on (invoice number, issuer tax id)
- Batch inserts as a single unit of work, duplicates skipped per record
- Read-all in storage order, delete by id, clear-all; no updates

The store is a process-wide handle created on first use
(``get_invoice_store``) and torn down with ``reset_invoice_store``.
"""

import logging
from collections.abc import Iterable

from pydantic import BaseModel
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from invoicing.extraction.schema import InvoiceRecord
from invoicing.shared.config import Settings, get_settings
from invoicing.shared.database import create_database_engine
from invoicing.store.models import Base, StoredInvoice

logger = logging.getLogger(__name__)


class InvoiceStoreError(RuntimeError):
    """Storage failure other than a duplicate invoice."""


class InvoiceNotFoundError(InvoiceStoreError):
    """Raised when deleting an invoice id that is not stored."""


class AddInvoicesResult(BaseModel):
    """Outcome of a batch insert.

    Attributes:
        added_count: Invoices newly stored
        duplicate_count: Invoices skipped because the key already existed
    """

    added_count: int
    duplicate_count: int


class InvoiceStore:
    """Invoice history on top of a SQL database."""

    def __init__(self, database_url: str) -> None:
        """Initialize store and create the schema if missing.

        Args:
            database_url: SQLAlchemy URL of the history database
        """
        self.database_url = database_url
        self._engine = create_database_engine(database_url)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.info(f"Invoice store initialized for {self._engine.url.render_as_string()}")

    def add_invoices(self, invoices: Iterable[InvoiceRecord]) -> AddInvoicesResult:
        """Store a batch of invoices.

        Each insert runs in its own savepoint. A uniqueness violation rolls
        back that savepoint and counts the invoice as a duplicate; any other
        failure rolls back the whole batch.

        Args:
            invoices: Invoices to store

        Returns:
            Counts of added and duplicate invoices

        Raises:
            InvoiceStoreError: If the batch was aborted
        """
        added_count = 0
        duplicate_count = 0

        try:
            with self._session_factory() as session, session.begin():
                for invoice in invoices:
                    invoice_number, issuer_tax_id = invoice.storage_key
                    row = StoredInvoice(
                        numero_factura=invoice_number,
                        emisor_identificacion_fiscal=issuer_tax_id,
                        payload=invoice.to_payload(),
                    )
                    try:
                        with session.begin_nested():
                            session.add(row)
                            session.flush()
                    except IntegrityError:
                        duplicate_count += 1
                        logger.info(
                            f"Skipping duplicate invoice {invoice_number} "
                            f"from issuer {issuer_tax_id}"
                        )
                    else:
                        added_count += 1

        except SQLAlchemyError as e:
            logger.error(f"Invoice batch aborted: {e}")
            raise InvoiceStoreError(f"Could not store invoices: {e}") from e

        logger.info(f"Stored {added_count} invoice(s), skipped {duplicate_count} duplicate(s)")
        return AddInvoicesResult(added_count=added_count, duplicate_count=duplicate_count)

    def list_invoices(self) -> list[InvoiceRecord]:
        """Return every stored invoice in storage order, ids set."""
        try:
            with self._session_factory() as session:
                rows = session.scalars(select(StoredInvoice).order_by(StoredInvoice.id)).all()
                return [self._to_record(row) for row in rows]
        except SQLAlchemyError as e:
            raise InvoiceStoreError(f"Could not read invoices: {e}") from e

    def find_invoice(self, invoice_number: str, issuer_tax_id: str) -> InvoiceRecord | None:
        """Look up an invoice by its uniqueness key."""
        try:
            with self._session_factory() as session:
                row = session.scalars(
                    select(StoredInvoice).where(
                        StoredInvoice.numero_factura == invoice_number,
                        StoredInvoice.emisor_identificacion_fiscal == issuer_tax_id,
                    )
                ).first()
                return self._to_record(row) if row is not None else None
        except SQLAlchemyError as e:
            raise InvoiceStoreError(f"Could not read invoices: {e}") from e

    def count_invoices(self) -> int:
        try:
            with self._session_factory() as session:
                return session.scalar(select(func.count()).select_from(StoredInvoice)) or 0
        except SQLAlchemyError as e:
            raise InvoiceStoreError(f"Could not count invoices: {e}") from e

    def delete_invoice(self, invoice_id: int) -> None:
        """Delete exactly one invoice.

        Raises:
            InvoiceNotFoundError: If no invoice has this id
            InvoiceStoreError: On any other storage failure
        """
        try:
            with self._session_factory() as session, session.begin():
                row = session.get(StoredInvoice, invoice_id)
                if row is None:
                    raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
                session.delete(row)
        except SQLAlchemyError as e:
            raise InvoiceStoreError(f"Could not delete invoice {invoice_id}: {e}") from e

        logger.info(f"Deleted invoice {invoice_id}")

    def clear_invoices(self) -> int:
        """Delete every stored invoice.

        Returns:
            Number of invoices removed
        """
        try:
            with self._session_factory() as session, session.begin():
                removed = session.execute(delete(StoredInvoice)).rowcount
        except SQLAlchemyError as e:
            raise InvoiceStoreError(f"Could not clear invoices: {e}") from e

        logger.info(f"Cleared invoice history ({removed} invoice(s))")
        return removed

    def dispose(self) -> None:
        """Release database connections."""
        self._engine.dispose()

    @staticmethod
    def _to_record(row: StoredInvoice) -> InvoiceRecord:
        return InvoiceRecord.model_validate({**row.payload, "id": row.id})


_store: InvoiceStore | None = None


def get_invoice_store(settings: Settings | None = None) -> InvoiceStore:
    """Return the process-wide invoice store, creating it on first use.

    Args:
        settings: Settings used only when the store does not exist yet

    Returns:
        Shared InvoiceStore instance
    """
    global _store
    if _store is None:
        settings = settings or get_settings()
        _store = InvoiceStore(settings.database_url)
    return _store


def reset_invoice_store() -> None:
    """Dispose the process-wide store so the next access re-creates it."""
    global _store
    if _store is not None:
        _store.dispose()
        _store = None
