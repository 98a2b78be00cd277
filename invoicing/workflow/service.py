"""User-facing operations of the invoice ingestion service.

Each method is one user action (upload, analyze, build tables, delete,
clear, sync) and returns a result model carrying either the outcome or an
error message. Failures never leave the invoice history in a partial
state: whatever was stored before the failing operation stays stored.
"""

import logging

from pydantic import BaseModel, Field

from invoicing.extraction.base import AnalysisResult, ExtractionProvider
from invoicing.extraction.schema import InvoiceRecord
from invoicing.mapping.mapper import map_invoices
from invoicing.mapping.tables import MappedTables
from invoicing.mapping.validator import validate_mapped_tables
from invoicing.store.service import InvoiceNotFoundError, InvoiceStore, InvoiceStoreError
from invoicing.sync.service import SyncResult, TableSyncService

logger = logging.getLogger(__name__)


class IngestResult(BaseModel):
    """Result of ingesting one XML upload.

    Attributes:
        success: Whether extraction and storage succeeded
        added_count: Invoices newly stored
        duplicate_count: Invoices already in the history
        message: Notification text for the user
        error: Error message if operation failed
        error_kind: 'read', 'extraction' or 'storage' when failed
    """

    success: bool
    added_count: int = 0
    duplicate_count: int = 0
    message: str | None = None
    error: str | None = None
    error_kind: str | None = None


class TablesResult(BaseModel):
    """Mapped and validated tables, or the validation errors.

    On failure the mapped data is discarded and ``tables`` is None.
    """

    success: bool
    tables: MappedTables | None = None
    errors: list[str] = Field(default_factory=list)
    error: str | None = None


class AnalysisOutcome(BaseModel):
    """Answer to an analysis request.

    ``no_history`` is set when the request failed because the history is empty.
    """

    success: bool
    text: str | None = None
    error: str | None = None
    provider: str
    no_history: bool = False


class OperationResult(BaseModel):
    """Result of a history maintenance operation (delete, clear)."""

    success: bool
    message: str | None = None
    error: str | None = None
    not_found: bool = False


class InvoiceWorkflow:
    """Coordinates extraction, storage, mapping and sync for user actions."""

    def __init__(
        self,
        extraction_provider: ExtractionProvider,
        store: InvoiceStore,
        sync_service: TableSyncService,
    ) -> None:
        self.extraction_provider = extraction_provider
        self.store = store
        self.sync_service = sync_service

    def ingest_xml(self, content: bytes, filename: str | None = None) -> IngestResult:
        """Extract the invoices of an XML upload and add them to the history.

        Args:
            content: Raw uploaded bytes
            filename: Original file name, for logging

        Returns:
            IngestResult with added/duplicate counts or error
        """
        try:
            xml_text = content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            logger.warning(f"Could not decode upload {filename}: {e}")
            return IngestResult(
                success=False,
                error="Could not read the file. Please try again with a UTF-8 XML file.",
                error_kind="read",
            )

        extraction = self.extraction_provider.extract_invoices(xml_text)
        if not extraction.success:
            return IngestResult(
                success=False,
                error=f"The AI provider could not process the file. Details: {extraction.error}",
                error_kind="extraction",
            )

        try:
            stored = self.store.add_invoices(extraction.invoices)
        except InvoiceStoreError as e:
            return IngestResult(success=False, error=str(e), error_kind="storage")

        message = (
            f"{stored.added_count} new invoice(s) added. "
            f"{stored.duplicate_count} duplicate(s) skipped."
        )
        logger.info(f"Ingested {filename or 'upload'}: {message}")
        return IngestResult(
            success=True,
            added_count=stored.added_count,
            duplicate_count=stored.duplicate_count,
            message=message,
        )

    def list_invoices(self) -> list[InvoiceRecord]:
        """Return the full invoice history."""
        return self.store.list_invoices()

    def analyze(self, prompt: str) -> AnalysisOutcome:
        """Answer a natural-language question about the history."""
        provider = self.extraction_provider.provider_name
        try:
            invoices = self.store.list_invoices()
        except InvoiceStoreError as e:
            return AnalysisOutcome(success=False, error=str(e), provider=provider)

        if not invoices:
            return AnalysisOutcome(
                success=False,
                error="There are no invoices to analyze. Upload a file first.",
                provider=provider,
                no_history=True,
            )

        result: AnalysisResult = self.extraction_provider.analyze_invoices(invoices, prompt)
        return AnalysisOutcome(**result.model_dump())

    def build_tables(self) -> TablesResult:
        """Map the history into normalized tables and validate them."""
        try:
            invoices = self.store.list_invoices()
        except InvoiceStoreError as e:
            return TablesResult(success=False, error=str(e))

        tables = map_invoices(invoices)
        report = validate_mapped_tables(tables)
        if not report.is_valid:
            logger.warning(f"Mapped data failed validation with {len(report.errors)} error(s)")
            return TablesResult(
                success=False,
                errors=report.errors,
                error="Validation errors: " + "; ".join(report.errors),
            )

        return TablesResult(success=True, tables=tables)

    def delete_invoice(self, invoice_id: int) -> OperationResult:
        """Remove one invoice from the history."""
        try:
            self.store.delete_invoice(invoice_id)
        except InvoiceNotFoundError as e:
            return OperationResult(success=False, error=str(e), not_found=True)
        except InvoiceStoreError as e:
            return OperationResult(success=False, error=f"Could not delete the invoice: {e}")

        return OperationResult(success=True, message="Invoice deleted.")

    def clear_history(self) -> OperationResult:
        """Remove every invoice from the history."""
        try:
            removed = self.store.clear_invoices()
        except InvoiceStoreError as e:
            return OperationResult(success=False, error=str(e))

        return OperationResult(success=True, message=f"Invoice history cleared ({removed}).")

    def sync_tables(self) -> tuple[TablesResult, SyncResult | None]:
        """Build and validate tables, then write them to the sync database.

        Returns:
            The tables result, and the sync result when tables were valid
        """
        tables_result = self.build_tables()
        if not tables_result.success or tables_result.tables is None:
            return tables_result, None

        return tables_result, self.sync_service.sync(tables_result.tables)
