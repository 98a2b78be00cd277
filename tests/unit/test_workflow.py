"""Unit tests for the user-facing invoice workflow.

The extraction provider is mocked; storage and sync use in-memory SQLite.
"""

from collections.abc import Callable, Generator
from unittest.mock import MagicMock

import pytest

from invoicing.extraction.base import AnalysisResult, ExtractionProvider, ExtractionResult
from invoicing.extraction.schema import InvoiceRecord
from invoicing.shared.config import Settings
from invoicing.store.service import InvoiceStore, InvoiceStoreError
from invoicing.sync.service import TableSyncService
from invoicing.workflow.service import InvoiceWorkflow

InvoiceFactory = Callable[..., InvoiceRecord]

SAMPLE_XML = b"<facturas><factura><numero>1001</numero></factura></facturas>"


@pytest.fixture
def provider() -> MagicMock:
    mock_provider = MagicMock(spec=ExtractionProvider)
    mock_provider.provider_name = "openai"
    return mock_provider


@pytest.fixture
def store() -> Generator[InvoiceStore, None, None]:
    invoice_store = InvoiceStore("sqlite://")
    yield invoice_store
    invoice_store.dispose()


@pytest.fixture
def sync_service() -> Generator[TableSyncService, None, None]:
    service = TableSyncService(
        Settings(_env_file=None, sync_enabled=True, sync_database_url="sqlite://")
    )
    yield service
    service.dispose()


@pytest.fixture
def workflow(
    provider: MagicMock, store: InvoiceStore, sync_service: TableSyncService
) -> InvoiceWorkflow:
    return InvoiceWorkflow(provider, store, sync_service)


def extracted(*invoices: InvoiceRecord) -> ExtractionResult:
    return ExtractionResult(invoices=list(invoices), success=True, provider="openai")


class TestIngestXml:
    """Tests for uploading XML files."""

    def test_ingest_adds_invoices(
        self, workflow: InvoiceWorkflow, provider: MagicMock, make_invoice: InvoiceFactory
    ) -> None:
        provider.extract_invoices.return_value = extracted(
            make_invoice(number="1"), make_invoice(number="2")
        )

        result = workflow.ingest_xml(SAMPLE_XML, "facturas.xml")

        assert result.success is True
        assert result.added_count == 2
        assert result.duplicate_count == 0
        assert result.message == "2 new invoice(s) added. 0 duplicate(s) skipped."
        provider.extract_invoices.assert_called_once_with(SAMPLE_XML.decode())

    def test_ingest_same_file_twice(
        self, workflow: InvoiceWorkflow, provider: MagicMock, make_invoice: InvoiceFactory
    ) -> None:
        """Uploading the same file again only reports duplicates."""
        provider.extract_invoices.return_value = extracted(make_invoice())
        workflow.ingest_xml(SAMPLE_XML)

        result = workflow.ingest_xml(SAMPLE_XML)

        assert result.added_count == 0
        assert result.duplicate_count == 1
        assert len(workflow.list_invoices()) == 1

    def test_ingest_strips_utf8_bom(
        self, workflow: InvoiceWorkflow, provider: MagicMock
    ) -> None:
        provider.extract_invoices.return_value = extracted()

        workflow.ingest_xml(b"\xef\xbb\xbf" + SAMPLE_XML)

        provider.extract_invoices.assert_called_once_with(SAMPLE_XML.decode())

    def test_ingest_unreadable_file(
        self, workflow: InvoiceWorkflow, provider: MagicMock
    ) -> None:
        result = workflow.ingest_xml(b"\xff\xfe\x00<bad", "broken.xml")

        assert result.success is False
        assert result.error_kind == "read"
        assert result.error is not None
        assert result.error.startswith("Could not read the file")
        provider.extract_invoices.assert_not_called()

    def test_ingest_extraction_failure_stores_nothing(
        self, workflow: InvoiceWorkflow, provider: MagicMock, store: InvoiceStore
    ) -> None:
        provider.extract_invoices.return_value = ExtractionResult(
            success=False, error="Unexpected response format: boom", provider="openai"
        )

        result = workflow.ingest_xml(SAMPLE_XML)

        assert result.success is False
        assert result.error_kind == "extraction"
        assert result.error == (
            "The AI provider could not process the file. "
            "Details: Unexpected response format: boom"
        )
        assert store.count_invoices() == 0

    def test_ingest_storage_failure(
        self, provider: MagicMock, sync_service: TableSyncService, make_invoice: InvoiceFactory
    ) -> None:
        store = MagicMock(spec=InvoiceStore)
        store.add_invoices.side_effect = InvoiceStoreError("Could not store invoices: disk full")
        provider.extract_invoices.return_value = extracted(make_invoice())

        result = InvoiceWorkflow(provider, store, sync_service).ingest_xml(SAMPLE_XML)

        assert result.success is False
        assert result.error_kind == "storage"
        assert result.error == "Could not store invoices: disk full"


class TestAnalyze:
    """Tests for history analysis."""

    def test_analyze_empty_history(self, workflow: InvoiceWorkflow, provider: MagicMock) -> None:
        outcome = workflow.analyze("Who buys the most?")

        assert outcome.success is False
        assert outcome.no_history is True
        assert outcome.error == "There are no invoices to analyze. Upload a file first."
        provider.analyze_invoices.assert_not_called()

    def test_analyze_passes_full_history(
        self,
        workflow: InvoiceWorkflow,
        provider: MagicMock,
        store: InvoiceStore,
        make_invoice: InvoiceFactory,
    ) -> None:
        store.add_invoices([make_invoice(number="1"), make_invoice(number="2")])
        provider.analyze_invoices.return_value = AnalysisResult(
            text="**Bar El Ancla**", success=True, provider="openai"
        )

        outcome = workflow.analyze("Who buys the most?")

        assert outcome.success is True
        assert outcome.text == "**Bar El Ancla**"
        invoices, prompt = provider.analyze_invoices.call_args.args
        assert [invoice.invoice_number for invoice in invoices] == ["1", "2"]
        assert prompt == "Who buys the most?"

    def test_analyze_provider_failure(
        self,
        workflow: InvoiceWorkflow,
        provider: MagicMock,
        store: InvoiceStore,
        make_invoice: InvoiceFactory,
    ) -> None:
        store.add_invoices([make_invoice()])
        provider.analyze_invoices.return_value = AnalysisResult(
            success=False, error="Analysis failed: timeout", provider="openai"
        )

        outcome = workflow.analyze("Summarize")

        assert outcome.success is False
        assert outcome.no_history is False
        assert outcome.error == "Analysis failed: timeout"


class TestBuildTables:
    """Tests for mapping and validating the history."""

    def test_build_tables(
        self, workflow: InvoiceWorkflow, store: InvoiceStore, make_invoice: InvoiceFactory
    ) -> None:
        store.add_invoices([make_invoice()])

        result = workflow.build_tables()

        assert result.success is True
        assert result.tables is not None
        assert len(result.tables.sales) == 1

    def test_build_tables_empty_history(self, workflow: InvoiceWorkflow) -> None:
        result = workflow.build_tables()

        assert result.success is False
        assert result.tables is None
        assert "No customers found" in result.errors
        assert result.error is not None
        assert result.error.startswith("Validation errors: No customers found; ")

    def test_build_tables_invalid_tax_id(
        self, workflow: InvoiceWorkflow, store: InvoiceStore, make_invoice: InvoiceFactory
    ) -> None:
        store.add_invoices([make_invoice(receiver_tax_id="123")])

        result = workflow.build_tables()

        assert result.success is False
        assert result.errors == ["Customer 1: invalid tax id (123)"]


class TestMaintenance:
    """Tests for deleting and clearing the history."""

    def test_delete_invoice(
        self, workflow: InvoiceWorkflow, store: InvoiceStore, make_invoice: InvoiceFactory
    ) -> None:
        store.add_invoices([make_invoice()])
        invoice_id = store.list_invoices()[0].id

        result = workflow.delete_invoice(invoice_id)

        assert result.success is True
        assert result.message == "Invoice deleted."
        assert store.count_invoices() == 0

    def test_delete_missing_invoice(self, workflow: InvoiceWorkflow) -> None:
        result = workflow.delete_invoice(42)

        assert result.success is False
        assert result.not_found is True
        assert result.error == "Invoice 42 not found"

    def test_clear_history(
        self, workflow: InvoiceWorkflow, store: InvoiceStore, make_invoice: InvoiceFactory
    ) -> None:
        store.add_invoices([make_invoice(number="1"), make_invoice(number="2")])

        result = workflow.clear_history()

        assert result.success is True
        assert result.message == "Invoice history cleared (2)."
        assert workflow.list_invoices() == []


class TestSyncTables:
    """Tests for syncing the mapped history."""

    def test_sync_tables(
        self, workflow: InvoiceWorkflow, store: InvoiceStore, make_invoice: InvoiceFactory
    ) -> None:
        store.add_invoices([make_invoice()])

        tables_result, sync_result = workflow.sync_tables()

        assert tables_result.success is True
        assert sync_result is not None
        assert sync_result.success is True
        assert sync_result.sales_inserted == 1

    def test_sync_tables_skipped_when_invalid(self, workflow: InvoiceWorkflow) -> None:
        tables_result, sync_result = workflow.sync_tables()

        assert tables_result.success is False
        assert sync_result is None
