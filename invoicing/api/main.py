"""FastAPI application for XML invoice ingestion.

Production-ready API with:
- Health and readiness checks for Kubernetes
- XML upload validation
- LLM-powered invoice extraction with duplicate-aware history
- Natural-language analysis of the history
- Normalized table export, summary and database sync
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
from pathlib import Path

from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile, status
from pydantic import BaseModel, Field

from invoicing.api import metrics
from invoicing.export.csv_export import export_filename, render_tables_csv
from invoicing.export.summary import ProcessSummary, build_process_summary
from invoicing.extraction.factory import create_extraction_service
from invoicing.extraction.schema import InvoiceRecord
from invoicing.mapping.tables import MappedTables
from invoicing.shared.config import get_settings
from invoicing.store.service import InvoiceStoreError, get_invoice_store
from invoicing.sync.service import SyncResult, TableSyncService
from invoicing.workflow.service import InvoiceWorkflow, TablesResult

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(
    title="XML Invoice Ingest",
    description="Invoice extraction, history, analysis and export API",
    version=settings.service_version,
)

extraction_service = create_extraction_service(settings)
sync_service = TableSyncService(settings)

XML_CONTENT_TYPES = {"application/xml", "text/xml"}


def get_workflow() -> InvoiceWorkflow:
    """Workflow bound to the process-wide invoice store."""
    return InvoiceWorkflow(extraction_service, get_invoice_store(settings), sync_service)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str
    environment: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class UploadResponse(BaseModel):
    """XML upload response."""

    success: bool
    added_count: int
    duplicate_count: int
    message: str


class AnalysisRequest(BaseModel):
    """Natural-language question about the invoice history."""

    prompt: str = Field(..., min_length=1, description="What to analyze")


class AnalysisResponse(BaseModel):
    """Markdown answer from the LLM provider."""

    text: str
    provider: str


class OperationResponse(BaseModel):
    """Outcome of a history maintenance operation."""

    success: bool
    message: str


class SummaryResponse(BaseModel):
    """Process summary of the mapped history."""

    summary: ProcessSummary
    text: str


def _require_tables(result: TablesResult) -> MappedTables:
    """Return valid tables or raise the matching HTTP error."""
    if result.success and result.tables is not None:
        metrics.mapping_requests_total.labels(status="valid").inc()
        metrics.invoices_skipped_mapping_total.inc(len(result.tables.skipped_invoices))
        return result.tables

    if result.errors:
        metrics.mapping_requests_total.labels(status="invalid").inc()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": result.error, "errors": result.errors},
        )

    metrics.mapping_requests_total.labels(status="failed").inc()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe."""
    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        service=settings.service_name,
        environment=settings.environment,
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check(
    workflow: InvoiceWorkflow = Depends(get_workflow),  # noqa: B008
) -> ReadinessResponse:
    """Readiness check: the invoice history database answers queries."""
    try:
        workflow.store.count_invoices()
    except InvoiceStoreError:
        return ReadinessResponse(ready=False)
    return ReadinessResponse(ready=True)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post("/api/v1/invoices/upload", response_model=UploadResponse, tags=["Invoices"])
async def upload_invoices(
    file: UploadFile = File(..., description="XML file with one or more invoices"),  # noqa: B008
    workflow: InvoiceWorkflow = Depends(get_workflow),  # noqa: B008
) -> UploadResponse:
    """Upload an XML file, extract its invoices and add them to the history.

    ## Usage Example

    ```bash
    curl -X POST "http://localhost:8000/api/v1/invoices/upload" \\
      -F "file=@facturas.xml;type=application/xml"
    ```

    ## Error Handling

    - Returns 400 if the file is missing, not XML, empty, too large or unreadable
    - Returns 502 if the LLM provider fails or answers in an unexpected format
    - Returns 500 if the history database rejects the batch

    Duplicates (same invoice number and issuer tax id) are skipped, not errors.
    """
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")

    is_xml_name = Path(file.filename).suffix.lower() == ".xml"
    if not is_xml_name and file.content_type not in XML_CONTENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type: {file.content_type}. Only XML files are supported.",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")

    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large: {len(content)} bytes (max {settings.max_upload_bytes})",
        )

    metrics.xml_upload_size_bytes.observe(len(content))

    start = time.time()
    result = workflow.ingest_xml(content, file.filename)
    metrics.xml_ingestion_duration_seconds.observe(time.time() - start)

    if not result.success:
        metrics.xml_uploads_total.labels(status="failed").inc()
        error_status = {
            "read": status.HTTP_400_BAD_REQUEST,
            "extraction": status.HTTP_502_BAD_GATEWAY,
        }.get(result.error_kind or "", status.HTTP_500_INTERNAL_SERVER_ERROR)
        raise HTTPException(status_code=error_status, detail=result.error)

    metrics.xml_uploads_total.labels(status="success").inc()
    metrics.invoices_stored_total.labels(outcome="added").inc(result.added_count)
    metrics.invoices_stored_total.labels(outcome="duplicate").inc(result.duplicate_count)

    return UploadResponse(
        success=True,
        added_count=result.added_count,
        duplicate_count=result.duplicate_count,
        message=result.message or "",
    )


@app.get("/api/v1/invoices", response_model=list[InvoiceRecord], tags=["Invoices"])
def list_invoices(
    workflow: InvoiceWorkflow = Depends(get_workflow),  # noqa: B008
) -> list[InvoiceRecord]:
    """Return the full invoice history in storage order."""
    try:
        return workflow.list_invoices()
    except InvoiceStoreError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        ) from e


@app.delete("/api/v1/invoices/{invoice_id}", response_model=OperationResponse, tags=["Invoices"])
def delete_invoice(
    invoice_id: int,
    workflow: InvoiceWorkflow = Depends(get_workflow),  # noqa: B008
) -> OperationResponse:
    """Delete one invoice from the history."""
    result = workflow.delete_invoice(invoice_id)
    if not result.success:
        error_status = (
            status.HTTP_404_NOT_FOUND
            if result.not_found
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        raise HTTPException(status_code=error_status, detail=result.error)
    return OperationResponse(success=True, message=result.message or "")


@app.delete("/api/v1/invoices", response_model=OperationResponse, tags=["Invoices"])
def clear_invoices(
    workflow: InvoiceWorkflow = Depends(get_workflow),  # noqa: B008
) -> OperationResponse:
    """Delete the whole invoice history."""
    result = workflow.clear_history()
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error
        )
    return OperationResponse(success=True, message=result.message or "")


@app.post("/api/v1/invoices/analysis", response_model=AnalysisResponse, tags=["Analysis"])
def analyze_invoices(
    request: AnalysisRequest,
    workflow: InvoiceWorkflow = Depends(get_workflow),  # noqa: B008
) -> AnalysisResponse:
    """Ask a question about the invoice history in natural language.

    Returns 400 when the history is empty and 502 when the provider fails.
    """
    outcome = workflow.analyze(request.prompt)
    if not outcome.success or outcome.text is None:
        metrics.analysis_requests_total.labels(status="failed").inc()
        error_status = (
            status.HTTP_400_BAD_REQUEST if outcome.no_history else status.HTTP_502_BAD_GATEWAY
        )
        raise HTTPException(status_code=error_status, detail=outcome.error)

    metrics.analysis_requests_total.labels(status="success").inc()
    return AnalysisResponse(text=outcome.text, provider=outcome.provider)


@app.get("/api/v1/tables", response_model=MappedTables, tags=["Tables"])
def get_tables(
    workflow: InvoiceWorkflow = Depends(get_workflow),  # noqa: B008
) -> MappedTables:
    """Map the history into customers, products, sales and details.

    Returns 422 with every violated rule when the mapped data is invalid.
    """
    return _require_tables(workflow.build_tables())


@app.get("/api/v1/tables/export", tags=["Tables"])
def export_tables(
    workflow: InvoiceWorkflow = Depends(get_workflow),  # noqa: B008
) -> Response:
    """Download the mapped tables as a sectioned CSV file."""
    tables = _require_tables(workflow.build_tables())
    filename = export_filename()
    return Response(
        content=render_tables_csv(tables),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/v1/tables/summary", response_model=SummaryResponse, tags=["Tables"])
def tables_summary(
    workflow: InvoiceWorkflow = Depends(get_workflow),  # noqa: B008
) -> SummaryResponse:
    """Totals, date range and top customers/products of the mapped history."""
    summary = build_process_summary(_require_tables(workflow.build_tables()))
    return SummaryResponse(summary=summary, text=summary.render())


@app.post("/api/v1/tables/sync", response_model=SyncResult, tags=["Tables"])
def sync_tables(
    workflow: InvoiceWorkflow = Depends(get_workflow),  # noqa: B008
) -> SyncResult:
    """Write the mapped history into the configured sales database."""
    if not workflow.sync_service.is_available():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Table sync is not enabled. Set APP_SYNC_ENABLED and APP_SYNC_DATABASE_URL.",
        )

    tables_result, sync_result = workflow.sync_tables()
    _require_tables(tables_result)

    if sync_result is None or not sync_result.success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=sync_result.error if sync_result else "Table sync did not run",
        )
    return sync_result
