"""Prometheus metrics for API service.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Upload, storage and LLM call outcomes

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Upload metrics
xml_uploads_total = Counter(
    "xml_uploads_total",
    "Total XML invoice uploads",
    ["status"],  # success, failed
)

xml_upload_size_bytes = Histogram(
    "xml_upload_size_bytes",
    "XML upload size in bytes",
    buckets=(1024, 10240, 102400, 1048576, 10485760),  # 1KB to 10MB
)

invoices_stored_total = Counter(
    "invoices_stored_total",
    "Invoices processed by the history store",
    ["outcome"],  # added, duplicate
)

# LLM metrics
xml_ingestion_duration_seconds = Histogram(
    "xml_ingestion_duration_seconds",
    "Extraction plus storage duration of one upload in seconds",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

analysis_requests_total = Counter(
    "analysis_requests_total",
    "Total invoice history analysis requests",
    ["status"],  # success, failed
)

# Mapping metrics
mapping_requests_total = Counter(
    "mapping_requests_total",
    "Total table mapping requests",
    ["status"],  # valid, invalid, failed
)

invoices_skipped_mapping_total = Counter(
    "invoices_skipped_mapping_total",
    "Invoices left out of mapped tables because they failed to map",
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
