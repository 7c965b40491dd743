"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
tryon_requests_total = Counter(
    "tryon_requests_total",
    "Total try-on requests by outcome",
    ["outcome"],  # succeeded, no_image, failed, timed_out, cleared
)

upstream_requests_total = Counter(
    "upstream_requests_total",
    "Total upstream generation attempts",
    ["status"],  # success, no_image, error
)

credential_quarantined_total = Counter(
    "credential_quarantined_total",
    "Credentials deactivated after reaching the error ceiling",
)

credential_pool_exhausted_total = Counter(
    "credential_pool_exhausted_total",
    "Selections that found no eligible credential and reset the pool",
)

usage_warnings_total = Counter(
    "usage_warnings_total",
    "Advisory warnings issued for repeated identical submissions",
)

# Histograms
upstream_request_duration_seconds = Histogram(
    "upstream_request_duration_seconds",
    "Upstream generation request duration",
    buckets=[1, 5, 10, 20, 30, 60, 120],
)

tryon_request_duration_seconds = Histogram(
    "tryon_request_duration_seconds",
    "Time from submission to resolution",
    buckets=[1, 5, 10, 30, 60, 120],
)

# Gauges
queue_length = Gauge(
    "tryon_queue_length",
    "Requests waiting for admission",
)

active_generations = Gauge(
    "tryon_active_generations",
    "Admitted requests not yet resolved",
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
