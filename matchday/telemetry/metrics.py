"""
Prometheus metrics for ingestion, scheduling and push delivery.

Design principles:
- Low cardinality (controlled labels)
- Best-effort (recording never blocks or fails the main flow)

=============================================================================
CARDINALITY CONTROL
=============================================================================

ALLOWED LABELS (bounded sets):
- provider:     "api_football", "tripadvisor"
- endpoint:     "fixtures", "fixtures/events", "fixtures/statistics", ...
- status_code:  "200", "404", "429", "500", "0"
- error_code:   "timeout", "rate_limit", "api_error", "http_5xx", ...
- operation:    "daily", "live", "league"
- outcome:      "created", "updated", "unchanged", "skipped", "error"
- job:          registered job names (fixed at startup)
- platform:     "ios", "android", "web"

FORBIDDEN AS LABELS: match/fixture/team ids, user ids, device tokens,
error messages, dates. Use logs for those.
=============================================================================
"""

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# =============================================================================
# PROVIDER METRICS
# =============================================================================

provider_requests_total = Counter(
    "matchday_provider_requests_total",
    "Total requests to external data providers",
    ["provider", "endpoint", "status_code"],
)

provider_errors_total = Counter(
    "matchday_provider_errors_total",
    "Total errors from external data providers",
    ["provider", "endpoint", "error_code"],
)

provider_latency_ms = Histogram(
    "matchday_provider_latency_ms",
    "Provider request latency in milliseconds",
    ["provider", "endpoint"],
    buckets=[10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

# =============================================================================
# INGESTION METRICS
# =============================================================================

ingestion_fixtures_total = Counter(
    "matchday_ingestion_fixtures_total",
    "Fixtures processed by the ingestion pipeline",
    ["operation", "outcome"],
)

ingestion_events_created_total = Counter(
    "matchday_ingestion_events_created_total",
    "Match events inserted (after dedup)",
)

ingestion_run_duration_seconds = Histogram(
    "matchday_ingestion_run_duration_seconds",
    "Duration of ingestion runs",
    ["operation"],
    buckets=[0.5, 1, 2.5, 5, 10, 30, 60, 120, 300, 600],
)

# =============================================================================
# SCHEDULER METRICS
# =============================================================================

job_runs_total = Counter(
    "matchday_job_runs_total",
    "Scheduled job executions",
    ["job", "status"],  # status: ok/error
)

job_skipped_total = Counter(
    "matchday_job_skipped_total",
    "Job fires dropped before running",
    ["job", "reason"],  # reason: running/disabled/shutting_down
)

job_duration_seconds = Histogram(
    "matchday_job_duration_seconds",
    "Scheduled job duration",
    ["job"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120, 300, 900],
)

# =============================================================================
# PUSH METRICS
# =============================================================================

push_sends_total = Counter(
    "matchday_push_sends_total",
    "Per-token push delivery results",
    ["platform", "outcome"],  # outcome: delivered/failed
)

push_tokens_deactivated_total = Counter(
    "matchday_push_tokens_deactivated_total",
    "Device tokens deactivated after a permanent provider error",
    ["platform"],
)


def record_provider_request(
    provider: str,
    endpoint: str,
    status_code: int,
    latency_ms: float,
) -> None:
    """Record a provider request count and latency."""
    try:
        provider_requests_total.labels(
            provider=provider,
            endpoint=endpoint,
            status_code=str(status_code),
        ).inc()
        provider_latency_ms.labels(provider=provider, endpoint=endpoint).observe(latency_ms)
    except Exception as e:
        logger.warning(f"Failed to record provider request metric: {e}")


def record_provider_error(provider: str, endpoint: str, error_code: str) -> None:
    try:
        provider_errors_total.labels(
            provider=provider,
            endpoint=endpoint,
            error_code=error_code,
        ).inc()
    except Exception as e:
        logger.warning(f"Failed to record provider error metric: {e}")


def record_ingestion_outcome(operation: str, outcome: str, count: int = 1) -> None:
    try:
        if count > 0:
            ingestion_fixtures_total.labels(operation=operation, outcome=outcome).inc(count)
    except Exception as e:
        logger.warning(f"Failed to record ingestion metric: {e}")


def record_events_created(count: int) -> None:
    try:
        if count > 0:
            ingestion_events_created_total.inc(count)
    except Exception as e:
        logger.warning(f"Failed to record events metric: {e}")


def record_ingestion_duration(operation: str, seconds: float) -> None:
    try:
        ingestion_run_duration_seconds.labels(operation=operation).observe(seconds)
    except Exception as e:
        logger.warning(f"Failed to record ingestion duration: {e}")


def record_job_run(job: str, status: str, duration_seconds: float) -> None:
    """Record a finished job execution."""
    try:
        job_runs_total.labels(job=job, status=status).inc()
        job_duration_seconds.labels(job=job).observe(duration_seconds)
    except Exception as e:
        logger.warning(f"Failed to record job metric: {e}")


def record_job_skipped(job: str, reason: str) -> None:
    try:
        job_skipped_total.labels(job=job, reason=reason).inc()
    except Exception as e:
        logger.warning(f"Failed to record job skip metric: {e}")


def record_push_results(platform: str, delivered: int, failed: int) -> None:
    try:
        if delivered:
            push_sends_total.labels(platform=platform, outcome="delivered").inc(delivered)
        if failed:
            push_sends_total.labels(platform=platform, outcome="failed").inc(failed)
    except Exception as e:
        logger.warning(f"Failed to record push metric: {e}")


def record_token_deactivated(platform: str, count: int = 1) -> None:
    try:
        if count > 0:
            push_tokens_deactivated_total.labels(platform=platform).inc(count)
    except Exception as e:
        logger.warning(f"Failed to record token deactivation metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """
    Generate Prometheus metrics text output.

    Returns:
        Tuple of (content, content_type)
    """
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST
