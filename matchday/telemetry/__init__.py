"""
Telemetry: Prometheus metrics and Sentry error tracking.

Recording helpers are best-effort and never raise.
"""

from matchday.telemetry.metrics import (
    get_metrics_text,
    record_events_created,
    record_ingestion_duration,
    record_ingestion_outcome,
    record_job_run,
    record_job_skipped,
    record_provider_error,
    record_provider_request,
    record_push_results,
    record_token_deactivated,
)
from matchday.telemetry.sentry import (
    capture_exception,
    init_sentry,
    is_sentry_enabled,
    sentry_job_context,
)

__all__ = [
    "get_metrics_text",
    "record_events_created",
    "record_ingestion_duration",
    "record_ingestion_outcome",
    "record_job_run",
    "record_job_skipped",
    "record_provider_error",
    "record_provider_request",
    "record_push_results",
    "record_token_deactivated",
    "capture_exception",
    "init_sentry",
    "is_sentry_enabled",
    "sentry_job_context",
]
