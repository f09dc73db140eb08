"""
Sentry integration for error tracking.

Provides:
- Exception capture for scheduler jobs and event handlers
- SQLAlchemy query errors
- ERROR-level log records as events

PII is disabled and device tokens / API keys are scrubbed from extras.
"""

import logging
import re
from contextlib import contextmanager
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from matchday.config import Settings

logger = logging.getLogger(__name__)

_sentry_initialized = False

_SENSITIVE_KEY = re.compile(r"(?i)(token|api_key|key|secret|password|credentials)")


def scrub_sensitive_data(event: dict, hint: dict) -> Optional[dict]:
    """Redact secrets from extras and job contexts before sending."""
    try:
        for bucket in ("extra", "contexts"):
            data = event.get(bucket) or {}
            for key, value in list(data.items()):
                if _SENSITIVE_KEY.search(key):
                    data[key] = "[REDACTED]"
                elif isinstance(value, dict):
                    for inner_key in list(value.keys()):
                        if _SENSITIVE_KEY.search(inner_key):
                            value[inner_key] = "[REDACTED]"
    except Exception as e:
        logger.warning(f"Sentry scrubbing error (continuing): {e}")
    return event


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry SDK if SENTRY_DSN is configured.

    Returns True if Sentry was initialized, False otherwise.
    """
    global _sentry_initialized

    if _sentry_initialized:
        logger.debug("Sentry already initialized, skipping")
        return True

    if not settings.SENTRY_DSN:
        logger.info("Sentry not configured (SENTRY_DSN not set)")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        integrations=[
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,
        before_send=scrub_sensitive_data,
        ignore_errors=[KeyboardInterrupt, SystemExit],
    )

    _sentry_initialized = True
    logger.info(
        f"Sentry initialized: env={settings.SENTRY_ENVIRONMENT}, "
        f"traces_sample_rate={settings.SENTRY_TRACES_SAMPLE_RATE}"
    )
    return True


def is_sentry_enabled() -> bool:
    """Check if Sentry is initialized and active."""
    return _sentry_initialized


@contextmanager
def sentry_job_context(job_name: str, **extra_tags):
    """
    Tag everything inside the block with the job name and capture escaping exceptions.

    Usage:
        with sentry_job_context("live-fixtures-polling"):
            await pipeline.ingest_live_fixtures()

    The exception is re-raised after capture.
    """
    if not _sentry_initialized:
        yield
        return

    with sentry_sdk.new_scope() as scope:
        scope.set_tag("job_name", job_name)
        scope.set_context("job", {"job_name": job_name, **extra_tags})
        for key, value in extra_tags.items():
            if value is not None:
                scope.set_tag(key, str(value))
        try:
            yield scope
        except Exception as e:
            sentry_sdk.capture_exception(e)
            raise


def capture_exception(exception: Exception, **extra_context) -> None:
    """Capture an exception with optional extras (no-op when Sentry is off)."""
    if not _sentry_initialized:
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in extra_context.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)
