"""Job run tracking.

Every scheduled or manual execution leaves a JobRun row so job health
survives restarts (Prometheus counters reset on deploy).

Usage:
    from matchday.jobs.tracking import record_job_run

    started_at = utc_now()
    ...
    await record_job_run(session_factory, "data-cleanup", "ok", started_at, metrics={"events": 12})
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select

from matchday.database import SessionFactory
from matchday.models import JobRun, utc_now

logger = logging.getLogger(__name__)


async def record_job_run(
    session_factory: SessionFactory,
    job_name: str,
    status: str,
    started_at: datetime,
    error: Optional[str] = None,
    metrics: Optional[dict] = None,
) -> None:
    """
    Record a job execution in the database.

    Args:
        session_factory: Session factory bound to the store.
        job_name: Registered job name (live-fixtures-polling, data-cleanup, ...).
        status: Execution status (ok, error).
        started_at: When the job started (naive UTC).
        error: Error message if failed.
        metrics: Optional job-specific metrics dict.
    """
    finished_at = utc_now()
    duration_ms = int((finished_at - started_at).total_seconds() * 1000)

    async with session_factory() as session:
        session.add(JobRun(
            job_name=job_name,
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=duration_ms,
            error_message=error,
            metrics=metrics,
        ))
        await session.commit()

    logger.debug(f"[JOB_TRACKING] Recorded {job_name} run: {status} in {duration_ms}ms")


async def get_last_success_at(session_factory: SessionFactory, job_name: str) -> Optional[datetime]:
    """Finish time of the last successful run, or None if the job never succeeded."""
    async with session_factory() as session:
        result = await session.execute(
            select(JobRun.finished_at)
            .where(JobRun.job_name == job_name)
            .where(JobRun.status == "ok")
            .order_by(JobRun.finished_at.desc())
            .limit(1)
        )
        row = result.first()
    return row[0] if row else None


async def get_recent_runs(session_factory: SessionFactory, job_name: str, limit: int = 10) -> list[JobRun]:
    async with session_factory() as session:
        result = await session.execute(
            select(JobRun)
            .where(JobRun.job_name == job_name)
            .order_by(JobRun.started_at.desc(), JobRun.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


async def cleanup_old_runs(session_factory: SessionFactory, days_to_keep: int = 14) -> int:
    """
    Delete job runs older than specified days.

    Returns:
        Number of rows deleted.
    """
    cutoff = utc_now() - timedelta(days=days_to_keep)
    async with session_factory() as session:
        result = await session.execute(delete(JobRun).where(JobRun.started_at < cutoff))
        await session.commit()
    deleted = result.rowcount or 0
    if deleted > 0:
        logger.info(f"[JOB_TRACKING] Cleaned up {deleted} old job runs")
    return deleted
