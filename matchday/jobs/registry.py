"""
Recurring job definitions.

| Job                          | Schedule          | Body                                        |
|------------------------------|-------------------|---------------------------------------------|
| daily-fixtures-ingestion     | 0 6 * * *         | fixtures for today and tomorrow             |
| live-fixtures-polling        | */2 * * * *       | live fixtures (peak hours only)             |
| match-events-ingestion       | */30 * * * * *    | new events for live matches                 |
| weekend-fixtures-prefetch    | 0 18 * * 5        | fixtures for the coming Saturday and Sunday |
| data-cleanup                 | 0 3 * * *         | old events, job runs and inactive follows   |
| database-optimization        | 0 4 * * 0         | ANALYZE (+ VACUUM on SQLite)                |
| health-monitoring            | */5 * * * *       | database ping + provider health check       |
| metrics-collection           | 0 * * * *         | log ingestion metrics and job states        |
| stadium-guide-enrichment     | 0 5 * * 1         | refresh guides for every venue              |
"""

import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import delete, select, text
from sqlalchemy.ext.asyncio import AsyncEngine

from matchday.config import Settings
from matchday.database import SessionFactory, get_pool_status, get_session_with_retry, ping_db
from matchday.etl.base import FootballDataClient
from matchday.etl.pipeline import IngestionPipeline
from matchday.jobs import tracking
from matchday.jobs.scheduler import JobScheduler, JobSpec
from matchday.models import FINISHED_STATUSES, Match, MatchEvent, utc_now

logger = logging.getLogger(__name__)


def in_peak_hours(hour: int, start: int, end: int) -> bool:
    """Inclusive UTC hour window; start > end wraps past midnight."""
    if start <= end:
        return start <= hour <= end
    return hour >= start or hour <= end


def next_weekend(today: date) -> tuple[date, date]:
    """The coming Saturday and Sunday (this weekend's when today is Saturday or Sunday)."""
    if today.weekday() == 6:
        return today - timedelta(days=1), today
    saturday = today + timedelta(days=(5 - today.weekday()) % 7)
    return saturday, saturday + timedelta(days=1)


class JobRegistry:
    """Builds the recurring jobs and registers them on a JobScheduler."""

    def __init__(
        self,
        scheduler: JobScheduler,
        settings: Settings,
        pipeline: IngestionPipeline,
        client: FootballDataClient,
        session_factory: SessionFactory,
        engine: Optional[AsyncEngine] = None,
        follows_service=None,
        guide_service=None,
    ):
        self.scheduler = scheduler
        self.settings = settings
        self.pipeline = pipeline
        self.client = client
        self.session_factory = session_factory
        self.engine = engine
        self.follows_service = follows_service
        self.guide_service = guide_service

    def job_specs(self) -> list[JobSpec]:
        s = self.settings
        return [
            JobSpec("daily-fixtures-ingestion", "0 6 * * *", self.daily_fixtures,
                    s.ENABLE_DAILY_FIXTURES_JOB, "Daily fixtures (today + tomorrow)"),
            JobSpec("live-fixtures-polling", "*/2 * * * *", self.live_fixtures,
                    s.ENABLE_LIVE_FIXTURES_JOB, "Live fixtures polling"),
            JobSpec("match-events-ingestion", "*/30 * * * * *", self.match_events,
                    s.ENABLE_MATCH_EVENTS_JOB, "Match events for live matches"),
            JobSpec("weekend-fixtures-prefetch", "0 18 * * 5", self.weekend_prefetch,
                    s.ENABLE_WEEKEND_PREFETCH_JOB, "Weekend fixtures prefetch"),
            JobSpec("data-cleanup", "0 3 * * *", self.data_cleanup,
                    s.ENABLE_CLEANUP_JOB, "Retention cleanup"),
            JobSpec("database-optimization", "0 4 * * 0", self.database_optimization,
                    s.ENABLE_DB_OPTIMIZATION_JOB, "Database ANALYZE/VACUUM"),
            JobSpec("health-monitoring", "*/5 * * * *", self.health_monitoring,
                    s.ENABLE_HEALTH_JOB, "Database and provider health"),
            JobSpec("metrics-collection", "0 * * * *", self.metrics_collection,
                    s.ENABLE_METRICS_JOB, "Ingestion and job metrics snapshot"),
            JobSpec("stadium-guide-enrichment", "0 5 * * 1", self.stadium_guide_enrichment,
                    s.ENABLE_GUIDE_ENRICHMENT_JOB and self.guide_service is not None,
                    "Stadium guide enrichment"),
        ]

    def register_all(self) -> list[str]:
        names = []
        for spec in self.job_specs():
            self.scheduler.register_job(spec)
            names.append(spec.name)
        enabled = [s["name"] for s in self.scheduler.get_job_status() if s["enabled"]]
        logger.info(f"[SCHEDULER] {len(enabled)}/{len(names)} jobs enabled: {', '.join(enabled)}")
        return names

    # ── Ingestion ────────────────────────────────────────────────────────────
    async def daily_fixtures(self) -> dict:
        today = utc_now().date()
        results = {}
        for day in (today, today + timedelta(days=1)):
            metrics = await self.pipeline.ingest_daily_fixtures(day)
            results[day.isoformat()] = metrics.to_dict()
        return results

    async def live_fixtures(self) -> dict:
        s = self.settings
        hour = utc_now().hour
        if s.RESPECT_PEAK_HOURS and not in_peak_hours(hour, s.PEAK_HOURS_START, s.PEAK_HOURS_END):
            logger.debug(f"[LIVE] Outside peak hours ({hour}h UTC), skipping live poll")
            return {"skipped": "off_peak", "hour": hour}
        metrics = await self.pipeline.ingest_live_fixtures()
        return metrics.to_dict()

    async def match_events(self) -> dict:
        metrics = await self.pipeline.ingest_match_events()
        return metrics.to_dict()

    async def weekend_prefetch(self) -> dict:
        saturday, sunday = next_weekend(utc_now().date())
        results = {}
        for day in (saturday, sunday):
            metrics = await self.pipeline.ingest_daily_fixtures(day)
            results[day.isoformat()] = metrics.to_dict()
        return results

    # ── Maintenance ──────────────────────────────────────────────────────────
    async def data_cleanup(self) -> dict:
        s = self.settings
        cutoff = utc_now() - timedelta(days=s.EVENT_RETENTION_DAYS)

        finished = select(Match.id).where(
            Match.status.in_(FINISHED_STATUSES),
            Match.start_time < cutoff,
        )
        async with get_session_with_retry(self.session_factory, max_retries=2, retry_delay=0.5) as session:
            result = await session.execute(delete(MatchEvent).where(MatchEvent.match_id.in_(finished)))
            await session.commit()
        events_deleted = result.rowcount or 0

        runs_deleted = await tracking.cleanup_old_runs(self.session_factory, s.JOB_RUN_RETENTION_DAYS)

        follows_deleted = 0
        if self.follows_service is not None:
            follows_deleted = await self.follows_service.cleanup_inactive_follows(s.INACTIVE_FOLLOW_RETENTION_DAYS)

        logger.info(
            f"[CLEANUP] events={events_deleted} job_runs={runs_deleted} inactive_follows={follows_deleted}"
        )
        return {
            "events_deleted": events_deleted,
            "job_runs_deleted": runs_deleted,
            "follows_deleted": follows_deleted,
        }

    async def database_optimization(self) -> dict:
        if self.engine is None:
            return {"skipped": "no_engine"}

        statements = ["ANALYZE"]
        if self.engine.dialect.name == "sqlite":
            statements.append("VACUUM")

        async with self.engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            for statement in statements:
                await conn.execute(text(statement))

        logger.info(f"[CLEANUP] Database optimization done: {', '.join(statements)}")
        return {"statements": statements}

    async def health_monitoring(self) -> dict:
        db_ok = await ping_db(self.session_factory)
        try:
            provider_ok = await self.client.health_check()
        except Exception as e:
            logger.warning(f"[HEALTH] Provider health check raised: {e}")
            provider_ok = False

        pool = get_pool_status(self.engine) if self.engine is not None else {}
        status = {"database": db_ok, "provider": provider_ok, "pool": pool}
        if db_ok and provider_ok:
            logger.info(f"[HEALTH] ok (pool={pool})")
        else:
            logger.warning(f"[HEALTH] degraded: database={db_ok} provider={provider_ok}")
        return status

    async def metrics_collection(self) -> dict:
        ingestion = self.pipeline.get_ingestion_metrics()
        jobs = self.scheduler.get_job_status()

        for operation, metrics in ingestion.items():
            logger.info(
                f"[METRICS] {operation}: processed={metrics['processed']} created={metrics['created']} "
                f"updated={metrics['updated']} errors={metrics['errors']} ({metrics['duration_ms']}ms)"
            )

        failing = [job["name"] for job in jobs if job["last_status"] == "error"]
        running = [job["name"] for job in jobs if job["running"]]
        last_daily = await tracking.get_last_success_at(self.session_factory, "daily-fixtures-ingestion")
        logger.info(
            f"[METRICS] jobs={len(jobs)} running={running} failing={failing} "
            f"last_daily_success={last_daily.isoformat() if last_daily else None}"
        )
        return {
            "operations": sorted(ingestion),
            "jobs_running": len(running),
            "jobs_failing": failing,
        }

    async def stadium_guide_enrichment(self) -> dict:
        if self.guide_service is None:
            return {"skipped": "no_guide_service"}
        result = await self.guide_service.enrich_all_guides()
        return result.to_dict()
