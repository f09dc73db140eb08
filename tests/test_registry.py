"""Recurring job definitions: scheduling helpers, registration and job bodies."""

from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from matchday.config import Settings
from matchday.jobs import tracking
from matchday.jobs.registry import JobRegistry, in_peak_hours, next_weekend
from matchday.jobs.scheduler import JobScheduler
from matchday.models import EntityType, Follow, JobRun, Match, MatchEvent, utc_now


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def _pipeline():
    pipeline = MagicMock()
    pipeline.ingest_daily_fixtures = AsyncMock(return_value=MagicMock(to_dict=lambda: {"created": 1}))
    pipeline.ingest_live_fixtures = AsyncMock(return_value=MagicMock(to_dict=lambda: {"updated": 2}))
    pipeline.ingest_match_events = AsyncMock(return_value=MagicMock(to_dict=lambda: {"events_created": 3}))
    pipeline.get_ingestion_metrics = MagicMock(return_value={})
    return pipeline


@pytest.fixture
def registry(session_factory, engine, client):
    return JobRegistry(
        scheduler=JobScheduler(session_factory=session_factory),
        settings=_settings(),
        pipeline=_pipeline(),
        client=client,
        session_factory=session_factory,
        engine=engine,
    )


class TestHelpers:
    @pytest.mark.parametrize("hour,start,end,expected", [
        (12, 12, 23, True),
        (23, 12, 23, True),
        (11, 12, 23, False),
        (2, 12, 23, False),
        (23, 22, 2, True),
        (1, 22, 2, True),
        (12, 22, 2, False),
    ])
    def test_in_peak_hours(self, hour, start, end, expected):
        """Peak window should be inclusive and may wrap past midnight."""
        assert in_peak_hours(hour, start, end) is expected

    @pytest.mark.parametrize("today", [
        date(2025, 8, 4),   # Monday
        date(2025, 8, 8),   # Friday
        date(2025, 8, 9),   # Saturday
        date(2025, 8, 10),  # Sunday
    ])
    def test_next_weekend(self, today):
        """Weekdays should target the coming weekend, weekends the current one."""
        assert next_weekend(today) == (date(2025, 8, 9), date(2025, 8, 10))


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_all(self, registry):
        """All nine jobs should register with their schedules and defaults."""
        names = registry.register_all()

        assert len(names) == 9
        assert "live-fixtures-polling" in names
        status = {job["name"]: job for job in registry.scheduler.get_job_status()}
        assert status["match-events-ingestion"]["schedule"] == "*/30 * * * * *"
        assert status["database-optimization"]["enabled"] is False
        assert status["stadium-guide-enrichment"]["enabled"] is False
        assert status["daily-fixtures-ingestion"]["enabled"] is True

    @pytest.mark.asyncio
    async def test_guide_job_enabled_with_service(self, registry):
        """Guide enrichment should be enabled once a guide service is wired."""
        registry.guide_service = MagicMock()
        registry.register_all()
        assert registry.scheduler.get_job_status("stadium-guide-enrichment")["enabled"] is True


class TestIngestionJobs:
    @pytest.mark.asyncio
    async def test_daily_fixtures_covers_today_and_tomorrow(self, registry):
        """Daily ingestion should cover today and tomorrow."""
        with patch("matchday.jobs.registry.utc_now", return_value=datetime(2025, 8, 9, 6, 0)):
            result = await registry.daily_fixtures()

        assert list(result) == ["2025-08-09", "2025-08-10"]
        days = [c.args[0] for c in registry.pipeline.ingest_daily_fixtures.call_args_list]
        assert days == [date(2025, 8, 9), date(2025, 8, 10)]

    @pytest.mark.asyncio
    async def test_live_poll_skipped_off_peak(self, registry):
        """Live polling should skip outside peak hours."""
        with patch("matchday.jobs.registry.utc_now", return_value=datetime(2025, 8, 9, 3, 0)):
            result = await registry.live_fixtures()

        assert result["skipped"] == "off_peak"
        registry.pipeline.ingest_live_fixtures.assert_not_called()

    @pytest.mark.asyncio
    async def test_live_poll_in_peak_hours(self, registry):
        """Live polling should run inside peak hours."""
        with patch("matchday.jobs.registry.utc_now", return_value=datetime(2025, 8, 9, 15, 0)):
            result = await registry.live_fixtures()

        assert result == {"updated": 2}

    @pytest.mark.asyncio
    async def test_weekend_prefetch(self, registry):
        """Friday prefetch should fetch Saturday and Sunday."""
        with patch("matchday.jobs.registry.utc_now", return_value=datetime(2025, 8, 8, 18, 0)):
            result = await registry.weekend_prefetch()

        assert list(result) == ["2025-08-09", "2025-08-10"]

    @pytest.mark.asyncio
    async def test_job_runs_through_the_scheduler(self, registry, session_factory):
        """Triggering a registered job should run its body and record the run."""
        registry.register_all()

        result = await registry.scheduler.trigger_job("match-events-ingestion")

        assert result["status"] == "ok"
        assert result["metrics"] == {"events_created": 3}
        runs = await tracking.get_recent_runs(session_factory, "match-events-ingestion")
        assert len(runs) == 1


class TestMaintenanceJobs:
    @pytest.mark.asyncio
    async def test_data_cleanup(self, registry, session_factory, premier_league, teams, users):
        """Cleanup should drop old finished-match events and old job runs only."""
        old = utc_now() - timedelta(days=60)
        async with session_factory() as session:
            session.add(Match(id="old", league_id=premier_league.id, season=2024, home_team_id="50",
                              away_team_id="33", start_time=old, status="FT"))
            session.add(Match(id="recent", league_id=premier_league.id, season=2025, home_team_id="40",
                              away_team_id="42", start_time=utc_now() - timedelta(days=2), status="FT"))
            session.add(Match(id="stale-live", league_id=premier_league.id, season=2024, home_team_id="40",
                              away_team_id="50", start_time=old, status="PST"))
            for match_id in ("old", "recent", "stale-live"):
                session.add(MatchEvent(match_id=match_id, timestamp=old, minute=10, type="GOAL",
                                       provider_event_id=f"{match_id}-10-GOAL-50"))
            session.add(JobRun(job_name="data-cleanup", status="ok", started_at=old))
            session.add(Follow(user_id="user-1", entity_type=EntityType.TEAM, entity_id="50",
                               is_active=False, updated_at=old))
            await session.commit()

        result = await registry.data_cleanup()

        assert result == {"events_deleted": 1, "job_runs_deleted": 1, "follows_deleted": 0}

    @pytest.mark.asyncio
    async def test_data_cleanup_with_follows(self, registry, session_factory, teams, users):
        """Cleanup should delegate inactive follows to the follows service."""
        registry.follows_service = MagicMock()
        registry.follows_service.cleanup_inactive_follows = AsyncMock(return_value=4)

        result = await registry.data_cleanup()

        assert result["follows_deleted"] == 4
        registry.follows_service.cleanup_inactive_follows.assert_awaited_once_with(30)

    @pytest.mark.asyncio
    async def test_database_optimization_on_sqlite(self, registry):
        """SQLite should get ANALYZE then VACUUM."""
        result = await registry.database_optimization()
        assert result == {"statements": ["ANALYZE", "VACUUM"]}

    @pytest.mark.asyncio
    async def test_health_monitoring(self, registry, client):
        """Health should report database, provider and pool state."""
        ok = await registry.health_monitoring()
        client.healthy = False
        degraded = await registry.health_monitoring()

        assert ok["database"] is True
        assert ok["provider"] is True
        assert ok["pool"] == {"type": "sqlite", "pooled": False}
        assert degraded["provider"] is False

    @pytest.mark.asyncio
    async def test_metrics_collection(self, registry):
        """Metrics snapshot should list operations and job state."""
        registry.register_all()
        registry.pipeline.get_ingestion_metrics.return_value = {
            "daily_fixtures": {"processed": 10, "created": 2, "updated": 1, "errors": 0, "duration_ms": 120},
        }

        result = await registry.metrics_collection()

        assert result["operations"] == ["daily_fixtures"]
        assert result["jobs_running"] == 0
        assert result["jobs_failing"] == []

    @pytest.mark.asyncio
    async def test_guide_enrichment_without_service(self, registry):
        """Guide enrichment without a service should skip."""
        assert await registry.stadium_guide_enrichment() == {"skipped": "no_guide_service"}
