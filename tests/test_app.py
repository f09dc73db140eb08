"""Application wiring: setup, push provider selection and the goal -> push path."""

import pytest
import pytest_asyncio

from factories import FakeFootballClient, FakePushProvider, make_event, make_fixture
from matchday.config import Settings
from matchday.errors import ConfigurationError
from matchday.main import Application, build_push_provider
from matchday.models import User
from matchday.notifications.providers import LoggingPushProvider


def _settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite:///:memory:",
        "TARGET_LEAGUE_IDS": "39",
        "INGESTION_RETRY_DELAY_SECONDS": 0,
        "INGESTION_LEAGUE_DELAY_SECONDS": 0,
        "INGESTION_MATCH_DELAY_SECONDS": 0,
        "TRIPADVISOR_API_KEY": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest_asyncio.fixture
async def app():
    application = Application(_settings(), client=FakeFootballClient(), push_provider=FakePushProvider())
    await application.setup()
    yield application
    await application.shutdown()


class TestPushProviderSelection:
    def test_disabled_uses_logging_provider(self):
        """Push disabled should fall back to the logging provider."""
        assert isinstance(build_push_provider(_settings()), LoggingPushProvider)

    def test_enabled_without_credentials(self):
        """Push enabled without a credentials path should fail setup."""
        with pytest.raises(ConfigurationError):
            build_push_provider(_settings(ENABLE_PUSH_NOTIFICATIONS=True, FIREBASE_CREDENTIALS_PATH=""))


class TestSetup:
    @pytest.mark.asyncio
    async def test_seeds_leagues_and_registers_jobs(self, app):
        """Setup should seed target leagues and register all nine jobs."""
        leagues = await app.pipeline.get_target_leagues()

        assert [league.external_id for league in leagues] == [39]
        assert len(app.get_job_status()) == 9

    @pytest.mark.asyncio
    async def test_no_target_leagues_is_fatal(self):
        """No configured or stored leagues should raise at setup."""
        application = Application(
            _settings(TARGET_LEAGUE_IDS=""), client=FakeFootballClient(), push_provider=FakePushProvider()
        )
        with pytest.raises(ConfigurationError):
            await application.setup()
        await application.shutdown()

    @pytest.mark.asyncio
    async def test_manual_trigger(self, app):
        """Manual trigger should run the job body and return its metrics."""
        result = await app.trigger_job("health-monitoring")

        assert result["status"] == "ok"
        assert result["metrics"]["database"] is True


class TestGoalNotification:
    @pytest.mark.asyncio
    async def test_live_goal_reaches_team_follower(self, app):
        """A live goal should push only to followers who want goals."""
        async with app.session_factory() as session:
            session.add(User(id="user-1", email="ana@example.com"))
            session.add(User(id="user-2", email="ben@example.com"))
            await session.commit()

        app.client.live = [make_fixture(status="1H", elapsed=23, home_goals=1, away_goals=0)]
        await app.pipeline.ingest_live_fixtures()
        await app.event_bus.drain()

        await app.follow("user-1", "team", "50")
        await app.follow("user-2", "team", "33", {"goals": False})
        await app.register_device("user-1", "tok-1", "android")
        await app.register_device("user-2", "tok-2", "ios")

        app.client.events[1035037] = [make_event(23), make_event(23)]
        metrics = await app.pipeline.ingest_match_events()
        await app.event_bus.drain()

        provider = app.dispatcher.provider
        assert metrics.events_created == 1
        assert metrics.events_skipped == 1
        assert provider.sent_tokens == ["tok-1"]
        _, payload = provider.calls[0]
        assert payload.title == "GOAL!"
        assert payload.data["match_id"] == "1035037"
