"""
Matchday service entry point.

Builds every component from Settings, seeds target leagues, wires event
handlers, registers the recurring jobs and runs until SIGINT/SIGTERM.

    python -m matchday.main
"""

import asyncio
import logging
import signal
from datetime import date
from typing import Optional, Union

from matchday.config import Settings, get_settings
from matchday.database import close_db, create_engine, create_session_factory, init_db
from matchday.errors import ConfigurationError
from matchday.etl.api_football import APIFootballClient
from matchday.etl.base import FootballDataClient
from matchday.etl.pipeline import IngestionConfig, IngestionPipeline
from matchday.events.bus import EventBus
from matchday.events.handlers import NotificationHandlers
from matchday.follows.service import FollowsService
from matchday.guides.enrichment import TripAdvisorClient
from matchday.guides.service import StadiumGuideService
from matchday.jobs.registry import JobRegistry
from matchday.jobs.scheduler import JobScheduler
from matchday.models import EntityType
from matchday.notifications.dispatcher import DispatchMetrics, NotificationDispatcher
from matchday.notifications.payloads import Notification
from matchday.notifications.providers import LoggingPushProvider, PushProvider
from matchday.telemetry import init_sentry

logger = logging.getLogger(__name__)


def build_push_provider(settings: Settings) -> PushProvider:
    if not settings.ENABLE_PUSH_NOTIFICATIONS:
        logger.info("[PUSH] Push notifications disabled, using logging provider")
        return LoggingPushProvider()
    if not settings.FIREBASE_CREDENTIALS_PATH:
        raise ConfigurationError("ENABLE_PUSH_NOTIFICATIONS is set but FIREBASE_CREDENTIALS_PATH is empty")

    from matchday.notifications.fcm import FCMPushProvider

    return FCMPushProvider(settings.FIREBASE_CREDENTIALS_PATH)


class Application:
    """Process-wide container; owns every component and its lifetime."""

    def __init__(
        self,
        settings: Settings,
        client: Optional[FootballDataClient] = None,
        push_provider: Optional[PushProvider] = None,
    ):
        self.settings = settings
        self.engine = create_engine(settings.DATABASE_URL)
        self.session_factory = create_session_factory(self.engine)

        self.client = client or APIFootballClient.from_settings(settings)
        self.event_bus = EventBus()
        self.enrichment_source = TripAdvisorClient(settings.TRIPADVISOR_API_KEY)
        self.guide_service = StadiumGuideService(self.session_factory, self.enrichment_source)

        self.dispatcher = NotificationDispatcher(
            self.session_factory,
            push_provider or build_push_provider(settings),
            batch_size=settings.NOTIFICATION_BATCH_SIZE,
        )
        self.follows = FollowsService(self.session_factory, self.dispatcher, limits=settings.follow_limits)
        self.handlers = NotificationHandlers(self.follows)

        self.pipeline = IngestionPipeline(
            self.client,
            self.session_factory,
            config=IngestionConfig.from_settings(settings),
            event_bus=self.event_bus,
            guide_service=self.guide_service,
        )
        self.scheduler = JobScheduler(
            self.session_factory,
            timezone_name=settings.SCHEDULER_TIMEZONE,
            shutdown_timeout=settings.JOB_SHUTDOWN_TIMEOUT_SECONDS,
        )
        self.registry = JobRegistry(
            self.scheduler,
            settings,
            self.pipeline,
            self.client,
            self.session_factory,
            engine=self.engine,
            follows_service=self.follows,
            guide_service=self.guide_service,
        )

    # ── Lifecycle ────────────────────────────────────────────────────────────
    async def setup(self) -> None:
        """Create tables, seed leagues and register jobs.

        Raises:
            ConfigurationError: no target leagues configured and none stored
        """
        await init_db(self.engine)

        league_ids = self.settings.target_league_ids
        if league_ids:
            await self.pipeline.seed_leagues(league_ids)
        if not await self.pipeline.get_target_leagues():
            raise ConfigurationError("No target leagues: set TARGET_LEAGUE_IDS")

        self.handlers.subscribe(self.event_bus)
        self.registry.register_all()

    async def start(self) -> None:
        await self.event_bus.start()
        self.scheduler.start()
        logger.info("Matchday started")

    async def shutdown(self) -> None:
        logger.info("Matchday shutting down")
        await self.scheduler.shutdown()
        await self.event_bus.stop()
        await self.client.close()
        await self.enrichment_source.close()
        await close_db(self.engine)
        logger.info("Matchday stopped")

    # ── Surface for thin controllers ─────────────────────────────────────────
    async def trigger_job(self, name: str) -> dict:
        return await self.scheduler.trigger_job(name)

    def get_job_status(self, name: Optional[str] = None):
        return self.scheduler.get_job_status(name)

    def get_ingestion_metrics(self) -> dict:
        return self.pipeline.get_ingestion_metrics()

    async def ingest_league_fixtures(self, league_id: Union[str, int], day: date) -> dict:
        metrics = await self.pipeline.ingest_league_fixtures(league_id, day)
        return metrics.to_dict()

    async def follow(self, user_id: str, entity_type: Union[EntityType, str], entity_id: str,
                     preferences: Optional[dict] = None):
        return await self.follows.follow_entity(user_id, entity_type, entity_id, preferences)

    async def unfollow(self, user_id: str, entity_type: Union[EntityType, str], entity_id: str) -> None:
        await self.follows.unfollow_entity(user_id, entity_type, entity_id)

    async def list_follows(self, user_id: str, entity_type=None, page: int = 1, per_page: int = 20):
        return await self.follows.get_user_follows(user_id, entity_type, page=page, per_page=per_page)

    async def register_device(self, user_id: str, token: str, platform: str, **device_info):
        return await self.dispatcher.register_device_token(user_id, token, platform, **device_info)

    async def unregister_device(self, token: str, user_id: Optional[str] = None) -> bool:
        return await self.dispatcher.unregister_device_token(token, user_id)

    async def send_test_notification(self, user_id: str) -> DispatchMetrics:
        return await self.dispatcher.send_test_notification(user_id)

    async def send_team_notification(self, team_id: str, notification: Notification) -> DispatchMetrics:
        return await self.dispatcher.send_to_team_followers(team_id, notification)

    async def send_venue_notification(self, venue_id: str) -> DispatchMetrics:
        return await self.dispatcher.send_stadium_guide_notification(venue_id)


async def run(settings: Settings) -> None:
    app = Application(settings)
    try:
        await app.setup()
    except Exception:
        await app.shutdown()
        raise
    await app.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        await app.shutdown()


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    init_sentry(settings)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
