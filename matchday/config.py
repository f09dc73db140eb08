"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./matchday.db"

    # API-Football (api-sports direct, or RapidAPI when the host says so)
    RAPIDAPI_KEY: str = ""
    RAPIDAPI_HOST: str = "v3.football.api-sports.io"
    API_TIMEOUT_SECONDS: float = 30.0
    API_MAX_RETRIES: int = 3
    API_RETRY_DELAY_SECONDS: float = 5.0

    # Ingestion
    AF_SEASON: Optional[int] = None  # Overrides the season stored on each league
    TARGET_LEAGUE_IDS: str = "39,140,135,78,61"  # Seeded into the leagues table at startup
    INGESTION_BATCH_SIZE: int = 50
    INGESTION_MAX_RETRIES: int = 3
    INGESTION_RETRY_DELAY_SECONDS: float = 3.0  # Doubles on each attempt
    INGESTION_LEAGUE_DELAY_SECONDS: float = 1.0  # Between leagues (provider rate limit)
    INGESTION_MATCH_DELAY_SECONDS: float = 0.5  # Between per-match event fetches

    # Scheduler
    JOB_SHUTDOWN_TIMEOUT_SECONDS: float = 30.0
    SCHEDULER_TIMEZONE: str = "UTC"
    ENABLE_DAILY_FIXTURES_JOB: bool = True
    ENABLE_LIVE_FIXTURES_JOB: bool = True
    ENABLE_MATCH_EVENTS_JOB: bool = True
    ENABLE_WEEKEND_PREFETCH_JOB: bool = True
    ENABLE_CLEANUP_JOB: bool = True
    ENABLE_DB_OPTIMIZATION_JOB: bool = False
    ENABLE_HEALTH_JOB: bool = True
    ENABLE_METRICS_JOB: bool = True
    ENABLE_GUIDE_ENRICHMENT_JOB: bool = True

    # Live polling only inside this UTC window (inclusive)
    RESPECT_PEAK_HOURS: bool = True
    PEAK_HOURS_START: int = 12
    PEAK_HOURS_END: int = 23

    # Retention
    EVENT_RETENTION_DAYS: int = 30
    JOB_RUN_RETENTION_DAYS: int = 14
    INACTIVE_FOLLOW_RETENTION_DAYS: int = 30

    # Follow caps per entity type
    FOLLOW_LIMIT_TEAM: int = 50
    FOLLOW_LIMIT_LEAGUE: int = 20
    FOLLOW_LIMIT_MATCH: int = 100

    # Push notifications (Firebase Cloud Messaging)
    ENABLE_PUSH_NOTIFICATIONS: bool = False
    FIREBASE_CREDENTIALS_PATH: str = ""
    NOTIFICATION_BATCH_SIZE: int = 500

    # Stadium guides
    TRIPADVISOR_API_KEY: str = ""  # Empty = placeholder guides only

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.05

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def target_league_ids(self) -> list[int]:
        """Parse TARGET_LEAGUE_IDS into a list of provider league ids."""
        ids = []
        for part in self.TARGET_LEAGUE_IDS.split(","):
            part = part.strip()
            if part:
                ids.append(int(part))
        return ids

    @property
    def follow_limits(self) -> dict[str, int]:
        return {
            "team": self.FOLLOW_LIMIT_TEAM,
            "league": self.FOLLOW_LIMIT_LEAGUE,
            "match": self.FOLLOW_LIMIT_MATCH,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
