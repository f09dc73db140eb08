"""SQLModel database models."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    """Naive UTC timestamp (stored without tzinfo on every backend)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return uuid.uuid4().hex


# Provider status codes
LIVE_STATUSES = ("1H", "2H", "HT", "ET", "LIVE")
TERMINAL_STATUSES = ("FT", "AET", "PEN", "CANC", "ABD", "AWD", "WO")
FINISHED_STATUSES = ("FT", "AET", "PEN")


class EntityType(str, Enum):
    """Followable entity kinds."""

    TEAM = "team"
    LEAGUE = "league"
    MATCH = "match"


class FollowStatus(str, Enum):
    ACTIVE = "active"
    MUTED = "muted"
    PAUSED = "paused"


class DevicePlatform(str, Enum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


class League(SQLModel, table=True):
    """Competition tracked by the ingestion jobs."""

    __tablename__ = "leagues"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=64)
    external_id: int = Field(unique=True, index=True, description="API-Football league ID")
    name: str = Field(max_length=255)
    country: Optional[str] = Field(default=None, max_length=100)
    season: int = Field(description="Season year used when fetching fixtures")
    logo_url: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Team(SQLModel, table=True):
    """Club or national team."""

    __tablename__ = "teams"

    id: str = Field(primary_key=True, max_length=64, description="Provider team ID as string")
    external_id: Optional[int] = Field(default=None, unique=True, index=True, description="API-Football team ID")
    name: str = Field(max_length=255)
    short_name: str = Field(max_length=3, description="Derived 3-letter code")
    logo_url: Optional[str] = Field(default=None, max_length=500)
    league_id: Optional[str] = Field(default=None, foreign_key="leagues.id", index=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Venue(SQLModel, table=True):
    """Stadium, created lazily the first time a fixture references it."""

    __tablename__ = "venues"

    id: str = Field(primary_key=True, max_length=64, description="Provider venue ID as string")
    external_id: Optional[int] = Field(default=None, unique=True, index=True, description="API-Football venue ID")
    name: str = Field(max_length=255)
    city: Optional[str] = Field(default=None, max_length=100)
    capacity: Optional[int] = Field(default=None)
    provider_ids: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Match(SQLModel, table=True):
    """Match model for storing fixture data."""

    __tablename__ = "matches"

    id: str = Field(primary_key=True, max_length=64, description="Provider fixture ID as string")
    external_id: Optional[int] = Field(default=None, unique=True, index=True, description="API-Football fixture ID")
    league_id: str = Field(foreign_key="leagues.id", index=True)
    season: int = Field(description="Season year")
    round: Optional[str] = Field(default=None, max_length=100)
    home_team_id: str = Field(foreign_key="teams.id", index=True)
    away_team_id: str = Field(foreign_key="teams.id", index=True)
    venue_id: Optional[str] = Field(default=None, foreign_key="venues.id", index=True)
    start_time: datetime = Field(index=True, description="Scheduled kickoff (UTC)")
    status: str = Field(max_length=10, default="NS", index=True, description="NS, 1H, FT, etc.")
    provider_ids: dict = Field(default_factory=dict, sa_column=Column(JSON))
    finished_at: Optional[datetime] = Field(default=None, description="When FT/AET/PEN was first seen")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class MatchState(SQLModel, table=True):
    """Latest live snapshot of a match (one row per match, no history)."""

    __tablename__ = "match_states"

    match_id: str = Field(primary_key=True, foreign_key="matches.id", max_length=64)
    minute: Optional[int] = Field(default=None)
    phase: str = Field(max_length=32)
    home_score: int = Field(default=0)
    away_score: int = Field(default=0)
    last_event_id: Optional[str] = Field(default=None, max_length=255)
    updated_at: datetime = Field(default_factory=utc_now)


class MatchEvent(SQLModel, table=True):
    """Append-only match event log (goals, cards, substitutions...)."""

    __tablename__ = "match_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: str = Field(foreign_key="matches.id", index=True, max_length=64)
    timestamp: datetime = Field(description="Kickoff + elapsed (+ stoppage) minutes")
    minute: Optional[int] = Field(default=None)
    extra_minute: Optional[int] = Field(default=None)
    type: str = Field(max_length=32, description="GOAL, CARD, SUBST, VAR...")
    team_id: Optional[str] = Field(default=None, max_length=64)
    player_id: Optional[str] = Field(default=None, max_length=64)
    player_name: Optional[str] = Field(default=None, max_length=255)
    detail_json: dict = Field(default_factory=dict, sa_column=Column(JSON))
    provider_event_id: str = Field(unique=True, index=True, max_length=255)
    created_at: datetime = Field(default_factory=utc_now)


class User(SQLModel, table=True):
    """Account that can follow entities and own device tokens."""

    __tablename__ = "users"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=64)
    email: Optional[str] = Field(default=None, unique=True, max_length=255)
    display_name: Optional[str] = Field(default=None, max_length=255)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)


class Follow(SQLModel, table=True):
    """User -> team/league/match follow with notification preferences."""

    __tablename__ = "follows"
    __table_args__ = (
        UniqueConstraint("user_id", "entity_type", "entity_id", name="uq_follows_user_entity"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True, max_length=64)
    entity_type: EntityType = Field(index=True)
    entity_id: str = Field(index=True, max_length=64)
    notification_preferences: dict = Field(default_factory=dict, sa_column=Column(JSON))
    is_active: bool = Field(default=True)
    status: FollowStatus = Field(default=FollowStatus.ACTIVE)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class DeviceToken(SQLModel, table=True):
    """Push token registered by a user's device."""

    __tablename__ = "device_tokens"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True, max_length=64)
    token: str = Field(unique=True, index=True, max_length=512)
    platform: DevicePlatform
    device_model: Optional[str] = Field(default=None, max_length=255)
    app_version: Optional[str] = Field(default=None, max_length=50)
    is_active: bool = Field(default=True, index=True)
    last_used_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class StadiumGuide(SQLModel, table=True):
    """Enrichment-derived venue guide (regenerable)."""

    __tablename__ = "stadium_guides"

    id: Optional[int] = Field(default=None, primary_key=True)
    venue_id: str = Field(foreign_key="venues.id", unique=True, index=True, max_length=64)
    title: str = Field(max_length=255)
    overview: Optional[str] = Field(default=None)
    sections: list = Field(default_factory=list, sa_column=Column(JSON))
    facilities: list = Field(default_factory=list, sa_column=Column(JSON))
    attractions: list = Field(default_factory=list, sa_column=Column(JSON))
    restaurants: list = Field(default_factory=list, sa_column=Column(JSON))
    image_urls: list = Field(default_factory=list, sa_column=Column(JSON))
    source: str = Field(default="placeholder", max_length=50, description="'tripadvisor' or 'placeholder'")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class JobRun(SQLModel, table=True):
    """One row per scheduled job execution."""

    __tablename__ = "job_runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    job_name: str = Field(max_length=100, index=True)
    status: str = Field(max_length=20, description="ok, error, skipped")
    started_at: datetime = Field(index=True)
    finished_at: Optional[datetime] = Field(default=None)
    duration_ms: Optional[int] = Field(default=None)
    error_message: Optional[str] = Field(default=None)
    metrics: Optional[dict] = Field(default=None, sa_column=Column(JSON))
