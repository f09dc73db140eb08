"""Provider-shaped DTOs and the football data client interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional


def parse_provider_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 provider timestamp into naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _as_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class LeagueInfo:
    """League block of a provider fixture or league entry."""

    id: int
    name: str
    country: Optional[str] = None
    logo: Optional[str] = None
    season: Optional[int] = None
    round: Optional[str] = None

    @classmethod
    def from_api(cls, raw: dict) -> "LeagueInfo":
        return cls(
            id=int(raw.get("id") or 0),
            name=raw.get("name") or "",
            country=raw.get("country"),
            logo=raw.get("logo"),
            season=_as_int(raw.get("season")),
            round=raw.get("round"),
        )


@dataclass
class TeamInfo:
    id: int
    name: str
    logo: Optional[str] = None

    @classmethod
    def from_api(cls, raw: dict) -> "TeamInfo":
        return cls(id=int(raw.get("id") or 0), name=raw.get("name") or "", logo=raw.get("logo"))


@dataclass
class VenueInfo:
    id: Optional[int] = None
    name: Optional[str] = None
    city: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Optional[dict]) -> "VenueInfo":
        raw = raw or {}
        return cls(id=_as_int(raw.get("id")), name=raw.get("name"), city=raw.get("city"))


@dataclass
class Fixture:
    """One element of the provider's /fixtures response."""

    id: int
    date: datetime
    status_short: str
    league: LeagueInfo
    home: TeamInfo
    away: TeamInfo
    status_long: Optional[str] = None
    elapsed: Optional[int] = None
    timestamp: Optional[int] = None
    referee: Optional[str] = None
    venue: VenueInfo = field(default_factory=VenueInfo)
    home_goals: Optional[int] = None
    away_goals: Optional[int] = None

    @classmethod
    def from_api(cls, raw: dict) -> "Fixture":
        fixture_info = raw.get("fixture") or {}
        status = fixture_info.get("status") or {}
        teams = raw.get("teams") or {}
        goals = raw.get("goals") or {}
        kickoff = parse_provider_datetime(fixture_info.get("date"))
        if kickoff is None and fixture_info.get("timestamp"):
            kickoff = datetime.fromtimestamp(int(fixture_info["timestamp"]), tz=timezone.utc).replace(tzinfo=None)
        if kickoff is None:
            raise ValueError(f"Fixture {fixture_info.get('id')} has no usable date")

        return cls(
            id=int(fixture_info["id"]),
            date=kickoff,
            status_short=status.get("short") or "NS",
            status_long=status.get("long"),
            elapsed=_as_int(status.get("elapsed")),
            timestamp=_as_int(fixture_info.get("timestamp")),
            referee=fixture_info.get("referee"),
            venue=VenueInfo.from_api(fixture_info.get("venue")),
            league=LeagueInfo.from_api(raw.get("league") or {}),
            home=TeamInfo.from_api(teams.get("home") or {}),
            away=TeamInfo.from_api(teams.get("away") or {}),
            home_goals=_as_int(goals.get("home")),
            away_goals=_as_int(goals.get("away")),
        )


@dataclass
class FixtureEvent:
    """One element of the provider's /fixtures/events response."""

    elapsed: int
    type: str
    extra: Optional[int] = None
    team_id: Optional[int] = None
    team_name: Optional[str] = None
    player_id: Optional[int] = None
    player_name: Optional[str] = None
    assist_id: Optional[int] = None
    assist_name: Optional[str] = None
    detail: Optional[str] = None
    comments: Optional[str] = None

    @classmethod
    def from_api(cls, raw: dict) -> "FixtureEvent":
        time_info = raw.get("time") or {}
        team = raw.get("team") or {}
        player = raw.get("player") or {}
        assist = raw.get("assist") or {}
        return cls(
            elapsed=_as_int(time_info.get("elapsed")) or 0,
            extra=_as_int(time_info.get("extra")),
            team_id=_as_int(team.get("id")),
            team_name=team.get("name"),
            player_id=_as_int(player.get("id")),
            player_name=player.get("name"),
            assist_id=_as_int(assist.get("id")),
            assist_name=assist.get("name"),
            type=raw.get("type") or "",
            detail=raw.get("detail"),
            comments=raw.get("comments"),
        )


@dataclass
class TeamStatistics:
    """Per-team block of /fixtures/statistics: a list of {type, value} pairs."""

    team_id: int
    team_name: str
    statistics: list[dict] = field(default_factory=list)

    @classmethod
    def from_api(cls, raw: dict) -> "TeamStatistics":
        team = raw.get("team") or {}
        return cls(
            team_id=int(team.get("id") or 0),
            team_name=team.get("name") or "",
            statistics=list(raw.get("statistics") or []),
        )


@dataclass
class Lineup:
    """Per-team block of /fixtures/lineups."""

    team_id: int
    team_name: str
    formation: Optional[str] = None
    coach_name: Optional[str] = None
    start_xi: list[dict] = field(default_factory=list)
    substitutes: list[dict] = field(default_factory=list)

    @classmethod
    def from_api(cls, raw: dict) -> "Lineup":
        team = raw.get("team") or {}
        coach = raw.get("coach") or {}
        return cls(
            team_id=int(team.get("id") or 0),
            team_name=team.get("name") or "",
            formation=raw.get("formation"),
            coach_name=coach.get("name"),
            start_xi=[p.get("player", p) for p in raw.get("startXI") or []],
            substitutes=[p.get("player", p) for p in raw.get("substitutes") or []],
        )


@dataclass
class LeagueEntry:
    """One element of /leagues."""

    league: LeagueInfo
    country: Optional[str] = None
    current_season: Optional[int] = None
    seasons: list[int] = field(default_factory=list)

    @classmethod
    def from_api(cls, raw: dict) -> "LeagueEntry":
        seasons_raw = raw.get("seasons") or []
        seasons = [int(s["year"]) for s in seasons_raw if s.get("year") is not None]
        current = next((int(s["year"]) for s in seasons_raw if s.get("current")), None)
        country = (raw.get("country") or {}).get("name")
        league = LeagueInfo.from_api(raw.get("league") or {})
        league.country = league.country or country
        return cls(league=league, country=country, current_season=current, seasons=seasons)


class FootballDataClient(ABC):
    """Abstract base class for football data providers.

    Callers own rate limiting (fixed delays between calls); implementations
    only retry transient transport errors.
    """

    @abstractmethod
    async def get_fixtures(
        self,
        day: date,
        league_id: Optional[int] = None,
        season: Optional[int] = None,
    ) -> list[Fixture]:
        """Fixtures scheduled on `day`, optionally narrowed to one league/season."""

    @abstractmethod
    async def get_live_fixtures(self, league_ids: list[int]) -> list[Fixture]:
        """All in-play fixtures across `league_ids` in a single request."""

    @abstractmethod
    async def get_fixture_events(self, fixture_id: int) -> list[FixtureEvent]:
        pass

    @abstractmethod
    async def get_fixture_statistics(self, fixture_id: int) -> list[TeamStatistics]:
        """Never raises: returns [] when the provider call fails."""

    @abstractmethod
    async def get_fixture_lineups(self, fixture_id: int) -> list[Lineup]:
        """Never raises: returns [] when the provider call fails."""

    async def get_fixture_by_id(self, fixture_id: int) -> Optional[Fixture]:
        return None

    async def get_leagues(self, country: Optional[str] = None, season: Optional[int] = None) -> list[LeagueEntry]:
        return []

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass
