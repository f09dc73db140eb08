"""Provider payload builders and in-memory fakes shared by the tests."""

from datetime import date
from typing import Optional

from matchday.errors import ProviderError
from matchday.etl.base import Fixture, FixtureEvent, FootballDataClient, LeagueEntry
from matchday.notifications.providers import MulticastResult, PushProvider, TokenResult


def fixture_payload(
    fixture_id: int = 1035037,
    status: str = "NS",
    elapsed: Optional[int] = None,
    kickoff: str = "2025-08-09T15:00:00+00:00",
    league_id: int = 39,
    season: int = 2025,
    home: tuple = (50, "Manchester City"),
    away: tuple = (33, "Manchester United"),
    venue: Optional[tuple] = (555, "Etihad Stadium", "Manchester"),
    home_goals: Optional[int] = None,
    away_goals: Optional[int] = None,
    round_name: str = "Regular Season - 1",
) -> dict:
    """One /fixtures row in API-Football's shape."""
    venue_block = {"id": venue[0], "name": venue[1], "city": venue[2]} if venue else {"id": None}
    return {
        "fixture": {
            "id": fixture_id,
            "referee": "M. Oliver",
            "date": kickoff,
            "timestamp": None,
            "venue": venue_block,
            "status": {"long": status, "short": status, "elapsed": elapsed},
        },
        "league": {
            "id": league_id,
            "name": "Premier League",
            "country": "England",
            "season": season,
            "round": round_name,
        },
        "teams": {
            "home": {"id": home[0], "name": home[1], "logo": f"https://media.example/teams/{home[0]}.png"},
            "away": {"id": away[0], "name": away[1], "logo": f"https://media.example/teams/{away[0]}.png"},
        },
        "goals": {"home": home_goals, "away": away_goals},
    }


def make_fixture(**kwargs) -> Fixture:
    return Fixture.from_api(fixture_payload(**kwargs))


def event_payload(
    elapsed: int,
    event_type: str = "Goal",
    team_id: Optional[int] = 50,
    player: str = "Erling Haaland",
    detail: str = "Normal Goal",
    extra: Optional[int] = None,
) -> dict:
    return {
        "time": {"elapsed": elapsed, "extra": extra},
        "team": {"id": team_id, "name": "Manchester City"} if team_id is not None else {},
        "player": {"id": 1100, "name": player},
        "assist": {"id": None, "name": None},
        "type": event_type,
        "detail": detail,
        "comments": None,
    }


def make_event(elapsed: int, event_type: str = "Goal", **kwargs) -> FixtureEvent:
    return FixtureEvent.from_api(event_payload(elapsed, event_type, **kwargs))


class FakeFootballClient(FootballDataClient):
    """In-memory provider: fixtures per day, live fixtures, events per fixture id."""

    def __init__(self):
        self.fixtures: dict[date, list[Fixture]] = {}
        self.live: list[Fixture] = []
        self.events: dict[int, list[FixtureEvent]] = {}
        self.leagues: list[LeagueEntry] = []
        self.failing_leagues: set[int] = set()
        self.healthy = True
        self.calls: list[tuple] = []

    async def get_fixtures(self, day: date, league_id: Optional[int] = None, season: Optional[int] = None):
        self.calls.append(("fixtures", day, league_id, season))
        if league_id in self.failing_leagues:
            raise ProviderError("fixtures", "HTTP 503", 503)
        return [f for f in self.fixtures.get(day, []) if league_id is None or f.league.id == league_id]

    async def get_live_fixtures(self, league_ids: list[int]):
        self.calls.append(("live", tuple(league_ids)))
        return [f for f in self.live if f.league.id in league_ids]

    async def get_fixture_events(self, fixture_id: int):
        self.calls.append(("events", fixture_id))
        return list(self.events.get(fixture_id, []))

    async def get_fixture_statistics(self, fixture_id: int):
        return []

    async def get_fixture_lineups(self, fixture_id: int):
        return []

    async def get_leagues(self, country: Optional[str] = None, season: Optional[int] = None):
        self.calls.append(("leagues",))
        return list(self.leagues)

    async def health_check(self) -> bool:
        return self.healthy


class FakePushProvider(PushProvider):
    """Records every multicast; tokens listed in `errors` fail with that code."""

    def __init__(self, errors: Optional[dict] = None, max_tokens_per_call: int = 500):
        self.errors = errors or {}
        self.max_tokens_per_call = max_tokens_per_call
        self.calls: list[tuple] = []

    async def send_multicast(self, tokens, payload):
        self.calls.append((list(tokens), payload))
        return MulticastResult.from_results([
            TokenResult(token=token, success=token not in self.errors, error_code=self.errors.get(token))
            for token in tokens
        ])

    @property
    def sent_tokens(self) -> list[str]:
        return [token for tokens, _ in self.calls for token in tokens]
