"""Shared fixtures: in-memory SQLite store and fake collaborators."""

import pytest
import pytest_asyncio

from factories import FakeFootballClient, FakePushProvider
from matchday.database import close_db, create_engine, create_session_factory, init_db
from matchday.etl.pipeline import IngestionConfig
from matchday.models import League, Team, User


@pytest_asyncio.fixture
async def engine():
    engine = create_engine("sqlite:///:memory:")
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def client():
    return FakeFootballClient()


@pytest.fixture
def push_provider():
    return FakePushProvider()


@pytest.fixture
def fast_config():
    """No pacing and no backoff sleeps."""
    return IngestionConfig(batch_size=50, max_retries=3, retry_delay=0, league_delay=0, match_delay=0)


@pytest_asyncio.fixture
async def premier_league(session_factory):
    league = League(external_id=39, name="Premier League", country="England", season=2025)
    async with session_factory() as session:
        session.add(league)
        await session.commit()
    return league


@pytest_asyncio.fixture
async def teams(session_factory, premier_league):
    rows = [
        Team(id="50", external_id=50, name="Manchester City", short_name="MAN", league_id=premier_league.id),
        Team(id="33", external_id=33, name="Manchester United", short_name="MAN", league_id=premier_league.id),
        Team(id="40", external_id=40, name="Liverpool", short_name="LIV", league_id=premier_league.id),
        Team(id="42", external_id=42, name="Arsenal", short_name="ARS", league_id=premier_league.id),
    ]
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()
    return {team.id: team for team in rows}


@pytest_asyncio.fixture
async def users(session_factory):
    rows = [
        User(id="user-1", email="ana@example.com", display_name="Ana"),
        User(id="user-2", email="ben@example.com", display_name="Ben"),
        User(id="user-3", email="cleo@example.com", display_name="Cleo"),
        User(id="inactive", email="gone@example.com", is_active=False),
    ]
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()
    return {user.id: user for user in rows}
