"""API-Football client tests over httpx.MockTransport."""

from datetime import date

import httpx
import pytest

from factories import event_payload, fixture_payload
from matchday.errors import ProviderError
from matchday.etl.api_football import APIFootballClient


def _client(handler, **kwargs) -> APIFootballClient:
    kwargs.setdefault("retry_delay", 0)
    return APIFootballClient(
        api_key="test-key",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


def _ok(rows) -> httpx.Response:
    return httpx.Response(200, json={"errors": [], "results": len(rows), "response": rows})


class TestHosts:
    def test_api_sports_host(self):
        """Direct api-sports host should use the x-apisports-key header."""
        client = APIFootballClient(api_key="k")
        assert client.base_url == "https://v3.football.api-sports.io"
        assert client.client.headers["x-apisports-key"] == "k"

    def test_rapidapi_host(self):
        """A RapidAPI host should switch base URL and headers."""
        client = APIFootballClient(api_key="k", host="api-football-v1.p.rapidapi.com")
        assert client.base_url == "https://api-football-v1.p.rapidapi.com/v3"
        assert client.client.headers["X-RapidAPI-Host"] == "api-football-v1.p.rapidapi.com"


class TestRequests:
    @pytest.mark.asyncio
    async def test_get_fixtures_params(self):
        """Fixtures request should send date, league and season params."""
        seen = []

        def handler(request):
            seen.append(request)
            return _ok([fixture_payload()])

        client = _client(handler)
        fixtures = await client.get_fixtures(date(2025, 8, 9), league_id=39, season=2025)

        assert len(fixtures) == 1
        assert fixtures[0].id == 1035037
        assert seen[0].url.path == "/fixtures"
        assert dict(seen[0].url.params) == {"date": "2025-08-09", "league": "39", "season": "2025"}
        await client.close()

    @pytest.mark.asyncio
    async def test_live_filter(self):
        """Live filter should join league ids with '-' and fall back to 'all'."""
        seen = []

        def handler(request):
            seen.append(request.url.params["live"])
            return _ok([])

        client = _client(handler)
        await client.get_live_fixtures([39, 140])
        await client.get_live_fixtures([])

        assert seen == ["39-140", "all"]
        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_fixture_skipped(self):
        """Rows that fail to parse should be dropped, not raised."""
        client = _client(lambda request: _ok([fixture_payload(), {"fixture": {"id": 2}}]))

        fixtures = await client.get_fixtures(date(2025, 8, 9))

        assert [f.id for f in fixtures] == [1035037]
        await client.close()

    @pytest.mark.asyncio
    async def test_events(self):
        """Events should parse in provider order."""
        client = _client(lambda request: _ok([event_payload(23), event_payload(67, "Card", detail="Yellow Card")]))

        events = await client.get_fixture_events(1035037)

        assert [(e.elapsed, e.type) for e in events] == [(23, "Goal"), (67, "Card")]
        await client.close()

    @pytest.mark.asyncio
    async def test_leagues(self):
        """League rows should expose the current season."""
        row = {
            "league": {"id": 39, "name": "Premier League", "logo": "https://media.example/39.png"},
            "country": {"name": "England"},
            "seasons": [{"year": 2024, "current": False}, {"year": 2025, "current": True}],
        }
        client = _client(lambda request: _ok([row]))

        entries = await client.get_leagues()

        assert entries[0].league.id == 39
        assert entries[0].current_season == 2025
        assert entries[0].country == "England"
        await client.close()


class TestRetries:
    """Transient failures retry, client errors do not."""

    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self):
        """429 and 5xx responses should be retried until success."""
        responses = iter([httpx.Response(429), httpx.Response(503), _ok([fixture_payload()])])
        client = _client(lambda request: next(responses))

        fixtures = await client.get_fixtures(date(2025, 8, 9))

        assert len(fixtures) == 1
        assert client.request_count == 3
        await client.close()

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self):
        """Running out of retries should raise ProviderError."""
        client = _client(lambda request: httpx.Response(500), max_retries=2)

        with pytest.raises(ProviderError) as exc_info:
            await client.get_fixtures(date(2025, 8, 9))

        assert exc_info.value.status_code == 500
        assert client.request_count == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        """A 4xx other than 429 should fail on the first attempt."""
        client = _client(lambda request: httpx.Response(403))

        with pytest.raises(ProviderError) as exc_info:
            await client.get_fixture_events(1)

        assert exc_info.value.status_code == 403
        assert client.request_count == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error_retried(self):
        """Timeouts should be retried like 5xx responses."""
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectTimeout("timed out", request=request)
            return _ok([])

        client = _client(handler)

        assert await client.get_live_fixtures([39]) == []
        assert calls["n"] == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_provider_errors_body_is_empty(self):
        """A 200 carrying provider errors should read as no rows."""
        client = _client(lambda request: httpx.Response(200, json={"errors": {"token": "invalid"}, "response": []}))

        assert await client.get_fixtures(date(2025, 8, 9)) == []
        await client.close()


class TestBestEffortEndpoints:
    @pytest.mark.asyncio
    async def test_statistics_and_lineups_swallow_errors(self):
        """Statistics and lineups should return [] on failure."""
        client = _client(lambda request: httpx.Response(403))

        assert await client.get_fixture_statistics(1) == []
        assert await client.get_fixture_lineups(1) == []
        await client.close()

    @pytest.mark.asyncio
    async def test_health_check(self):
        """health_check should report True/False, never raise."""
        healthy = _client(lambda request: _ok([]))
        broken = _client(lambda request: httpx.Response(500), max_retries=1)

        assert await healthy.health_check() is True
        assert await broken.health_check() is False
        await healthy.close()
        await broken.close()
