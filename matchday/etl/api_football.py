"""API-Football client (supports RapidAPI and API-Sports hosts)."""

import asyncio
import logging
import time
from datetime import date
from typing import Optional

import httpx

from matchday.config import Settings
from matchday.errors import ProviderError
from matchday.etl.base import (
    Fixture,
    FixtureEvent,
    FootballDataClient,
    LeagueEntry,
    Lineup,
    TeamStatistics,
)
from matchday.telemetry import record_provider_error, record_provider_request

logger = logging.getLogger(__name__)

PROVIDER = "api_football"


class APIFootballClient(FootballDataClient):
    """Typed wrapper over the API-Football v3 REST API.

    No pacing happens here: the ingestion pipeline spaces its calls.
    Transient failures (429, 5xx, timeouts, transport errors) are retried
    with exponential backoff before surfacing as ProviderError.
    """

    def __init__(
        self,
        api_key: str,
        host: str = "v3.football.api-sports.io",
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if "rapidapi" in host:
            self.base_url = f"https://{host}/v3"
            headers = {
                "X-RapidAPI-Key": api_key,
                "X-RapidAPI-Host": host,
            }
        else:
            self.base_url = f"https://{host}"
            headers = {"x-apisports-key": api_key}

        self.client = client or httpx.AsyncClient(headers=headers, timeout=timeout)
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.request_count = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "APIFootballClient":
        return cls(
            api_key=settings.RAPIDAPI_KEY,
            host=settings.RAPIDAPI_HOST,
            timeout=settings.API_TIMEOUT_SECONDS,
            max_retries=settings.API_MAX_RETRIES,
            retry_delay=settings.API_RETRY_DELAY_SECONDS,
        )

    async def _request(self, endpoint: str, params: Optional[dict] = None) -> dict:
        """
        GET an endpoint with retry on transient errors.

        Returns the decoded JSON body. A body carrying provider-level
        `errors` is logged and treated as an empty response.

        Raises:
            ProviderError: after the last attempt fails, or immediately on a 4xx.
        """
        url = f"{self.base_url}/{endpoint}"
        last_error = "unknown error"
        last_status: Optional[int] = None

        for attempt in range(self.max_retries):
            start_time = time.monotonic()
            wait_time = self.retry_delay * (2**attempt)
            try:
                self.request_count += 1
                response = await self.client.get(url, params=params)
                latency_ms = (time.monotonic() - start_time) * 1000
                record_provider_request(PROVIDER, endpoint, response.status_code, latency_ms)

                if response.status_code == 429 or response.status_code >= 500:
                    last_status = response.status_code
                    last_error = f"HTTP {response.status_code}"
                    error_code = "rate_limit" if response.status_code == 429 else "http_5xx"
                    record_provider_error(PROVIDER, endpoint, error_code)
                    if attempt < self.max_retries - 1:
                        logger.warning(
                            f"[API] {endpoint} returned {response.status_code}. "
                            f"Waiting {wait_time}s before retry..."
                        )
                        await asyncio.sleep(wait_time)
                    continue

                if response.status_code >= 400:
                    record_provider_error(PROVIDER, endpoint, "http_4xx")
                    raise ProviderError(endpoint, f"HTTP {response.status_code}", response.status_code)

                data = response.json()
                if data.get("errors"):
                    logger.error(f"[API] {endpoint} error response: {data['errors']}")
                    record_provider_error(PROVIDER, endpoint, "api_error")
                    return {"response": []}

                return data

            except httpx.TimeoutException as e:
                last_error = f"timeout: {e}"
                last_status = None
                record_provider_error(PROVIDER, endpoint, "timeout")
                logger.error(f"[API] Timeout on {endpoint}: {e}")
            except httpx.RequestError as e:
                last_error = f"request error: {e}"
                last_status = None
                record_provider_error(PROVIDER, endpoint, "request_error")
                logger.error(f"[API] Request error on {endpoint}: {e}")

            if attempt < self.max_retries - 1:
                await asyncio.sleep(wait_time)

        raise ProviderError(endpoint, last_error, last_status)

    async def _get_response(self, endpoint: str, params: Optional[dict] = None) -> list:
        data = await self._request(endpoint, params)
        return data.get("response") or []

    def _parse_fixtures(self, rows: list) -> list[Fixture]:
        fixtures = []
        for row in rows:
            try:
                fixtures.append(Fixture.from_api(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[API] Skipping malformed fixture: {e}")
        return fixtures

    async def get_fixtures(
        self,
        day: date,
        league_id: Optional[int] = None,
        season: Optional[int] = None,
    ) -> list[Fixture]:
        params: dict = {"date": day.isoformat()}
        if league_id is not None:
            params["league"] = league_id
        if season is not None:
            params["season"] = season
        rows = await self._get_response("fixtures", params)
        return self._parse_fixtures(rows)

    async def get_live_fixtures(self, league_ids: list[int]) -> list[Fixture]:
        live = "-".join(str(league_id) for league_id in league_ids) if league_ids else "all"
        rows = await self._get_response("fixtures", {"live": live})
        return self._parse_fixtures(rows)

    async def get_fixture_by_id(self, fixture_id: int) -> Optional[Fixture]:
        rows = await self._get_response("fixtures", {"id": fixture_id})
        fixtures = self._parse_fixtures(rows)
        return fixtures[0] if fixtures else None

    async def get_fixture_events(self, fixture_id: int) -> list[FixtureEvent]:
        """Goals, cards, substitutions and VAR decisions for a fixture."""
        rows = await self._get_response("fixtures/events", {"fixture": fixture_id})
        return [FixtureEvent.from_api(row) for row in rows]

    async def get_fixture_statistics(self, fixture_id: int) -> list[TeamStatistics]:
        try:
            rows = await self._get_response("fixtures/statistics", {"fixture": fixture_id})
            return [TeamStatistics.from_api(row) for row in rows]
        except Exception as e:
            logger.warning(f"[API] Statistics unavailable for fixture {fixture_id}: {e}")
            return []

    async def get_fixture_lineups(self, fixture_id: int) -> list[Lineup]:
        try:
            rows = await self._get_response("fixtures/lineups", {"fixture": fixture_id})
            return [Lineup.from_api(row) for row in rows]
        except Exception as e:
            logger.warning(f"[API] Lineups unavailable for fixture {fixture_id}: {e}")
            return []

    async def get_leagues(self, country: Optional[str] = None, season: Optional[int] = None) -> list[LeagueEntry]:
        params = {}
        if country:
            params["country"] = country
        if season is not None:
            params["season"] = season
        rows = await self._get_response("leagues", params)
        return [LeagueEntry.from_api(row) for row in rows]

    async def health_check(self) -> bool:
        """True when the account status endpoint answers."""
        try:
            await self._request("status")
            return True
        except Exception as e:
            logger.warning(f"[API] Health check failed: {e}")
            return False

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
