"""Ingestion pipeline: fetch -> map -> upsert for fixtures, live state and match events."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.config import Settings
from matchday.database import SessionFactory
from matchday.etl.base import Fixture, FixtureEvent, FootballDataClient, LeagueInfo, TeamInfo, VenueInfo
from matchday.etl.mapper import (
    build_provider_event_id,
    derive_phase,
    generate_short_name,
    map_event_to_match_event,
    map_fixture_to_match,
    map_fixture_to_match_state,
    map_league,
    map_team,
    map_venue,
)
from matchday.events.bus import MATCH_EVENT_RECORDED, MATCH_STATUS_CHANGED, EventBus
from matchday.models import (
    FINISHED_STATUSES,
    LIVE_STATUSES,
    League,
    Match,
    MatchEvent,
    MatchState,
    Team,
    Venue,
    utc_now,
)
from matchday.telemetry import record_events_created, record_ingestion_duration, record_ingestion_outcome
from matchday.utils import chunked

logger = logging.getLogger(__name__)


@dataclass
class IngestionConfig:
    """Batching, retry and pacing knobs (delays are in seconds)."""

    batch_size: int = 50
    max_retries: int = 3
    retry_delay: float = 3.0
    league_delay: float = 1.0
    match_delay: float = 0.5
    season_override: Optional[int] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "IngestionConfig":
        return cls(
            batch_size=settings.INGESTION_BATCH_SIZE,
            max_retries=settings.INGESTION_MAX_RETRIES,
            retry_delay=settings.INGESTION_RETRY_DELAY_SECONDS,
            league_delay=settings.INGESTION_LEAGUE_DELAY_SECONDS,
            match_delay=settings.INGESTION_MATCH_DELAY_SECONDS,
            season_override=settings.AF_SEASON,
        )


@dataclass
class IngestionMetrics:
    """Outcome of one ingestion run."""

    operation: str
    processed: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0
    api_calls: int = 0
    events_created: int = 0
    events_skipped: int = 0
    venues_created: int = 0
    stadium_guides_processed: int = 0
    failed_fixtures: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    duration_ms: int = 0

    def finish(self, started: float) -> "IngestionMetrics":
        self.finished_at = utc_now()
        self.duration_ms = int((time.monotonic() - started) * 1000)
        return self

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "errors": self.errors,
            "api_calls": self.api_calls,
            "events_created": self.events_created,
            "events_skipped": self.events_skipped,
            "venues_created": self.venues_created,
            "stadium_guides_processed": self.stadium_guides_processed,
            "failed_fixtures": list(self.failed_fixtures),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
        }


@dataclass
class _BatchTally:
    """Counts and side effects of a transaction, applied only after it commits."""

    processed: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    new_venue_ids: list[str] = field(default_factory=list)
    status_changes: list[dict] = field(default_factory=list)


class IngestionPipeline:
    """Orchestrates provider fetches and transactional upserts into the store.

    Run-level methods never raise for per-league, per-batch or per-fixture
    failures: those are logged and counted in the returned metrics.
    """

    def __init__(
        self,
        client: FootballDataClient,
        session_factory: SessionFactory,
        config: Optional[IngestionConfig] = None,
        event_bus: Optional[EventBus] = None,
        guide_service=None,
    ):
        self.client = client
        self.session_factory = session_factory
        self.config = config or IngestionConfig()
        self.event_bus = event_bus
        self.guide_service = guide_service
        self.last_metrics: dict[str, IngestionMetrics] = {}

    # ── Public operations ────────────────────────────────────────────────────
    async def ingest_daily_fixtures(self, day: date) -> IngestionMetrics:
        """Fetch and upsert every target league's fixtures for `day`, one league at a time."""
        started = time.monotonic()
        metrics = IngestionMetrics(operation="daily")

        leagues = await self.get_target_leagues()
        if not leagues:
            logger.warning("[INGEST] No target leagues configured, nothing to ingest")
            return self._finish(metrics, started)

        leagues_by_external = {league.external_id: league for league in leagues}
        logger.info(f"[INGEST] Daily fixtures for {day.isoformat()} across {len(leagues)} leagues")

        for index, league in enumerate(leagues):
            if index > 0 and self.config.league_delay > 0:
                await asyncio.sleep(self.config.league_delay)
            await self._ingest_league(league, day, metrics, leagues_by_external)

        logger.info(
            f"[INGEST] Daily done: processed={metrics.processed} created={metrics.created} "
            f"updated={metrics.updated} errors={metrics.errors}"
        )
        return self._finish(metrics, started)

    async def ingest_league_fixtures(self, league_id: Union[str, int], day: date) -> IngestionMetrics:
        """Single-league variant for manual re-syncs (accepts internal or provider id)."""
        started = time.monotonic()
        metrics = IngestionMetrics(operation="league")

        league = await self._find_league(league_id)
        if league is None:
            logger.warning(f"[INGEST] League {league_id} not found")
            metrics.errors += 1
            return self._finish(metrics, started)

        await self._ingest_league(league, day, metrics, {league.external_id: league})
        return self._finish(metrics, started)

    async def ingest_live_fixtures(self) -> IngestionMetrics:
        """Upsert every in-play fixture of the target leagues and refresh their MatchState."""
        started = time.monotonic()
        metrics = IngestionMetrics(operation="live")

        leagues = await self.get_target_leagues()
        if not leagues:
            logger.warning("[LIVE] No target leagues configured, skipping live poll")
            return self._finish(metrics, started)

        try:
            fixtures = await self.client.get_live_fixtures([league.external_id for league in leagues])
            metrics.api_calls += 1
        except Exception as e:
            logger.error(f"[LIVE] Failed to fetch live fixtures: {e}")
            metrics.errors += 1
            return self._finish(metrics, started)

        if fixtures:
            leagues_by_external = {league.external_id: league for league in leagues}
            await self._process_fixtures(fixtures, metrics, leagues_by_external, live_pass=True)

        logger.info(
            f"[LIVE] live_count={len(fixtures)} updated={metrics.updated} "
            f"created={metrics.created} errors={metrics.errors}"
        )
        return self._finish(metrics, started)

    async def ingest_match_events(self) -> IngestionMetrics:
        """Insert new events for every live match, pausing between matches."""
        started = time.monotonic()
        metrics = IngestionMetrics(operation="events")

        async with self.session_factory() as session:
            result = await session.execute(
                select(Match).where(Match.status.in_(LIVE_STATUSES)).order_by(Match.start_time)
            )
            live_matches = list(result.scalars().all())

        if not live_matches:
            logger.debug("[EVENTS] No live matches")
            return self._finish(metrics, started)

        for index, match in enumerate(live_matches):
            if index > 0 and self.config.match_delay > 0:
                await asyncio.sleep(self.config.match_delay)
            metrics.processed += 1
            try:
                fixture_id = match.external_id if match.external_id is not None else int(match.id)
                events = await self.client.get_fixture_events(fixture_id)
                metrics.api_calls += 1
                await self._store_events(match, events, metrics)
            except Exception as e:
                metrics.errors += 1
                logger.error(f"[EVENTS] Failed to ingest events for match {match.id}: {e}")

        logger.info(
            f"[EVENTS] matches={len(live_matches)} created={metrics.events_created} "
            f"duplicates={metrics.events_skipped} errors={metrics.errors}"
        )
        return self._finish(metrics, started)

    async def get_target_leagues(self) -> list[League]:
        async with self.session_factory() as session:
            result = await session.execute(select(League).order_by(League.external_id))
            return list(result.scalars().all())

    async def seed_leagues(self, league_ids: list[int]) -> list[League]:
        """Insert target leagues missing from the store.

        Names and current seasons come from one /leagues call; when the
        provider is unavailable the league is stored under a placeholder
        name and the configured (or current) season.
        """
        async with self.session_factory() as session:
            result = await session.execute(select(League.external_id).where(League.external_id.in_(league_ids)))
            existing = set(result.scalars().all())

        missing = [league_id for league_id in league_ids if league_id not in existing]
        if not missing:
            return []

        entries = {}
        try:
            entries = {entry.league.id: entry for entry in await self.client.get_leagues()}
        except Exception as e:
            logger.warning(f"[INGEST] Could not fetch league catalogue, seeding placeholders: {e}")

        default_season = self.config.season_override or utc_now().year
        created = []
        async with self.session_factory() as session:
            async with session.begin():
                for league_id in missing:
                    entry = entries.get(league_id)
                    if entry is not None:
                        league = map_league(entry.league, entry.current_season or default_season)
                    else:
                        league = League(external_id=league_id, name=f"League {league_id}", season=default_season)
                    session.add(league)
                    created.append(league)

        logger.info(f"[INGEST] Seeded {len(created)} target leagues: {', '.join(str(league.external_id) for league in created)}")
        return created

    def get_ingestion_metrics(self) -> dict:
        """Last run of each operation, as plain dicts."""
        return {operation: metrics.to_dict() for operation, metrics in self.last_metrics.items()}

    # ── League / batch processing ────────────────────────────────────────────
    async def _ingest_league(
        self,
        league: League,
        day: date,
        metrics: IngestionMetrics,
        leagues_by_external: dict[int, League],
    ) -> None:
        season = self.config.season_override or league.season
        try:
            fixtures = await self.client.get_fixtures(day, league.external_id, season)
            metrics.api_calls += 1
        except Exception as e:
            metrics.errors += 1
            logger.error(f"[INGEST] League {league.name} ({league.external_id}) fetch failed: {e}")
            return

        logger.info(f"[INGEST] League {league.name}: {len(fixtures)} fixtures")
        await self._process_fixtures(fixtures, metrics, leagues_by_external, live_pass=False)

    async def _process_fixtures(
        self,
        fixtures: list[Fixture],
        metrics: IngestionMetrics,
        leagues_by_external: dict[int, League],
        live_pass: bool,
    ) -> None:
        for batch in chunked(fixtures, self.config.batch_size):
            tally = _BatchTally()
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        for fixture in batch:
                            await self._upsert_fixture(session, fixture, leagues_by_external, live_pass, tally)
            except Exception as e:
                logger.warning(
                    f"[INGEST] Batch of {len(batch)} fixtures failed ({e}), retrying one by one"
                )
                for fixture in batch:
                    await self._retry_fixture(fixture, metrics, leagues_by_external, live_pass)
                continue

            await self._apply_tally(tally, metrics)

    async def _retry_fixture(
        self,
        fixture: Fixture,
        metrics: IngestionMetrics,
        leagues_by_external: dict[int, League],
        live_pass: bool,
    ) -> None:
        for attempt in range(1, self.config.max_retries + 1):
            tally = _BatchTally()
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        await self._upsert_fixture(session, fixture, leagues_by_external, live_pass, tally)
            except Exception as e:
                if attempt < self.config.max_retries:
                    wait_time = self.config.retry_delay * (2 ** (attempt - 1))
                    logger.warning(
                        f"[INGEST] Fixture {fixture.id} attempt {attempt}/{self.config.max_retries} "
                        f"failed: {e}. Retrying in {wait_time}s"
                    )
                    if wait_time > 0:
                        await asyncio.sleep(wait_time)
                    continue
                metrics.processed += 1
                metrics.errors += 1
                metrics.failed_fixtures.append(str(fixture.id))
                logger.error(f"[INGEST] Fixture {fixture.id} failed permanently: {e}")
                return

            await self._apply_tally(tally, metrics)
            return

    async def _apply_tally(self, tally: _BatchTally, metrics: IngestionMetrics) -> None:
        """Fold a committed transaction into the run metrics and fire its side effects."""
        metrics.processed += tally.processed
        metrics.created += tally.created
        metrics.updated += tally.updated
        metrics.unchanged += tally.unchanged
        metrics.skipped += tally.skipped
        metrics.venues_created += len(tally.new_venue_ids)

        if self.event_bus is not None:
            for change in tally.status_changes:
                await self.event_bus.emit(MATCH_STATUS_CHANGED, change)

        if tally.new_venue_ids and self.guide_service is not None:
            try:
                result = await self.guide_service.process(tally.new_venue_ids)
                metrics.stadium_guides_processed += result.processed
            except Exception as e:
                logger.error(f"[GUIDES] Enrichment for new venues failed: {e}")

    # ── Per-fixture upsert (runs inside the caller's transaction) ────────────
    async def _upsert_fixture(
        self,
        session: AsyncSession,
        fixture: Fixture,
        leagues_by_external: dict[int, League],
        live_pass: bool,
        tally: _BatchTally,
    ) -> None:
        tally.processed += 1
        match = await self._find_match(session, fixture.id)

        if match is not None:
            if match.is_terminal:
                tally.skipped += 1
                return
            old_status = match.status
            if self._merge_match(match, fixture):
                tally.updated += 1
            else:
                tally.unchanged += 1
            if old_status != match.status:
                tally.status_changes.append(self._status_change(match, old_status, fixture))
        else:
            league = await self._ensure_league(session, fixture.league, leagues_by_external)
            home = await self._ensure_team(session, fixture.home, league.id)
            away = await self._ensure_team(session, fixture.away, league.id)
            venue_id = await self._ensure_venue(session, fixture.venue, tally)

            match = map_fixture_to_match(fixture, league.id)
            # Pre-seeded rows may use a different primary key than the provider id
            match.home_team_id = home.id
            match.away_team_id = away.id
            match.venue_id = venue_id
            if match.status in FINISHED_STATUSES:
                match.finished_at = utc_now()
            session.add(match)
            tally.created += 1
            if match.status in LIVE_STATUSES:
                tally.status_changes.append(self._status_change(match, None, fixture))

        await session.flush()

        if live_pass or fixture.status_short in LIVE_STATUSES:
            await self._upsert_match_state(session, match.id, fixture)
            await session.flush()

    async def _find_match(self, session: AsyncSession, fixture_id: int) -> Optional[Match]:
        """Primary key first, then the indexed provider id column."""
        match = await session.get(Match, str(fixture_id))
        if match is not None:
            return match
        result = await session.execute(select(Match).where(Match.external_id == fixture_id))
        return result.scalar_one_or_none()

    def _merge_match(self, match: Match, fixture: Fixture) -> bool:
        """Copy mutable fields onto an existing match; True if anything changed."""
        changed = False
        if match.status != fixture.status_short:
            if fixture.status_short in FINISHED_STATUSES and match.finished_at is None:
                match.finished_at = utc_now()
                logger.info(f"[INGEST] Match {match.id} finished: {match.status} -> {fixture.status_short}")
            match.status = fixture.status_short
            changed = True
        if match.start_time != fixture.date:
            match.start_time = fixture.date
            changed = True
        if fixture.league.round and match.round != fixture.league.round:
            match.round = fixture.league.round
            changed = True
        if match.external_id is None:
            match.external_id = fixture.id
            changed = True
        merged_ids = {**(match.provider_ids or {}), "api_football": fixture.id}
        if merged_ids != (match.provider_ids or {}):
            match.provider_ids = merged_ids
            changed = True
        if changed:
            match.updated_at = utc_now()
        return changed

    def _status_change(self, match: Match, old_status: Optional[str], fixture: Fixture) -> dict:
        return {
            "match_id": match.id,
            "league_id": match.league_id,
            "home_team_id": match.home_team_id,
            "away_team_id": match.away_team_id,
            "home_team_name": fixture.home.name,
            "away_team_name": fixture.away.name,
            "old_status": old_status,
            "new_status": match.status,
            "home_score": fixture.home_goals or 0,
            "away_score": fixture.away_goals or 0,
        }

    async def _upsert_match_state(self, session: AsyncSession, match_id: str, fixture: Fixture) -> None:
        state = await session.get(MatchState, match_id)
        if state is None:
            state = map_fixture_to_match_state(fixture)
            state.match_id = match_id
            session.add(state)
            return
        state.minute = fixture.elapsed
        state.phase = derive_phase(fixture.status_short, fixture.elapsed)
        state.home_score = fixture.home_goals or 0
        state.away_score = fixture.away_goals or 0
        state.updated_at = utc_now()

    async def _find_league(self, league_id: Union[str, int]) -> Optional[League]:
        async with self.session_factory() as session:
            league = await session.get(League, str(league_id))
            if league is not None:
                return league
            try:
                external_id = int(league_id)
            except (TypeError, ValueError):
                return None
            result = await session.execute(select(League).where(League.external_id == external_id))
            return result.scalar_one_or_none()

    async def _ensure_league(
        self,
        session: AsyncSession,
        info: LeagueInfo,
        leagues_by_external: dict[int, League],
    ) -> League:
        league = leagues_by_external.get(info.id)
        if league is not None:
            return league

        result = await session.execute(select(League).where(League.external_id == info.id))
        league = result.scalar_one_or_none()
        if league is None:
            league = map_league(info, info.season or self.config.season_override or utc_now().year)
            session.add(league)
            await session.flush()
            logger.info(f"[INGEST] Created league {league.name} ({info.id})")
        return league

    async def _ensure_team(self, session: AsyncSession, info: TeamInfo, league_id: Optional[str]) -> Team:
        team = await session.get(Team, str(info.id))
        if team is None:
            result = await session.execute(select(Team).where(Team.external_id == info.id))
            team = result.scalar_one_or_none()

        if team is None:
            team = map_team(info, league_id)
            session.add(team)
            await session.flush()
            logger.debug(f"[INGEST] Created team {team.name} ({team.id})")
            return team

        # Name/logo refresh only
        if info.name and team.name != info.name:
            team.name = info.name
            team.short_name = generate_short_name(info.name)
            team.updated_at = utc_now()
        if info.logo and team.logo_url != info.logo:
            team.logo_url = info.logo
            team.updated_at = utc_now()
        return team

    async def _ensure_venue(self, session: AsyncSession, info: VenueInfo, tally: _BatchTally) -> Optional[str]:
        if info.id is None:
            return None

        venue = await session.get(Venue, str(info.id))
        if venue is None:
            result = await session.execute(select(Venue).where(Venue.external_id == info.id))
            venue = result.scalar_one_or_none()

        if venue is None:
            venue = map_venue(info)
            session.add(venue)
            await session.flush()
            tally.new_venue_ids.append(venue.id)
            logger.info(f"[INGEST] Created venue {venue.name} ({venue.id})")
            return venue.id

        if info.name and venue.name != info.name:
            venue.name = info.name
            venue.updated_at = utc_now()
        if info.city and venue.city != info.city:
            venue.city = info.city
            venue.updated_at = utc_now()
        return venue.id

    # ── Match events ─────────────────────────────────────────────────────────
    async def _store_events(self, match: Match, events: list[FixtureEvent], metrics: IngestionMetrics) -> None:
        """Insert events whose dedup key is new; the unique index is the backstop."""
        if not events:
            return

        async with self.session_factory() as session:
            result = await session.execute(
                select(MatchEvent.provider_event_id).where(MatchEvent.match_id == match.id)
            )
            seen = set(result.scalars().all())

        pending: list[FixtureEvent] = []
        for event in events:
            key = build_provider_event_id(match.id, event.elapsed, event.type, event.team_id)
            if key in seen:
                metrics.events_skipped += 1
                continue
            seen.add(key)
            pending.append(event)

        if not pending:
            return

        try:
            created = await self._insert_events(match, pending)
        except IntegrityError:
            # A concurrent writer got some of them first: insert one at a time
            created = []
            for event in pending:
                try:
                    created.extend(await self._insert_events(match, [event]))
                except IntegrityError:
                    metrics.events_skipped += 1
                    logger.debug(f"[EVENTS] Event already stored for match {match.id}, skipping")

        if not created:
            return

        metrics.events_created += len(created)
        await self._mark_last_event(match.id, created[-1].provider_event_id)

        if self.event_bus is not None:
            for stored in created:
                await self.event_bus.emit(MATCH_EVENT_RECORDED, {
                    "match_id": match.id,
                    "league_id": match.league_id,
                    "home_team_id": match.home_team_id,
                    "away_team_id": match.away_team_id,
                    "team_id": stored.team_id,
                    "type": stored.type,
                    "minute": stored.minute,
                    "player_name": stored.player_name,
                    "detail": (stored.detail_json or {}).get("detail"),
                    "provider_event_id": stored.provider_event_id,
                })

    async def _insert_events(self, match: Match, events: list[FixtureEvent]) -> list[MatchEvent]:
        rows = [map_event_to_match_event(event, match.id, match.start_time) for event in events]
        async with self.session_factory() as session:
            async with session.begin():
                session.add_all(rows)
        return rows

    async def _mark_last_event(self, match_id: str, provider_event_id: str) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                state = await session.get(MatchState, match_id)
                if state is not None:
                    state.last_event_id = provider_event_id
                    state.updated_at = utc_now()

    def _finish(self, metrics: IngestionMetrics, started: float) -> IngestionMetrics:
        metrics.finish(started)
        self.last_metrics[metrics.operation] = metrics

        record_ingestion_outcome(metrics.operation, "created", metrics.created)
        record_ingestion_outcome(metrics.operation, "updated", metrics.updated)
        record_ingestion_outcome(metrics.operation, "unchanged", metrics.unchanged)
        record_ingestion_outcome(metrics.operation, "skipped", metrics.skipped)
        record_ingestion_outcome(metrics.operation, "error", metrics.errors)
        record_events_created(metrics.events_created)
        record_ingestion_duration(metrics.operation, metrics.duration_ms / 1000)
        return metrics
